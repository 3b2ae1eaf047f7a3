# Run from the FlockTrack directory:
#   python -m scripts.maintenance create-tables
#   python -m scripts.maintenance feed-update [--officer-id 7]
#   python -m scripts.maintenance backfill-metrics
#
# Requires DATABASE_URL in .env

from argparse import ArgumentParser

from utils.db import engine, SessionLocal, Base
from utils.logging_config import configure_logging
from config.settings import settings
from services import batch_service
from schemas.job import FeedUpdateRun, BackfillRun
import models  # noqa: F401  (registers every table on Base.metadata)


def create_tables():
    Base.metadata.create_all(bind=engine)
    print(f"[OK] {len(Base.metadata.tables)} tables ensured")


def main():
    ap = ArgumentParser(description="FlockTrack maintenance tasks")
    sub = ap.add_subparsers(dest="command", required=True)

    sub.add_parser("create-tables", help="Create missing tables")

    feed = sub.add_parser("feed-update", help="Run the daily feed accrual now")
    feed.add_argument("--officer-id", type=int, default=None)

    sub.add_parser("backfill-metrics", help="Recompute sale metrics of every archived cycle")

    args = ap.parse_args()
    configure_logging(level=settings.LOG_LEVEL)

    if args.command == "create-tables":
        create_tables()
    elif args.command == "feed-update":
        summary = FeedUpdateRun.model_validate(batch_service.run_feed_update(SessionLocal, officer_id=args.officer_id))
        print(summary.model_dump_json(indent=2))
    elif args.command == "backfill-metrics":
        summary = BackfillRun.model_validate(batch_service.backfill_sale_metrics(SessionLocal))
        print(f"[OK] processed={summary.processed} errors={summary.errors}")
        for failure in summary.failures:
            print(f"  - history {failure['item_id']}: {failure['detail']}")


if __name__ == "__main__":
    main()
