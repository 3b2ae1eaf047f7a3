"""
Batch jobs: daily feed accrual and the sale metrics backfill.

Each item runs in its own unit of work; a failing item is logged, counted
and skipped without aborting the batch.
"""
from datetime import date
from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from enums.enums import HistoryStatusEnum
from models.cycle import Cycle, CycleHistory
from services.cycle_service import list_active_cycles
from services.feed_service import update_cycle_feed
from services.sale_metrics_service import recalculate_for_cycle
from utils.db import SessionLocal
from utils.exceptions import AggregationError
from utils.transactions import uow
from utils.logging_config import get_logger

logger = get_logger("batch")


def run_feed_update(
    session_factory: Callable[[], Session] = SessionLocal,
    officer_id: int | None = None,
    today: date | None = None,
    user_id: int | None = None,
) -> dict:
    """
    Run the daily accrual over every active cycle (optionally one officer's).

    Returns:
        {processed, updated, errors, updates}; `updates` holds only the
        cycles whose checkpoint advanced.
    """
    with session_factory() as db:
        cycle_ids = [c.cycle_id for c in list_active_cycles(db, officer_id=officer_id)]

    updates = []
    errors = 0
    for cycle_id in cycle_ids:
        try:
            with session_factory() as db, uow(db):
                cycle = db.get(Cycle, cycle_id)
                if cycle is None:
                    continue
                result = update_cycle_feed(db, cycle, user_id, today=today)
            if result is not None:
                updates.append(result.as_dict())
        except Exception as exc:
            errors += 1
            logger.error(
                "feed_update_failed",
                extra={"cycle_id": cycle_id},
                exc_info=AggregationError(cycle_id, exc),
            )

    summary = {"processed": len(cycle_ids), "updated": len(updates), "errors": errors, "updates": updates}
    logger.info(
        "feed_update_completed",
        extra={"officer_id": officer_id, "processed": len(cycle_ids), "updated": len(updates), "errors": errors},
    )
    return summary


def backfill_sale_metrics(session_factory: Callable[[], Session] = SessionLocal) -> dict:
    """
    Recompute SaleMetrics for every archived cycle history.

    Returns:
        {processed, errors, failures}
    """
    with session_factory() as db:
        history_ids = list(
            db.execute(
                select(CycleHistory.history_id)
                .where(CycleHistory.status == HistoryStatusEnum.archived.value)
                .order_by(CycleHistory.history_id)
            ).scalars()
        )

    processed = 0
    failures = []
    for history_id in history_ids:
        try:
            with session_factory() as db, uow(db):
                recalculate_for_cycle(db, history_id=history_id)
            processed += 1
        except Exception as exc:
            err = AggregationError(history_id, exc)
            failures.append(err.to_dict())
            logger.error("metrics_backfill_failed", extra={"history_id": history_id}, exc_info=err)

    logger.info("metrics_backfill_completed", extra={"processed": processed, "errors": len(failures)})
    return {"processed": processed, "errors": len(failures), "failures": failures}
