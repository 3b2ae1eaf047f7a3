from workers.celery_config import app
from services import batch_service
from utils.db import SessionLocal
from utils.logging_config import get_logger

logger = get_logger("tasks")


@app.task(bind=True, max_retries=2)
def update_feed_task(self, officer_id: int | None = None):
    """Daily feed accrual over active cycles. Per-cycle failures are counted, not retried."""
    try:
        return batch_service.run_feed_update(SessionLocal, officer_id=officer_id)
    except Exception as exc:
        # Only infrastructure failures (e.g. listing cycles) reach here
        logger.error("update_feed_task_failed", extra={"officer_id": officer_id}, exc_info=exc)
        raise self.retry(exc=exc, countdown=60)


@app.task(bind=True, max_retries=2)
def backfill_sale_metrics_task(self):
    """Recompute sale metrics for every archived cycle."""
    try:
        return batch_service.backfill_sale_metrics(SessionLocal)
    except Exception as exc:
        logger.error("backfill_sale_metrics_task_failed", exc_info=exc)
        raise self.retry(exc=exc, countdown=60)
