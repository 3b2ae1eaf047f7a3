from fastapi import APIRouter, Query

from schemas.job import JobQueued

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post(
    "/feed-update",
    response_model=JobQueued,
    status_code=202,
    summary="Enqueue the feed accrual job",
    description=(
            "Runs the daily feed accrual over every active cycle on a Celery worker.\n\n"
            "- `officer_id` limits the run to cycles of farmers under that officer\n"
            "- Re-running on the same day is a no-op for cycles already advanced"
    )
)
def post_feed_update(officer_id: int | None = Query(None, gt=0)):
    from workers.tasks import update_feed_task

    task = update_feed_task.delay(officer_id=officer_id)
    return JobQueued(task_id=task.id, status="queued", officer_id=officer_id)


@router.post(
    "/metrics-backfill",
    response_model=JobQueued,
    status_code=202,
    summary="Enqueue the sale metrics backfill",
)
def post_metrics_backfill():
    from workers.tasks import backfill_sale_metrics_task

    task = backfill_sale_metrics_task.delay()
    return JobQueued(task_id=task.id, status="queued")
