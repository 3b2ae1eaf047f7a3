from pydantic import BaseModel
from typing import Optional, List

from schemas.cycle import FeedUpdateOut


class FeedUpdateRun(BaseModel):
    """Summary of one pass of the periodic feed accrual job"""
    processed: int
    updated: int
    errors: int
    updates: List[FeedUpdateOut]


class BackfillRun(BaseModel):
    """Summary of a metrics backfill over archived histories"""
    processed: int
    errors: int
    failures: List[dict]


class JobQueued(BaseModel):
    """Response when a job is enqueued on Celery"""
    task_id: str
    status: str  # "queued"
    officer_id: Optional[int] = None
