"""
Feed accrual calculator.

A cycle's intake is a pure function of its age and live birds (see
calculation_service.CUMULATIVE_FEED_SCHEDULE). The stored `age` is a
checkpoint: a daily update only applies when today's age is past it, so
running the job twice on the same date changes nothing the second time.

Intake is never written to the stock ledger here; it is realized when the
cycle ends (cycle_service.end_cycle).
"""
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from enums.enums import CycleLogKindEnum
from models.cycle import Cycle, CycleLog
from services.calculation_service import calculate_cumulative_bags
from utils.datetime_utils import days_between, today_local
from utils.logging_config import get_logger

logger = get_logger("feed")

LOG_THRESHOLD_BAGS = Decimal("0.001")


@dataclass(frozen=True)
class FeedCheckpoint:
    """New state computed for a cycle; nothing is persisted yet."""
    new_age: int
    total_bags: Decimal
    previous_intake: Decimal

    @property
    def added_bags(self) -> Decimal:
        return self.total_bags - self.previous_intake


@dataclass(frozen=True)
class FeedUpdateResult:
    cycle_name: str
    added_bags: Decimal
    new_age: int

    def as_dict(self) -> dict:
        return {"cycle_name": self.cycle_name, "added_bags": float(self.added_bags), "new_age": self.new_age}


def compute_age(created_at: datetime | date, today: date) -> int:
    """Age in days; the placement day counts as day 1."""
    return max(1, days_between(today, created_at) + 1)


def plan_feed_update(
    created_at: datetime,
    checkpoint_age: int,
    doc: int,
    mortality: int,
    previous_intake,
    today: date,
    force_update: bool = False,
) -> FeedCheckpoint | None:
    """
    Pure accrual step.

    Returns None when the checkpoint is already current (and not forced),
    otherwise the new age and cumulative intake in bags.
    """
    current_age = compute_age(created_at, today)
    if not force_update and current_age <= (checkpoint_age or 0):
        return None

    live_birds = max(0, doc - mortality)
    total_bags = calculate_cumulative_bags(current_age, live_birds)
    previous = previous_intake if isinstance(previous_intake, Decimal) else Decimal(str(previous_intake or 0))
    return FeedCheckpoint(new_age=current_age, total_bags=total_bags, previous_intake=previous)


def update_cycle_feed(
    db: Session,
    cycle: Cycle,
    user_id: int | None,
    force_update: bool = False,
    reason: str | None = None,
    today: date | None = None,
) -> FeedUpdateResult | None:
    """
    Advance a cycle's feed checkpoint.

    The cycle row is re-read under a lock and the checkpoint re-checked, so a
    concurrent call for the same day becomes a no-op once the first commits.

    Effects:
    - cycle.intake = cumulative bags, cycle.age = current age
    - NOTE log when more than 0.001 bags were added
    - SYSTEM log with previous/new intake when forced

    Returns:
        FeedUpdateResult, or None when nothing changed
    """
    today = today or today_local()
    locked = db.execute(
        select(Cycle).where(Cycle.cycle_id == cycle.cycle_id).with_for_update()
    ).scalar_one_or_none()
    if locked is None:
        return None

    plan = plan_feed_update(
        created_at=locked.created_at,
        checkpoint_age=locked.age,
        doc=locked.doc,
        mortality=locked.mortality,
        previous_intake=locked.intake,
        today=today,
        force_update=force_update,
    )
    if plan is None:
        return None

    locked.intake = plan.total_bags
    locked.age = plan.new_age

    if plan.added_bags > LOG_THRESHOLD_BAGS:
        db.add(CycleLog(
            cycle_id=locked.cycle_id,
            user_id=user_id,
            kind=CycleLogKindEnum.NOTE.value,
            value_change=plan.added_bags,
            note=(
                f"Intake Recalculated: {plan.total_bags:.2f} bags total."
                if force_update
                else f"Daily Consumption: {plan.added_bags:.2f} bags (Age {plan.new_age})"
            ),
        ))

    if force_update:
        db.add(CycleLog(
            cycle_id=locked.cycle_id,
            user_id=user_id,
            kind=CycleLogKindEnum.SYSTEM.value,
            value_change=plan.added_bags,
            previous_value=plan.previous_intake,
            new_value=plan.total_bags,
            note=reason or "Forced feed intake recalculation due to cycle change.",
        ))

    db.flush()
    logger.info(
        "cycle_feed_updated",
        extra={
            "cycle_id": locked.cycle_id,
            "new_age": plan.new_age,
            "added_bags": plan.added_bags,
            "forced": force_update,
        },
    )
    return FeedUpdateResult(cycle_name=locked.name, added_bags=plan.added_bags, new_age=plan.new_age)
