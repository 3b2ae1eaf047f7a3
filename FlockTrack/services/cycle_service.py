"""
Cycle lifecycle: Active → Archived → (reopened | Deleted).

An episode is always exactly one row: a live Cycle or a CycleHistory.
end_cycle / reopen_cycle swap one for the other in a single unit of work and
move every CycleLog, SaleEvent and SaleMetrics row to the new parent.

All functions only flush; commit with utils.transactions.uow.
"""
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import select, update, func
from sqlalchemy.orm import Session

from enums.enums import (
    CycleLogKindEnum,
    CycleStatusEnum,
    HistoryStatusEnum,
    CorrectionFieldEnum,
    FarmerStatusEnum,
    NotificationSeverityEnum,
)
from models.cycle import Cycle, CycleHistory, CycleLog
from models.farmer import Farmer
from models.sale import SaleEvent, SaleMetrics
from services import stock_service
from services.feed_service import update_cycle_feed
from services.sale_metrics_service import recalculate_for_cycle
from services.notification_service import notify_after_commit
from services.calculation_service import MAX_SCHEDULE_AGE
from utils.datetime_utils import now_local, start_for_age
from utils.exceptions import NotFoundError, ValidationError, ConflictError, InsufficientStockError
from utils.logging_config import get_logger

logger = get_logger("cycles")

MIN_REASON_LENGTH = 3


# ==================== STATE ====================

@dataclass(frozen=True)
class ActiveCycle:
    cycle: Cycle


@dataclass(frozen=True)
class ArchivedCycle:
    history: CycleHistory

    @property
    def is_deleted(self) -> bool:
        return self.history.is_deleted


CycleState = ActiveCycle | ArchivedCycle


def get_cycle_state(db: Session, cycle_id: int | None = None, history_id: int | None = None) -> CycleState:
    """
    Resolve an episode by either id.

    Raises:
        ValidationError: neither or both ids
        NotFoundError: no such row
    """
    if (cycle_id is None) == (history_id is None):
        raise ValidationError("Provide exactly one of cycle_id or history_id")
    if cycle_id is not None:
        cycle = db.get(Cycle, cycle_id)
        if cycle is None:
            raise NotFoundError("Cycle", cycle_id)
        return ActiveCycle(cycle)
    history = db.get(CycleHistory, history_id)
    if history is None:
        raise NotFoundError("CycleHistory", history_id)
    return ArchivedCycle(history)


def _lock_cycle(db: Session, cycle_id: int) -> Cycle:
    cycle = db.execute(
        select(Cycle).where(Cycle.cycle_id == cycle_id).with_for_update()
    ).scalar_one_or_none()
    if cycle is None:
        raise NotFoundError("Cycle", cycle_id)
    return cycle


def _lock_history(db: Session, history_id: int) -> CycleHistory:
    history = db.execute(
        select(CycleHistory).where(CycleHistory.history_id == history_id).with_for_update()
    ).scalar_one_or_none()
    if history is None:
        raise NotFoundError("CycleHistory", history_id)
    return history


def _retarget_children(
    db: Session,
    *,
    from_cycle_id: int | None = None,
    from_history_id: int | None = None,
    to_cycle_id: int | None = None,
    to_history_id: int | None = None,
) -> None:
    """Move logs, sales and the metrics row from one parent to the other."""
    for model in (CycleLog, SaleEvent, SaleMetrics):
        src = model.cycle_id == from_cycle_id if from_cycle_id is not None else model.history_id == from_history_id
        db.execute(
            update(model)
            .where(src)
            .values(cycle_id=to_cycle_id, history_id=to_history_id)
            .execution_options(synchronize_session="fetch")
        )


def _has_sales(db: Session, cycle_id: int | None = None, history_id: int | None = None) -> bool:
    cond = SaleEvent.cycle_id == cycle_id if cycle_id is not None else SaleEvent.history_id == history_id
    return db.execute(select(func.count(SaleEvent.sale_event_id)).where(cond)).scalar_one() > 0


def _log(db: Session, kind: CycleLogKindEnum, note: str, user_id: int | None, *,
         cycle_id: int | None = None, history_id: int | None = None,
         value_change=Decimal("0"), previous_value=None, new_value=None,
         reverts_log_id: int | None = None) -> CycleLog:
    entry = CycleLog(
        cycle_id=cycle_id,
        history_id=history_id,
        user_id=user_id,
        kind=kind.value,
        value_change=value_change,
        previous_value=previous_value,
        new_value=new_value,
        note=note,
        reverts_log_id=reverts_log_id,
    )
    db.add(entry)
    return entry


# ==================== QUERIES ====================

def list_active_cycles(db: Session, officer_id: int | None = None) -> list[Cycle]:
    """Active cycles of active farmers, optionally only those under one officer."""
    q = (
        select(Cycle)
        .join(Farmer, Farmer.farmer_id == Cycle.farmer_id)
        .where(Cycle.status == CycleStatusEnum.active.value, Farmer.status == FarmerStatusEnum.active.value)
    )
    if officer_id is not None:
        q = q.where(Farmer.officer_id == officer_id)
    return list(db.execute(q.order_by(Cycle.cycle_id)).scalars())


def list_histories(db: Session, farmer_id: int, include_deleted: bool = False) -> list[CycleHistory]:
    q = select(CycleHistory).where(CycleHistory.farmer_id == farmer_id)
    if not include_deleted:
        q = q.where(CycleHistory.status == HistoryStatusEnum.archived.value)
    return list(db.execute(q.order_by(CycleHistory.end_date.desc())).scalars())


def list_logs(db: Session, cycle_id: int | None = None, history_id: int | None = None) -> list[CycleLog]:
    state = get_cycle_state(db, cycle_id=cycle_id, history_id=history_id)
    if isinstance(state, ActiveCycle):
        cond = CycleLog.cycle_id == state.cycle.cycle_id
    else:
        cond = CycleLog.history_id == state.history.history_id
    return list(db.execute(select(CycleLog).where(cond).order_by(CycleLog.log_id)).scalars())


# ==================== TRANSITIONS ====================

def create_cycle(
    db: Session,
    farmer_id: int,
    name: str,
    doc: int,
    age: int = 1,
    user_id: int | None = None,
    today: date | None = None,
) -> Cycle:
    """
    Start a cycle for an active farmer.

    The start date is back-dated so that today is day `age`; the initial
    intake is computed right away with a forced feed update.
    """
    if doc <= 0:
        raise ValidationError("DOC must be greater than 0", doc=doc)
    if not 1 <= age <= MAX_SCHEDULE_AGE:
        raise ValidationError(f"Age must be between 1 and {MAX_SCHEDULE_AGE}", age=age)

    farmer = stock_service.get_farmer(db, farmer_id)
    if not farmer.is_active:
        raise NotFoundError("Farmer", farmer_id, f"Farmer {farmer_id} is archived")

    cycle = Cycle(
        farmer_id=farmer.farmer_id,
        organization_id=farmer.organization_id,
        name=name.strip(),
        doc=doc,
        mortality=0,
        age=age,
        intake=Decimal("0"),
        status=CycleStatusEnum.active.value,
        created_at=start_for_age(age, today),
    )
    db.add(cycle)
    db.flush()

    _log(db, CycleLogKindEnum.SYSTEM, f"Cycle started. Initial Age: {age}, Birds: {doc}", user_id,
         cycle_id=cycle.cycle_id)
    update_cycle_feed(db, cycle, user_id, force_update=True,
                      reason="Initial feed intake for cycle start.", today=today)

    notify_after_commit(
        db,
        farmer.organization_id,
        "New Cycle Started",
        f'Cycle "{cycle.name}" started for {farmer.name} with {doc} birds at age {age}.',
        severity=NotificationSeverityEnum.INFO,
        link=f"/cycles/{cycle.cycle_id}",
        metadata={"cycle_id": cycle.cycle_id, "farmer_id": farmer.farmer_id},
    )
    logger.info("cycle_created", extra={"cycle_id": cycle.cycle_id, "farmer_id": farmer_id, "doc": doc, "age": age})
    return cycle


def end_cycle(
    db: Session,
    cycle_id: int,
    intake,
    user_id: int | None = None,
    user_name: str | None = None,
) -> dict:
    """
    Archive an active cycle and realize its intake in the stock ledger.

    Steps (one unit of work):
    1. lock cycle and its active farmer
    2. intake must not exceed the farmer's stock
    3. snapshot into CycleHistory
    4. move logs, sales and metrics to the history
    5. SYSTEM log, CYCLE_CLOSE ledger entry, delete the live row
    6. recompute metrics for the history

    Managers are notified after commit.

    Raises:
        NotFoundError: cycle or active farmer missing
        ValidationError / InsufficientStockError: bad intake
    """
    intake = intake if isinstance(intake, Decimal) else Decimal(str(intake))
    if intake < 0:
        raise ValidationError("Intake cannot be negative", intake=intake)

    cycle = _lock_cycle(db, cycle_id)
    farmer = stock_service.lock_farmer(db, cycle.farmer_id, require_active=True)

    available = Decimal(str(farmer.main_stock))
    if intake > available:
        raise InsufficientStockError(
            farmer.farmer_id,
            intake,
            available,
            message=f"Insufficient stock to end cycle: requested {intake:.2f} bags, available {available:.2f} bags",
        )

    history = CycleHistory(
        cycle_name=cycle.name,
        farmer_id=cycle.farmer_id,
        organization_id=cycle.organization_id,
        doc=cycle.doc,
        final_intake=intake,
        mortality=cycle.mortality,
        age=cycle.age,
        start_date=cycle.created_at,
        end_date=now_local(),
        status=HistoryStatusEnum.archived.value,
    )
    db.add(history)
    db.flush()

    _retarget_children(db, from_cycle_id=cycle.cycle_id, to_history_id=history.history_id)
    _log(db, CycleLogKindEnum.SYSTEM, f"Cycle Ended. Total Consumption: {intake:.2f} bags.", user_id,
         history_id=history.history_id)
    stock_service.record_cycle_close(
        db,
        farmer,
        intake,
        history.history_id,
        note=f'Cycle "{cycle.name}" Ended (Started: {cycle.created_at.date().isoformat()}). Consumed: {intake:.2f} bags.',
        user_id=user_id,
    )

    cycle_name = cycle.name
    db.delete(cycle)
    db.flush()

    recalculate_for_cycle(db, history_id=history.history_id)

    notify_after_commit(
        db,
        farmer.organization_id,
        "Cycle Ended",
        f'{user_name or "An officer"} ended cycle "{cycle_name}" for {farmer.name}.',
        details=f"Total consumption: {intake:.2f} bags. Remaining stock: {farmer.main_stock:.2f} bags.",
        severity=NotificationSeverityEnum.INFO,
        link=f"/history/{history.history_id}",
        metadata={"history_id": history.history_id, "farmer_id": farmer.farmer_id, "intake": float(intake)},
    )

    logger.info(
        "cycle_ended",
        extra={"cycle_id": cycle_id, "history_id": history.history_id, "intake": intake, "user_id": user_id},
    )
    return {"success": True, "history_id": history.history_id}


def reopen_cycle(db: Session, history_id: int, user_id: int | None = None) -> dict:
    """
    Bring an archived history back to an active cycle.

    The final intake is returned to the farmer's stock with a REVERSAL
    entry referencing the history id, and every log/sale/metrics row moves
    to the new cycle.

    Raises:
        NotFoundError: history missing or deleted, or the farmer is archived
    """
    history = _lock_history(db, history_id)
    if history.is_deleted:
        raise NotFoundError("CycleHistory", history_id, f"Cycle history {history_id} is deleted")

    farmer = stock_service.lock_farmer(db, history.farmer_id, require_active=True)

    cycle = Cycle(
        farmer_id=history.farmer_id,
        organization_id=history.organization_id,
        name=history.cycle_name,
        doc=history.doc,
        mortality=history.mortality,
        age=history.age,
        intake=history.final_intake,
        status=CycleStatusEnum.active.value,
        created_at=history.start_date,
    )
    db.add(cycle)
    db.flush()

    stock_service.record_cycle_reopen(
        db,
        farmer,
        history.final_intake,
        history.history_id,
        note=f'Cycle "{history.cycle_name}" reopened. Restored {history.final_intake:.2f} bags.',
        user_id=user_id,
    )
    _retarget_children(db, from_history_id=history.history_id, to_cycle_id=cycle.cycle_id)
    _log(db, CycleLogKindEnum.SYSTEM, f"Cycle reopened from history #{history.history_id}.", user_id,
         cycle_id=cycle.cycle_id)

    db.delete(history)
    db.flush()

    recalculate_for_cycle(db, cycle_id=cycle.cycle_id)

    notify_after_commit(
        db,
        farmer.organization_id,
        "Cycle Reopened",
        f'Cycle "{cycle.name}" of {farmer.name} was reopened. {history.final_intake:.2f} bags returned to stock.',
        severity=NotificationSeverityEnum.UPDATE,
        link=f"/cycles/{cycle.cycle_id}",
        metadata={"history_id": history_id, "cycle_id": cycle.cycle_id, "farmer_id": farmer.farmer_id},
    )

    logger.info("cycle_reopened", extra={"history_id": history_id, "cycle_id": cycle.cycle_id, "user_id": user_id})
    return {"success": True, "cycle_id": cycle.cycle_id}


def soft_delete_history(db: Session, history_id: int) -> CycleHistory:
    """Archived → Deleted. Data is kept."""
    history = _lock_history(db, history_id)
    if history.is_deleted:
        raise ConflictError(f"Cycle history {history_id} is already deleted", history_id=history_id)
    history.status = HistoryStatusEnum.deleted.value
    db.flush()
    logger.info("cycle_history_deleted", extra={"history_id": history_id})
    return history


# ==================== CORRECTIONS ====================

def _validate_correction(field: CorrectionFieldEnum, new_value: int, doc: int, mortality: int, active: bool) -> None:
    if field == CorrectionFieldEnum.doc:
        if new_value <= 0:
            raise ValidationError("DOC must be greater than 0", field=field.value, new_value=new_value)
        if new_value < mortality:
            raise ValidationError(
                f"DOC cannot be lower than recorded mortality ({mortality})",
                field=field.value, new_value=new_value,
            )
    elif field == CorrectionFieldEnum.mortality:
        if not 0 <= new_value <= doc:
            raise ValidationError(
                f"Mortality must be between 0 and DOC ({doc})",
                field=field.value, new_value=new_value,
            )
    elif field == CorrectionFieldEnum.age:
        if active and not 1 <= new_value <= MAX_SCHEDULE_AGE:
            raise ValidationError(
                f"Age must be between 1 and {MAX_SCHEDULE_AGE}",
                field=field.value, new_value=new_value,
            )
        if new_value < 0:
            raise ValidationError(
                "Age cannot be negative",
                field=field.value, new_value=new_value,
            )


def correct_cycle(
    db: Session,
    field: CorrectionFieldEnum | str,
    new_value: int,
    reason: str,
    user_id: int | None = None,
    cycle_id: int | None = None,
    history_id: int | None = None,
    today: date | None = None,
) -> dict:
    """
    Correct doc, mortality or age of an active cycle or an archived history.

    Writes a CORRECTION log (old → new, reason). On an active cycle an age
    correction re-anchors the start date, and every correction forces a feed
    recalculation. Metrics are rebuilt when the episode has sales.

    Raises:
        ValidationError: short reason, bad value, unknown field
        ConflictError: history is deleted
        NotFoundError: target missing
    """
    reason = (reason or "").strip()
    if len(reason) < MIN_REASON_LENGTH:
        raise ValidationError(f"Reason must be at least {MIN_REASON_LENGTH} characters")
    try:
        field = CorrectionFieldEnum(field)
    except ValueError:
        raise ValidationError(f"Unknown correction field: {field}", field=str(field))
    if (cycle_id is None) == (history_id is None):
        raise ValidationError("Provide exactly one of cycle_id or history_id")

    if cycle_id is not None:
        target = _lock_cycle(db, cycle_id)
        active = True
    else:
        target = _lock_history(db, history_id)
        if target.is_deleted:
            raise ConflictError(f"Cycle history {history_id} is deleted", history_id=history_id)
        active = False

    _validate_correction(field, new_value, target.doc, target.mortality, active)

    old_value = getattr(target, field.value)
    setattr(target, field.value, new_value)
    if active and field == CorrectionFieldEnum.age:
        target.created_at = start_for_age(new_value, today)

    _log(
        db,
        CycleLogKindEnum.CORRECTION,
        f"{field.value.upper()} corrected from {old_value} to {new_value}. Reason: {reason}",
        user_id,
        cycle_id=cycle_id,
        history_id=history_id,
        value_change=Decimal(new_value - old_value),
        previous_value=Decimal(old_value),
        new_value=Decimal(new_value),
    )
    db.flush()

    if active:
        update_cycle_feed(db, target, user_id, force_update=True,
                          reason=f"Feed recalculated after {field.value} correction: {reason}", today=today)

    if _has_sales(db, cycle_id=cycle_id, history_id=history_id):
        recalculate_for_cycle(db, cycle_id=cycle_id, history_id=history_id)

    logger.info(
        "cycle_corrected",
        extra={"cycle_id": cycle_id, "history_id": history_id, "field": field.value,
               "old_value": old_value, "new_value": new_value},
    )
    return {"success": True}


def add_mortality(
    db: Session,
    cycle_id: int,
    amount: int,
    user_id: int | None = None,
    reason: str | None = None,
    today: date | None = None,
) -> Cycle:
    """Report deaths on an active cycle; intake is recalculated for the new live count."""
    if amount <= 0:
        raise ValidationError("Mortality amount must be greater than 0", amount=amount)

    cycle = _lock_cycle(db, cycle_id)
    if cycle.mortality + amount > cycle.doc:
        raise ValidationError(
            f"Total mortality ({cycle.mortality + amount}) cannot exceed DOC ({cycle.doc})",
            amount=amount, mortality=cycle.mortality, doc=cycle.doc,
        )

    previous = cycle.mortality
    cycle.mortality = previous + amount
    _log(db, CycleLogKindEnum.MORTALITY, reason or "Reported Death", user_id,
         cycle_id=cycle.cycle_id, value_change=Decimal(amount),
         previous_value=Decimal(previous), new_value=Decimal(cycle.mortality))
    db.flush()

    update_cycle_feed(db, cycle, user_id, force_update=True,
                      reason=f"Feed recalculated after mortality of {amount}.", today=today)

    if _has_sales(db, cycle_id=cycle.cycle_id):
        recalculate_for_cycle(db, cycle_id=cycle.cycle_id)

    logger.info("mortality_added", extra={"cycle_id": cycle_id, "amount": amount, "mortality": cycle.mortality})
    return cycle


def revert_mortality(
    db: Session,
    log_id: int,
    user_id: int | None = None,
    today: date | None = None,
) -> CycleLog:
    """
    Undo a mortality report on an active cycle.

    The original log stays; a negative MORTALITY log pointing at it is
    appended and the birds are added back to the live count.

    Raises:
        NotFoundError: log missing
        ValidationError: not a positive mortality report, or the episode is archived
        ConflictError: already reverted
    """
    original = db.get(CycleLog, log_id)
    if original is None:
        raise NotFoundError("CycleLog", log_id)
    if original.kind != CycleLogKindEnum.MORTALITY.value:
        raise ValidationError("Only mortality logs can be reverted", log_id=log_id, kind=original.kind)
    if original.cycle_id is None:
        raise ValidationError("Cannot revert logs of an ended cycle. Reopen the cycle first.", log_id=log_id)
    amount = int(original.value_change)
    if amount <= 0:
        raise ValidationError("Only positive mortality reports can be reverted", log_id=log_id)

    already = db.execute(
        select(CycleLog.log_id).where(CycleLog.reverts_log_id == log_id)
    ).scalar_one_or_none()
    if already is not None:
        raise ConflictError(f"Mortality log {log_id} is already reverted", log_id=log_id, revert_log_id=already)

    cycle = _lock_cycle(db, original.cycle_id)
    if cycle.mortality < amount:
        raise ValidationError(
            f"Reverting {amount} would make mortality negative ({cycle.mortality} recorded)",
            log_id=log_id, amount=amount, mortality=cycle.mortality,
        )

    previous = cycle.mortality
    cycle.mortality = previous - amount
    entry = _log(db, CycleLogKindEnum.MORTALITY, f"Reverted mortality report #{log_id}", user_id,
                 cycle_id=cycle.cycle_id, value_change=Decimal(-amount),
                 previous_value=Decimal(previous), new_value=Decimal(cycle.mortality),
                 reverts_log_id=log_id)
    db.flush()

    update_cycle_feed(db, cycle, user_id, force_update=True,
                      reason=f"Feed recalculated after reverting mortality of {amount}.", today=today)

    if _has_sales(db, cycle_id=cycle.cycle_id):
        recalculate_for_cycle(db, cycle_id=cycle.cycle_id)

    farmer = db.get(Farmer, cycle.farmer_id)
    notify_after_commit(
        db,
        cycle.organization_id,
        "Mortality Reverted",
        f'{amount} birds restored on cycle "{cycle.name}" of {farmer.name}.',
        severity=NotificationSeverityEnum.UPDATE,
        link=f"/cycles/{cycle.cycle_id}",
        metadata={"cycle_id": cycle.cycle_id, "log_id": log_id, "amount": amount},
    )
    logger.info("mortality_reverted", extra={"cycle_id": cycle.cycle_id, "log_id": log_id, "amount": amount})
    return entry
