"""
Sales recording.

A SaleEvent keeps the figures first entered; every correction appends an
immutable SaleReport revision and moves selected_report_id to it. Metrics
are rebuilt after each change.
"""
from decimal import Decimal

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from enums.enums import CycleLogKindEnum, NotificationSeverityEnum
from models.cycle import Cycle, CycleHistory, CycleLog
from models.sale import SaleEvent, SaleReport
from schemas.sale import SaleCreate, SaleAdjust
from services.sale_metrics_service import recalculate_for_cycle
from services.notification_service import notify_after_commit
from utils.exceptions import NotFoundError, ValidationError, ConflictError
from utils.logging_config import get_logger

logger = get_logger("sales")


def _breakdown(items) -> list[dict] | None:
    if items is None:
        return None
    return [item.model_dump(mode="json") for item in items]


def _birds_already_sold(db: Session, cycle_id: int) -> int:
    """Birds sold so far on a cycle, using each sale's selected revision."""
    sales = db.execute(select(SaleEvent).where(SaleEvent.cycle_id == cycle_id)).scalars()
    total = 0
    for sale in sales:
        report = sale.selected_report
        total += report.birds_sold if report is not None else sale.birds_sold
    return total


def get_sale_event(db: Session, sale_event_id: int) -> SaleEvent:
    sale = db.get(SaleEvent, sale_event_id)
    if sale is None:
        raise NotFoundError("SaleEvent", sale_event_id)
    return sale


def list_sales(db: Session, cycle_id: int | None = None, history_id: int | None = None) -> list[SaleEvent]:
    cond = SaleEvent.cycle_id == cycle_id if cycle_id is not None else SaleEvent.history_id == history_id
    return list(db.execute(select(SaleEvent).where(cond).order_by(SaleEvent.sale_date, SaleEvent.sale_event_id)).scalars())


def list_sale_reports(db: Session, sale_event_id: int) -> list[SaleReport]:
    get_sale_event(db, sale_event_id)
    return list(
        db.execute(
            select(SaleReport).where(SaleReport.sale_event_id == sale_event_id).order_by(SaleReport.report_id)
        ).scalars()
    )


def create_sale_event(db: Session, cycle_id: int, payload: SaleCreate, user_id: int | None = None) -> SaleEvent:
    """
    Record a sale on an active cycle.

    Validations:
    - sale date not before the cycle start
    - birds sold not above live birds minus birds already sold

    Effects: SaleEvent + first SaleReport (selected), SALES log, metrics rebuild.
    """
    cycle = db.execute(select(Cycle).where(Cycle.cycle_id == cycle_id).with_for_update()).scalar_one_or_none()
    if cycle is None:
        raise NotFoundError("Cycle", cycle_id)

    if payload.sale_date < cycle.created_at.date():
        raise ValidationError(
            f"Sale date {payload.sale_date} is before the cycle start {cycle.created_at.date()}",
            sale_date=payload.sale_date.isoformat(),
        )

    remaining = cycle.live_birds - _birds_already_sold(db, cycle_id)
    if payload.birds_sold > remaining:
        raise ValidationError(
            f"Cannot sell {payload.birds_sold} birds, only {remaining} remaining",
            requested=payload.birds_sold,
            available=remaining,
        )

    feed = _breakdown(payload.feed_consumed)
    sale = SaleEvent(
        cycle_id=cycle.cycle_id,
        sale_date=payload.sale_date,
        location=payload.location.strip(),
        party=payload.party,
        birds_sold=payload.birds_sold,
        total_weight=payload.total_weight,
        price_per_kg=payload.price_per_kg,
        total_amount=payload.total_amount,
        medicine_cost=payload.medicine_cost,
        feed_consumed=feed,
        created_by=user_id,
    )
    db.add(sale)
    db.flush()

    report = SaleReport(
        sale_event_id=sale.sale_event_id,
        birds_sold=payload.birds_sold,
        total_weight=payload.total_weight,
        price_per_kg=payload.price_per_kg,
        total_amount=payload.total_amount,
        medicine_cost=payload.medicine_cost,
        feed_consumed=feed,
        adjustment_note=None,
        created_by=user_id,
    )
    db.add(report)
    db.flush()
    sale.selected_report_id = report.report_id

    db.add(CycleLog(
        cycle_id=cycle.cycle_id,
        user_id=user_id,
        kind=CycleLogKindEnum.SALES.value,
        value_change=Decimal(payload.birds_sold),
        note=(
            f"Sale recorded: {payload.birds_sold} birds at {payload.price_per_kg}/kg. "
            f"Location: {payload.location.strip()}"
        ),
    ))
    db.flush()

    recalculate_for_cycle(db, cycle_id=cycle.cycle_id)

    notify_after_commit(
        db,
        cycle.organization_id,
        "New Sale Recorded",
        f'{payload.birds_sold} birds sold from cycle "{cycle.name}".',
        details=f"Weight: {payload.total_weight} kg. Amount: {payload.total_amount}.",
        severity=NotificationSeverityEnum.SALES,
        link=f"/cycles/{cycle.cycle_id}",
        metadata={"sale_event_id": sale.sale_event_id, "cycle_id": cycle.cycle_id},
    )
    logger.info(
        "sale_created",
        extra={"sale_event_id": sale.sale_event_id, "cycle_id": cycle_id, "birds_sold": payload.birds_sold},
    )
    return sale


def adjust_sale(db: Session, sale_event_id: int, payload: SaleAdjust, user_id: int | None = None) -> SaleReport:
    """
    Append a corrected revision and make it the selected one.

    Past revisions are never modified.

    Raises:
        NotFoundError: sale missing
        ConflictError: the sale belongs to a deleted history
    """
    sale = db.execute(
        select(SaleEvent).where(SaleEvent.sale_event_id == sale_event_id).with_for_update()
    ).scalar_one_or_none()
    if sale is None:
        raise NotFoundError("SaleEvent", sale_event_id)

    if sale.history_id is not None:
        history = db.get(CycleHistory, sale.history_id)
        if history is not None and history.is_deleted:
            raise ConflictError(
                f"Sale {sale_event_id} belongs to a deleted cycle history",
                sale_event_id=sale_event_id,
            )
    else:
        cycle = db.get(Cycle, sale.cycle_id)
        previous = sale.selected_report.birds_sold if sale.selected_report is not None else sale.birds_sold
        remaining = cycle.live_birds - _birds_already_sold(db, cycle.cycle_id) + previous
        if payload.birds_sold > remaining:
            raise ValidationError(
                f"Cannot sell {payload.birds_sold} birds, only {remaining} remaining",
                requested=payload.birds_sold,
                available=remaining,
            )

    revision_count = db.execute(
        select(func.count(SaleReport.report_id)).where(SaleReport.sale_event_id == sale_event_id)
    ).scalar_one()

    report = SaleReport(
        sale_event_id=sale.sale_event_id,
        birds_sold=payload.birds_sold,
        total_weight=payload.total_weight,
        price_per_kg=payload.price_per_kg,
        total_amount=payload.total_amount,
        medicine_cost=payload.medicine_cost,
        feed_consumed=_breakdown(payload.feed_consumed),
        adjustment_note=payload.adjustment_note.strip(),
        created_by=user_id,
    )
    db.add(report)
    db.flush()
    sale.selected_report_id = report.report_id
    db.expire(sale, ["selected_report"])

    db.add(CycleLog(
        cycle_id=sale.cycle_id,
        history_id=sale.history_id,
        user_id=user_id,
        kind=CycleLogKindEnum.SALES.value,
        value_change=Decimal(payload.birds_sold),
        note=f"Sale #{sale.sale_event_id} adjusted (revision {revision_count + 1}): {payload.adjustment_note.strip()}",
    ))
    db.flush()

    recalculate_for_cycle(db, cycle_id=sale.cycle_id, history_id=sale.history_id)

    logger.info(
        "sale_adjusted",
        extra={"sale_event_id": sale_event_id, "report_id": report.report_id, "revision": revision_count + 1},
    )
    return report
