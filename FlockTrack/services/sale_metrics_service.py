"""
Sale metrics aggregation.

recalculate_for_cycle rebuilds the single SaleMetrics row of a cycle or of
an archived history from its current sales. It only reads cycle/history
state and is safe to replay at any time.
"""
from decimal import Decimal

from sqlalchemy import select, delete
from sqlalchemy.orm import Session, selectinload

from config.settings import settings
from models.cycle import Cycle, CycleHistory
from models.sale import SaleEvent, SaleMetrics
from services.calculation_service import (
    count_feed_bags,
    calculate_fcr,
    calculate_survival_rate,
    calculate_average_weight,
    calculate_epi,
    calculate_net_profit,
)
from utils.datetime_utils import now_local
from utils.exceptions import InvalidArgumentsError, NotFoundError
from utils.logging_config import get_logger

logger = get_logger("metrics")

Q2 = Decimal("0.01")
Q3 = Decimal("0.001")
Q4 = Decimal("0.0001")


def _dec(value) -> Decimal:
    if value is None:
        return Decimal("0")
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _sale_figures(sale: SaleEvent) -> dict:
    """Figures of the selected revision when there is one, else the event's own."""
    report = sale.selected_report
    if report is not None:
        return {
            "birds_sold": report.birds_sold,
            "total_weight": _dec(report.total_weight),
            "total_amount": _dec(report.total_amount),
            "medicine_cost": _dec(report.medicine_cost),
            "feed_consumed": report.feed_consumed if report.feed_consumed is not None else sale.feed_consumed,
        }
    return {
        "birds_sold": sale.birds_sold,
        "total_weight": _dec(sale.total_weight),
        "total_amount": _dec(sale.total_amount),
        "medicine_cost": _dec(sale.medicine_cost),
        "feed_consumed": sale.feed_consumed,
    }


def recalculate_for_cycle(
    db: Session,
    cycle_id: int | None = None,
    history_id: int | None = None,
) -> SaleMetrics | None:
    """
    Rebuild the metrics of exactly one of cycle_id / history_id.

    Returns the upserted row, or None when the parent has no sales (any
    existing row is deleted).

    Raises:
        InvalidArgumentsError: neither or both ids given
        NotFoundError: parent does not exist
    """
    if (cycle_id is None) == (history_id is None):
        raise InvalidArgumentsError(
            "Exactly one of cycle_id or history_id is required",
            cycle_id=cycle_id,
            history_id=history_id,
        )

    db.flush()
    if cycle_id is not None:
        key_col, key_val = SaleMetrics.cycle_id, cycle_id
        parent = db.get(Cycle, cycle_id)
        sale_filter = SaleEvent.cycle_id == cycle_id
        entity = "Cycle"
    else:
        key_col, key_val = SaleMetrics.history_id, history_id
        parent = db.get(CycleHistory, history_id)
        sale_filter = SaleEvent.history_id == history_id
        entity = "CycleHistory"
    if parent is None:
        raise NotFoundError(entity, key_val)

    sales = list(
        db.execute(
            select(SaleEvent)
            .where(sale_filter)
            .options(selectinload(SaleEvent.selected_report))
            .execution_options(populate_existing=True)
            .order_by(SaleEvent.sale_event_id)
        ).scalars()
    )

    if not sales:
        db.execute(delete(SaleMetrics).where(key_col == key_val))
        db.flush()
        logger.info("sale_metrics_cleared", extra={"cycle_id": cycle_id, "history_id": history_id})
        return None

    total_birds_sold = 0
    total_weight = Decimal("0")
    total_revenue = Decimal("0")
    total_medicine = Decimal("0")
    total_feed_bags = Decimal("0")
    total_age = 0

    for sale in sales:
        figures = _sale_figures(sale)
        total_birds_sold += figures["birds_sold"]
        total_weight += figures["total_weight"]
        total_revenue += figures["total_amount"]
        total_medicine += figures["medicine_cost"]
        total_feed_bags += count_feed_bags(figures["feed_consumed"])
        # age is a cycle-level value, counted once per sale
        total_age += parent.age

    doc = parent.doc
    mortality = parent.mortality
    age = Decimal(parent.age)

    average_weight = calculate_average_weight(total_weight, total_birds_sold)
    average_age = Decimal(total_age) / Decimal(len(sales))
    fcr = calculate_fcr(total_feed_bags, total_weight)
    survival_rate = calculate_survival_rate(doc, mortality)
    epi = calculate_epi(survival_rate, average_weight, fcr, age)

    doc_price = Decimal(str(settings.DOC_PRICE_PER_BIRD))
    feed_price = Decimal(str(settings.FEED_PRICE_PER_BAG))
    doc_cost = Decimal(doc) * doc_price
    feed_cost = total_feed_bags * feed_price
    net_profit = calculate_net_profit(total_revenue, doc_cost, feed_cost, total_medicine)

    values = {
        "fcr": fcr.quantize(Q4),
        "survival_rate": survival_rate.quantize(Q3),
        "epi": epi.quantize(Q3),
        "average_weight": average_weight.quantize(Q4),
        "average_age": average_age.quantize(Q2),
        "total_birds_sold": total_birds_sold,
        "total_doc": doc,
        "total_mortality": mortality,
        "total_weight": total_weight.quantize(Q3),
        "total_feed_bags": total_feed_bags.quantize(Q3),
        "doc_cost": doc_cost.quantize(Q2),
        "feed_cost": feed_cost.quantize(Q2),
        "medicine_cost": total_medicine.quantize(Q2),
        "total_revenue": total_revenue.quantize(Q2),
        "net_profit": net_profit.quantize(Q2),
        "feed_price_used": feed_price,
        "doc_price_used": doc_price,
        "last_recalculated_at": now_local(),
    }

    metrics = db.execute(select(SaleMetrics).where(key_col == key_val)).scalar_one_or_none()
    if metrics is None:
        metrics = SaleMetrics(cycle_id=cycle_id, history_id=history_id, **values)
        db.add(metrics)
    else:
        for k, v in values.items():
            setattr(metrics, k, v)
    db.flush()

    logger.info(
        "sale_metrics_recalculated",
        extra={
            "cycle_id": cycle_id,
            "history_id": history_id,
            "sales": len(sales),
            "fcr": values["fcr"],
            "epi": values["epi"],
        },
    )
    return metrics
