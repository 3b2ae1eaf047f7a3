"""
Calculation service for poultry performance metrics.

Pure Decimal functions, no database access. Used by the feed accrual
calculator and by the sale metrics aggregation.
"""
from decimal import Decimal
from typing import Iterable, Mapping, Any

GRAMS_PER_BAG = Decimal("50000")
KG_PER_BAG = Decimal("50")

# Cumulative feed per bird (grams) by age in days, 0..40
CUMULATIVE_FEED_SCHEDULE: dict[int, int] = {
    0: 0, 1: 16, 2: 36, 3: 60, 4: 88, 5: 120, 6: 156, 7: 196, 8: 240, 9: 288,
    10: 340, 11: 396, 12: 456, 13: 520, 14: 588, 15: 660, 16: 736, 17: 816,
    18: 900, 19: 988, 20: 1080, 21: 1176, 22: 1276, 23: 1380, 24: 1488,
    25: 1600, 26: 1716, 27: 1836, 28: 1960, 29: 2088, 30: 2220, 31: 2356,
    32: 2496, 33: 2640, 34: 2788, 35: 2864, 36: 2944, 37: 3028, 38: 3116,
    39: 3208, 40: 3304,
}
MAX_SCHEDULE_AGE = 40


# ==================== FEED ====================

def cumulative_feed_grams(age: int) -> int:
    """
    Cumulative grams eaten per bird up to `age`.

    Ages <= 0 give 0; ages beyond the table are capped at day 40.
    """
    if age <= 0:
        return 0
    return CUMULATIVE_FEED_SCHEDULE[min(age, MAX_SCHEDULE_AGE)]


def calculate_cumulative_bags(age: int, live_birds: int) -> Decimal:
    """
    Total bags a flock has eaten up to `age`.

    Fórmula:
    bags = schedule[min(age, 40)] × live_birds / 50000
    """
    grams = Decimal(cumulative_feed_grams(age)) * Decimal(max(0, live_birds))
    return grams / GRAMS_PER_BAG


def count_feed_bags(breakdown: Iterable[Mapping[str, Any]] | None) -> Decimal:
    """Sum of `bags` across a feed breakdown list."""
    total = Decimal("0")
    for item in breakdown or []:
        total += Decimal(str(item.get("bags") or 0))
    return total


# ==================== PERFORMANCE ====================

def calculate_fcr(total_feed_bags: Decimal, total_weight_kg: Decimal) -> Decimal:
    """
    Feed conversion ratio.

    Fórmula:
    fcr = (bags × 50 kg) / total_weight_kg     (0 when no weight)
    """
    if total_weight_kg <= 0:
        return Decimal("0")
    return (total_feed_bags * KG_PER_BAG) / total_weight_kg


def calculate_survival_rate(doc: int, mortality: int) -> Decimal:
    """
    Fórmula:
    survival% = (doc - mortality) / doc × 100     (0 when doc = 0)
    """
    if doc <= 0:
        return Decimal("0")
    return Decimal(doc - mortality) / Decimal(doc) * Decimal("100")


def calculate_average_weight(total_weight_kg: Decimal, total_birds_sold: int) -> Decimal:
    if total_birds_sold <= 0:
        return Decimal("0")
    return total_weight_kg / Decimal(total_birds_sold)


def calculate_epi(survival_rate: Decimal, average_weight: Decimal, fcr: Decimal, age: Decimal) -> Decimal:
    """
    European production efficiency index.

    Fórmula:
    epi = survival% × avg_weight / (fcr × age) × 100     (0 when fcr or age is 0)
    """
    if fcr <= 0 or age <= 0:
        return Decimal("0")
    return survival_rate * average_weight / (fcr * age) * Decimal("100")


# ==================== FINANCIAL ====================

def calculate_net_profit(
    total_revenue: Decimal,
    doc_cost: Decimal,
    feed_cost: Decimal,
    medicine_cost: Decimal,
) -> Decimal:
    """
    Fórmula:
    net_profit = revenue - doc_cost - feed_cost - medicine_cost
    """
    return total_revenue - doc_cost - feed_cost - medicine_cost
