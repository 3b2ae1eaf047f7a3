from __future__ import annotations

from datetime import datetime, date
from decimal import Decimal
from sqlalchemy import (
    BigInteger, String, Text, DateTime, Date, ForeignKey, Numeric, Integer, CheckConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, foreign

from utils.db import Base, BigIntPK, FeedBreakdown
from utils.datetime_utils import now_local


class SaleEvent(Base):
    """
    A sale of birds from one cycle (or its archived history).

    The figures stored here are the ones first entered; the authoritative
    figures live in the SaleReport pointed to by selected_report_id.
    """
    __tablename__ = "sale_event"
    __table_args__ = (
        CheckConstraint("(cycle_id IS NULL) <> (history_id IS NULL)", name="single_parent"),
    )

    sale_event_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    cycle_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("cycle.cycle_id"), index=True)
    history_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("cycle_history.history_id"), index=True)

    sale_date: Mapped[date] = mapped_column(Date, nullable=False)
    location: Mapped[str] = mapped_column(String(255), nullable=False)
    party: Mapped[str | None] = mapped_column(String(255))

    birds_sold: Mapped[int] = mapped_column(Integer, nullable=False)
    total_weight: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)  # kg
    price_per_kg: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    medicine_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    feed_consumed: Mapped[list[dict]] = mapped_column(FeedBreakdown, nullable=False)

    # No FK: sale_report already references sale_event
    selected_report_id: Mapped[int | None] = mapped_column(BigInteger)

    created_by: Mapped[int | None] = mapped_column(BigInteger)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=now_local, nullable=False)

    # Relationships
    reports: Mapped[list["SaleReport"]] = relationship(
        "SaleReport", back_populates="sale_event", order_by="SaleReport.report_id"
    )
    selected_report: Mapped["SaleReport | None"] = relationship(
        "SaleReport",
        primaryjoin="foreign(SaleEvent.selected_report_id) == SaleReport.report_id",
        viewonly=True,
    )


class SaleReport(Base):
    """Immutable revision of a sale's figures. New corrections append a new row."""
    __tablename__ = "sale_report"

    report_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    sale_event_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("sale_event.sale_event_id"), nullable=False, index=True
    )

    birds_sold: Mapped[int] = mapped_column(Integer, nullable=False)
    total_weight: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    price_per_kg: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    medicine_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    feed_consumed: Mapped[list[dict] | None] = mapped_column(FeedBreakdown)

    adjustment_note: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[int | None] = mapped_column(BigInteger)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=now_local, nullable=False)

    sale_event: Mapped["SaleEvent"] = relationship("SaleEvent", back_populates="reports")


class SaleMetrics(Base):
    """Derived KPIs of one cycle or history. Rebuilt by services.sale_metrics_service."""
    __tablename__ = "sale_metrics"
    __table_args__ = (
        CheckConstraint("(cycle_id IS NULL) <> (history_id IS NULL)", name="single_parent"),
    )

    metrics_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    cycle_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("cycle.cycle_id"), unique=True)
    history_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("cycle_history.history_id"), unique=True)

    # Performance
    fcr: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False)
    survival_rate: Mapped[Decimal] = mapped_column(Numeric(7, 3), nullable=False)
    epi: Mapped[Decimal] = mapped_column(Numeric(10, 3), nullable=False)
    average_weight: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False)
    average_age: Mapped[Decimal] = mapped_column(Numeric(7, 2), nullable=False)

    # Totals
    total_birds_sold: Mapped[int] = mapped_column(Integer, nullable=False)
    total_doc: Mapped[int] = mapped_column(Integer, nullable=False)
    total_mortality: Mapped[int] = mapped_column(Integer, nullable=False)
    total_weight: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    total_feed_bags: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)

    # Financials
    doc_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    feed_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    medicine_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    total_revenue: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    net_profit: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    # Prices in force when computed
    feed_price_used: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    doc_price_used: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    last_recalculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=now_local, nullable=False)
