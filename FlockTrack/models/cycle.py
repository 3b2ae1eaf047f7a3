from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    BigInteger, String, Text, DateTime, ForeignKey, Numeric, Integer, CheckConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from utils.db import Base, BigIntPK
from utils.datetime_utils import now_local
from enums.enums import CycleStatusEnum, HistoryStatusEnum


class Cycle(Base):
    """Live production cycle. Ending it moves the episode into CycleHistory."""
    __tablename__ = "cycle"

    cycle_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    farmer_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("farmer.farmer_id"), nullable=False, index=True)
    organization_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(150), nullable=False)

    doc: Mapped[int] = mapped_column(Integer, nullable=False)
    mortality: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    age: Mapped[int] = mapped_column(Integer, default=0, nullable=False)  # accrual checkpoint (days)
    intake: Mapped[Decimal] = mapped_column(Numeric(14, 3), default=Decimal("0"), nullable=False)  # bags pending deduction
    status: Mapped[str] = mapped_column(String(16), default=CycleStatusEnum.active.value, nullable=False)

    # Cycle start; back-dated when a cycle is registered with age > 1
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=now_local, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        default=now_local,
        onupdate=now_local,
        nullable=False
    )

    # Relationships
    farmer: Mapped["Farmer"] = relationship("Farmer", back_populates="cycles")

    @property
    def live_birds(self) -> int:
        return max(0, self.doc - self.mortality)


class CycleHistory(Base):
    """Archived snapshot of an ended cycle."""
    __tablename__ = "cycle_history"

    history_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    cycle_name: Mapped[str] = mapped_column(String(150), nullable=False)
    farmer_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("farmer.farmer_id"), nullable=False, index=True)
    organization_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)

    doc: Mapped[int] = mapped_column(Integer, nullable=False)
    final_intake: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    mortality: Mapped[int] = mapped_column(Integer, nullable=False)
    age: Mapped[int] = mapped_column(Integer, nullable=False)

    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=now_local, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default=HistoryStatusEnum.archived.value, nullable=False)

    # Relationships
    farmer: Mapped["Farmer"] = relationship("Farmer")

    @property
    def is_deleted(self) -> bool:
        return self.status == HistoryStatusEnum.deleted.value


class CycleLog(Base):
    """
    Audit entry attached to exactly one of {cycle, history}.

    Rows are append-only; only the lifecycle transitions move them between
    parents (bulk update, see services.cycle_service._retarget_children).
    """
    __tablename__ = "cycle_log"
    __table_args__ = (
        CheckConstraint("(cycle_id IS NULL) <> (history_id IS NULL)", name="single_parent"),
    )

    log_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    cycle_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("cycle.cycle_id"), index=True)
    history_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("cycle_history.history_id"), index=True)
    user_id: Mapped[int | None] = mapped_column(BigInteger)

    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    value_change: Mapped[Decimal] = mapped_column(Numeric(14, 3), default=Decimal("0"), nullable=False)
    previous_value: Mapped[Decimal | None] = mapped_column(Numeric(14, 3))
    new_value: Mapped[Decimal | None] = mapped_column(Numeric(14, 3))
    note: Mapped[str | None] = mapped_column(Text)
    # Set on the compensating entry written when a mortality report is reverted
    reverts_log_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("cycle_log.log_id"), unique=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=now_local, nullable=False)
