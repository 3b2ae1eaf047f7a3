from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from sqlalchemy import BigInteger, String, DateTime, Numeric, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from utils.db import Base, BigIntPK
from utils.datetime_utils import now_local


class StockLedgerEntry(Base):
    """Signed, append-only movement of a farmer's feed stock (in bags)."""
    __tablename__ = "stock_ledger_entry"
    __table_args__ = (
        Index("ix_stock_ledger_entry_reference_kind", "reference_id", "kind"),
    )

    entry_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    farmer_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("farmer.farmer_id"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    # Transfer UUID shared by both sides, or the cycle_history id for CYCLE_CLOSE / reopen
    reference_id: Mapped[str | None] = mapped_column(String(64))
    note: Mapped[str | None] = mapped_column(String(500))
    created_by: Mapped[int | None] = mapped_column(BigInteger)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=now_local, nullable=False)

    # Relationships
    farmer: Mapped["Farmer"] = relationship("Farmer", back_populates="ledger_entries")
