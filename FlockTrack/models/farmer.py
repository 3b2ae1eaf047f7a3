from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from sqlalchemy import BigInteger, String, DateTime, Numeric
from sqlalchemy.orm import Mapped, mapped_column, relationship

from utils.db import Base, BigIntPK
from utils.datetime_utils import now_local
from enums.enums import FarmerStatusEnum


class Farmer(Base):
    """
    Farmer account owning a shared feed stock.

    main_stock and total_consumed are only written by services.stock_service;
    main_stock always equals the sum of the farmer's ledger entries.
    """
    __tablename__ = "farmer"

    farmer_id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    officer_id: Mapped[int | None] = mapped_column(BigInteger, index=True)
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    status: Mapped[str] = mapped_column(String(16), default=FarmerStatusEnum.active.value, nullable=False)

    main_stock: Mapped[Decimal] = mapped_column(Numeric(14, 3), default=Decimal("0"), nullable=False)
    total_consumed: Mapped[Decimal] = mapped_column(Numeric(14, 3), default=Decimal("0"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=now_local, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        default=now_local,
        onupdate=now_local,
        nullable=False
    )

    # Relationships
    ledger_entries: Mapped[list["StockLedgerEntry"]] = relationship(
        "StockLedgerEntry", back_populates="farmer", order_by="StockLedgerEntry.entry_id"
    )
    cycles: Mapped[list["Cycle"]] = relationship("Cycle", back_populates="farmer")

    @property
    def is_active(self) -> bool:
        return self.status == FarmerStatusEnum.active.value
