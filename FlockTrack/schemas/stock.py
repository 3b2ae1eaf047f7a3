from pydantic import BaseModel, Field, model_validator
from datetime import datetime
from decimal import Decimal

from config.settings import settings


class StockChange(BaseModel):
    """Manual restock or deduction."""
    amount: Decimal = Field(..., gt=0, description="Bags")
    note: str | None = Field(None, max_length=500)

    @model_validator(mode="after")
    def check_upper_bound(self):
        if self.amount > Decimal(str(settings.MAX_STOCK_CHANGE_BAGS)):
            raise ValueError(f"amount cannot exceed {settings.MAX_STOCK_CHANGE_BAGS} bags")
        return self


class StockTransfer(BaseModel):
    source_farmer_id: int = Field(..., gt=0)
    target_farmer_id: int = Field(..., gt=0)
    amount: Decimal = Field(..., gt=0)
    note: str | None = Field(None, max_length=500)

    @model_validator(mode="after")
    def check_distinct(self):
        if self.source_farmer_id == self.target_farmer_id:
            raise ValueError("source and target farmer must differ")
        return self

    @model_validator(mode="after")
    def check_upper_bound(self):
        if self.amount > Decimal(str(settings.MAX_STOCK_CHANGE_BAGS)):
            raise ValueError(f"amount cannot exceed {settings.MAX_STOCK_CHANGE_BAGS} bags")
        return self


class RevertRequest(BaseModel):
    note: str | None = Field(None, max_length=500)


class LedgerEntryOut(BaseModel):
    entry_id: int
    farmer_id: int
    amount: float
    kind: str
    reference_id: str | None
    note: str | None
    created_by: int | None
    created_at: datetime

    class Config:
        from_attributes = True


class TransferOut(BaseModel):
    reference_id: str
    source: LedgerEntryOut
    target: LedgerEntryOut
