from pydantic import BaseModel, Field, field_validator, model_validator
from datetime import date, datetime
from decimal import Decimal


class FeedItem(BaseModel):
    """One line of a sale's feed breakdown."""
    feed_type: str = Field(..., min_length=1, max_length=50)
    bags: float = Field(..., ge=0)

    @field_validator("feed_type")
    @classmethod
    def strip_feed_type(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("feed_type cannot be blank")
        return v


class SaleFigures(BaseModel):
    birds_sold: int = Field(..., gt=0)
    total_weight: Decimal = Field(..., gt=0, description="kg")
    price_per_kg: Decimal = Field(..., gt=0)
    total_amount: Decimal | None = Field(None, ge=0, description="Defaults to total_weight × price_per_kg")
    medicine_cost: Decimal = Field(Decimal("0"), ge=0)

    @model_validator(mode="after")
    def fill_total_amount(self):
        if self.total_amount is None:
            self.total_amount = (self.total_weight * self.price_per_kg).quantize(Decimal("0.01"))
        return self


class SaleCreate(SaleFigures):
    sale_date: date
    location: str = Field(..., min_length=1, max_length=255)
    party: str | None = Field(None, max_length=255)
    feed_consumed: list[FeedItem] = Field(..., min_length=1)


class SaleAdjust(SaleFigures):
    feed_consumed: list[FeedItem] | None = None
    adjustment_note: str = Field(..., min_length=3, max_length=500)

    @field_validator("feed_consumed")
    @classmethod
    def non_empty_breakdown(cls, v):
        if v is not None and len(v) == 0:
            raise ValueError("feed_consumed cannot be an empty list")
        return v


class SaleReportOut(BaseModel):
    report_id: int
    sale_event_id: int
    birds_sold: int
    total_weight: float
    price_per_kg: float
    total_amount: float
    medicine_cost: float
    feed_consumed: list[FeedItem] | None
    adjustment_note: str | None
    created_by: int | None
    created_at: datetime

    class Config:
        from_attributes = True


class SaleEventOut(BaseModel):
    sale_event_id: int
    cycle_id: int | None
    history_id: int | None
    sale_date: date
    location: str
    party: str | None
    birds_sold: int
    total_weight: float
    total_amount: float
    feed_consumed: list[FeedItem]
    selected_report_id: int | None
    created_at: datetime

    class Config:
        from_attributes = True


class SaleMetricsOut(BaseModel):
    cycle_id: int | None
    history_id: int | None
    fcr: float
    survival_rate: float
    epi: float
    average_weight: float
    average_age: float
    total_birds_sold: int
    total_doc: int
    total_mortality: int
    total_weight: float
    total_feed_bags: float
    doc_cost: float
    feed_cost: float
    medicine_cost: float
    total_revenue: float
    net_profit: float
    feed_price_used: float
    doc_price_used: float
    last_recalculated_at: datetime

    class Config:
        from_attributes = True
