from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal


class FarmerCreate(BaseModel):
    organization_id: int = Field(..., gt=0)
    officer_id: int | None = Field(None, gt=0)
    name: str = Field(..., min_length=1, max_length=150)
    initial_stock: Decimal = Field(Decimal("0"), ge=0, description="Opening balance in bags")


class FarmerOut(BaseModel):
    farmer_id: int
    organization_id: int
    officer_id: int | None
    name: str
    status: str  # 'active' | 'archived'
    main_stock: float
    total_consumed: float
    created_at: datetime

    class Config:
        from_attributes = True
