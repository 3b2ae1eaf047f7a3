from pydantic import BaseModel, Field, field_validator, model_validator
from datetime import datetime
from decimal import Decimal

from enums.enums import CorrectionFieldEnum


class CycleCreate(BaseModel):
    farmer_id: int = Field(..., gt=0)
    name: str = Field(..., min_length=1, max_length=150)
    doc: int = Field(..., gt=0, description="Day-old chicks placed")
    age: int = Field(
        1, ge=1, le=40,
        description="Age in days at registration. The cycle start is back-dated accordingly."
    )


class CycleEnd(BaseModel):
    intake: Decimal = Field(..., ge=0, description="Total bags consumed, deducted from the farmer stock")


class CycleCorrection(BaseModel):
    """
    Manual correction of an active cycle or an archived history.

    Exactly one of cycle_id / history_id.
    """
    cycle_id: int | None = Field(None, gt=0)
    history_id: int | None = Field(None, gt=0)
    field: CorrectionFieldEnum
    new_value: int = Field(..., ge=0)
    reason: str = Field(..., max_length=500)

    @field_validator("reason")
    @classmethod
    def reason_min_length(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 3:
            raise ValueError("reason must be at least 3 characters")
        return v

    @model_validator(mode="after")
    def one_target(self):
        if (self.cycle_id is None) == (self.history_id is None):
            raise ValueError("provide exactly one of cycle_id or history_id")
        return self


class MortalityCreate(BaseModel):
    amount: int = Field(..., gt=0)
    reason: str | None = Field(None, max_length=500)


class CycleOut(BaseModel):
    cycle_id: int
    farmer_id: int
    organization_id: int
    name: str
    doc: int
    mortality: int
    age: int
    intake: float
    status: str
    created_at: datetime

    class Config:
        from_attributes = True


class CycleHistoryOut(BaseModel):
    history_id: int
    cycle_name: str
    farmer_id: int
    organization_id: int
    doc: int
    final_intake: float
    mortality: int
    age: int
    start_date: datetime
    end_date: datetime
    status: str  # 'archived' | 'deleted'

    class Config:
        from_attributes = True


class CycleLogOut(BaseModel):
    log_id: int
    cycle_id: int | None
    history_id: int | None
    user_id: int | None
    kind: str
    value_change: float
    previous_value: float | None
    new_value: float | None
    note: str | None
    reverts_log_id: int | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class FeedUpdateOut(BaseModel):
    cycle_name: str
    added_bags: float
    new_age: int


class CycleEndOut(BaseModel):
    success: bool
    history_id: int


class CycleReopenOut(BaseModel):
    success: bool
    cycle_id: int
