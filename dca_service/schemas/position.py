"""Pydantic schemas for positions and trailing-stop requests."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, model_validator

from dca_service.models.position import PositionStatus, PositionType


class PositionCreate(BaseModel):
    symbol: str = Field(min_length=1, max_length=32)
    position_type: PositionType = PositionType.LONG
    entry_price: Decimal = Field(gt=0)
    quantity: Decimal = Field(gt=0)


class TrailingStopUpdate(BaseModel):
    enabled: bool
    distance: Decimal | None = Field(default=None, gt=0, lt=100)
    current_price: Decimal | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _distance_required_when_enabling(self):
        if self.enabled and self.distance is None:
            raise ValueError("distance is required when enabling a trailing stop")
        return self


class PositionRead(BaseModel):
    id: int
    symbol: str
    position_type: PositionType
    entry_price: Decimal
    quantity: Decimal
    status: PositionStatus
    exit_price: Decimal | None
    exit_date: datetime | None
    pnl: Decimal | None
    pnl_percentage: Decimal | None
    trailing_stop_enabled: bool
    trailing_stop_distance: Decimal | None
    trailing_stop_price: Decimal | None
    highest_price: Decimal | None
    lowest_price: Decimal | None

    model_config = {"from_attributes": True}
