"""Pydantic schemas for Campaign configuration."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from dca_service.models.campaign import MAX_ORDERS_LIMIT


class CampaignCreate(BaseModel):
    symbol: str = Field(min_length=1, max_length=32)
    base_amount: Decimal = Field(gt=0)
    max_orders: int = Field(default=6, ge=1, le=MAX_ORDERS_LIMIT)
    is_active: bool = True

    @field_validator("symbol")
    @classmethod
    def _normalize_symbol(cls, value: str) -> str:
        text = value.strip().upper()
        if not text:
            raise ValueError("must not be empty")
        return text


class CampaignRead(BaseModel):
    id: int
    symbol: str
    base_amount: Decimal
    max_orders: int
    current_order: int
    total_invested: Decimal
    is_active: bool
    last_check: datetime | None
    order_sequence: int
    pending_client_order_id: int | None

    model_config = {"from_attributes": True}
