"""TradeRecord model: append-only audit trail of fills and closes."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlmodel import SQLModel, Field


class TradeRecord(SQLModel, table=True):
    __tablename__ = "trade_record"

    id: int | None = Field(default=None, primary_key=True)
    symbol: str = Field(index=True)
    side: str  # "BUY" or "SELL"
    price: Decimal = Field(max_digits=28, decimal_places=8)
    quantity: Decimal = Field(max_digits=28, decimal_places=8)
    total_amount: Decimal = Field(max_digits=28, decimal_places=8)
    reason: str  # "DCA auto order #3", "trailing stop triggered", "manual close"
    notes: str | None = None
    order_id: str | None = None
    campaign_id: int | None = Field(default=None, foreign_key="campaign.id", index=True)
    position_id: int | None = Field(default=None, foreign_key="position.id", index=True)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
