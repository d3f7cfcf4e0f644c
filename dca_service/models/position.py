"""Position model: open or closed position with optional trailing stop."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlmodel import SQLModel, Field


class PositionType(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class PositionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


class Position(SQLModel, table=True):
    __tablename__ = "position"

    id: int | None = Field(default=None, primary_key=True)
    symbol: str = Field(index=True)
    position_type: PositionType = PositionType.LONG
    entry_price: Decimal = Field(max_digits=28, decimal_places=8)
    quantity: Decimal = Field(max_digits=28, decimal_places=8)
    status: PositionStatus = Field(default=PositionStatus.ACTIVE, index=True)
    entry_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Set once, at close
    exit_price: Decimal | None = Field(default=None, max_digits=28, decimal_places=8)
    exit_date: datetime | None = None
    pnl: Decimal | None = Field(default=None, max_digits=28, decimal_places=8)
    pnl_percentage: Decimal | None = Field(default=None, max_digits=28, decimal_places=8)

    # Trailing stop
    trailing_stop_enabled: bool = Field(default=False, index=True)
    trailing_stop_distance: Decimal | None = Field(default=None, max_digits=10, decimal_places=4)  # percent
    trailing_stop_price: Decimal | None = Field(default=None, max_digits=28, decimal_places=8)
    highest_price: Decimal | None = Field(default=None, max_digits=28, decimal_places=8)
    lowest_price: Decimal | None = Field(default=None, max_digits=28, decimal_places=8)

    version: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
