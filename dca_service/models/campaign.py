"""Campaign model: DCA configuration and progress for one symbol."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlmodel import SQLModel, Field

# Client order ids are campaign_id * span + sequence
CLIENT_ORDER_ID_SPAN = 1_000_000
MAX_ORDERS_LIMIT = 999


class Campaign(SQLModel, table=True):
    __tablename__ = "campaign"

    id: int | None = Field(default=None, primary_key=True)
    symbol: str = Field(index=True, unique=True)  # e.g. "SOL"

    # Sizing
    base_amount: Decimal = Field(max_digits=28, decimal_places=8)  # quote amount of the first order
    max_orders: int = 6

    # Progress
    current_order: int = 0
    total_invested: Decimal = Field(default=Decimal("0"), max_digits=28, decimal_places=8)
    is_active: bool = True
    last_check: datetime | None = None

    # Orders ever submitted; survives resets so client order ids are never reused
    order_sequence: int = 0

    # Order intent written before submission, cleared with the fill
    pending_client_order_id: int | None = None
    pending_amount: Decimal | None = Field(default=None, max_digits=28, decimal_places=8)
    pending_since: datetime | None = None

    version: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_completed(self) -> bool:
        return self.current_order >= self.max_orders

    def reserve_client_order_id(self) -> int:
        """Idempotency key for the next submitted order; advances the sequence."""
        if self.order_sequence + 1 >= CLIENT_ORDER_ID_SPAN:
            raise ValueError(f"Campaign {self.id} has exhausted its client order ids")
        self.order_sequence += 1
        return self.id * CLIENT_ORDER_ID_SPAN + self.order_sequence
