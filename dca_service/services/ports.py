"""Collaborator interfaces the engines depend on."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

import pandas as pd

from dca_service.models import Campaign, Position, TickLog, TradeRecord


@dataclass
class OrderFill:
    order_id: str
    actual_quantity: Decimal
    actual_fill_price: Decimal

    @property
    def total_amount(self) -> Decimal:
        return self.actual_quantity * self.actual_fill_price


class MarketDataProvider(Protocol):
    async def get_candles(self, symbol: str, interval_minutes: int, limit: int) -> pd.DataFrame:
        """Candles oldest first, columns open/high/low/close/volume, indexed by close time."""
        ...

    async def get_current_price(self, symbol: str) -> Decimal:
        ...


class OrderGateway(Protocol):
    async def check_ready(self) -> None:
        """Raise ConfigurationError when the gateway cannot trade."""
        ...

    async def get_available_balance(self, asset: str) -> Decimal:
        ...

    async def submit_order(self, symbol: str, side: str, amount: Decimal, client_order_id: int) -> OrderFill:
        """Market order for `amount` of quote currency.

        Raises ExchangeRejected only when the exchange refused the order; any
        other exception leaves the outcome unknown.
        """
        ...

    async def find_order(self, symbol: str, client_order_id: int) -> OrderFill | None:
        """Look up a previously submitted order; None when the exchange has no fill for it."""
        ...


class Store(Protocol):
    def load_active_campaigns(self) -> list[Campaign]: ...

    def load_active_positions(self, trailing_only: bool = True) -> list[Position]: ...

    def load_pending_campaigns(self) -> list[Campaign]: ...

    def get_campaign(self, campaign_id: int) -> Campaign: ...

    def get_campaign_by_symbol(self, symbol: str) -> Campaign | None: ...

    def get_position(self, position_id: int) -> Position: ...

    def save(self, entity): ...

    def save_with_trade(self, entity, record: TradeRecord) -> TradeRecord: ...

    def append_tick_logs(self, logs: list[TickLog]) -> None: ...
