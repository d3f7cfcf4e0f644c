"""Stateless signal computation for the DCA trigger.

All functions are pure computation: no I/O, no database access.
"""

from dataclasses import dataclass
from decimal import Decimal

import numpy as np

from dca_service.errors import InsufficientData

DEFAULT_ORDER_MULTIPLIER = Decimal("1.5")


# ---------------------------------------------------------------------------
# Indicators
# ---------------------------------------------------------------------------

def compute_ema(prices, period: int) -> np.ndarray:
    """Exponential moving average seeded with the simple mean of the first `period` prices.

    Returns an array the same length as `prices`; the first `period - 1`
    entries are NaN.
    """
    values = np.asarray(prices, dtype=float)
    n = len(values)
    if period < 1 or n < period:
        raise InsufficientData(needed=max(period, 1), got=n)

    ema = np.full(n, np.nan)
    k = 2.0 / (period + 1)
    ema[period - 1] = values[:period].mean()
    for i in range(period, n):
        ema[i] = (values[i] - ema[i - 1]) * k + ema[i - 1]
    return ema


# ---------------------------------------------------------------------------
# Sizing
# ---------------------------------------------------------------------------

def order_amount(
    base_amount: Decimal,
    order_index: int,
    multiplier: Decimal = DEFAULT_ORDER_MULTIPLIER,
) -> Decimal:
    """Quote amount for the zero-based `order_index`-th order: base * multiplier^index."""
    if order_index < 0:
        raise ValueError("order_index must be >= 0")
    return Decimal(base_amount) * Decimal(multiplier) ** order_index


# ---------------------------------------------------------------------------
# Entry decision
# ---------------------------------------------------------------------------

@dataclass
class DcaSignal:
    should_buy: bool
    current_price: Decimal
    ema: Decimal
    price_distance: Decimal  # percent, negative when below the EMA

    def as_details(self) -> dict:
        return {
            "current_price": str(self.current_price),
            "ema": str(self.ema),
            "price_distance": f"{self.price_distance:.2f}",
        }


def evaluate_dca_entry(closes, ema_period: int) -> DcaSignal:
    """Buy when the latest close is strictly below the EMA of the closes."""
    values = np.asarray(closes, dtype=float)
    ema = compute_ema(values, ema_period)
    current_price = Decimal(str(float(values[-1])))
    current_ema = Decimal(str(float(ema[-1])))
    price_distance = (current_price - current_ema) / current_ema * 100
    return DcaSignal(
        should_buy=current_price < current_ema,
        current_price=current_price,
        ema=current_ema,
        price_distance=price_distance,
    )
