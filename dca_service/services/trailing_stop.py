"""Trailing-stop state machine.

Pure transition functions over a Position. Nothing here mutates the position
or touches the database: each function returns the field changes to apply,
so callers decide when (and whether) to persist them.

LONG positions ratchet the stop up from the highest observed price, SHORT
positions ratchet it down from the lowest. ACTIVE -> CLOSED is terminal.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from dca_service.errors import InvalidTrailingStop, PositionClosed
from dca_service.models.position import Position, PositionStatus, PositionType
from dca_service.models.trade import TradeRecord

HUNDRED = Decimal("100")


class TrailingStopEvent(str, Enum):
    NONE = "NONE"
    UPDATE = "UPDATE"
    CLOSE = "CLOSE"


@dataclass
class TrailingStopStep:
    event: TrailingStopEvent
    changes: dict = field(default_factory=dict)


def _stop_from_watermark(position_type: PositionType, watermark: Decimal, distance: Decimal) -> Decimal:
    if position_type == PositionType.LONG:
        return watermark * (1 - distance / HUNDRED)
    return watermark * (1 + distance / HUNDRED)


def _validate_distance(position_type: PositionType, distance) -> Decimal:
    if distance is None:
        raise InvalidTrailingStop("distance is required to enable a trailing stop")
    distance = Decimal(str(distance))
    if distance <= 0:
        raise InvalidTrailingStop("distance must be > 0")
    if position_type == PositionType.LONG and distance >= HUNDRED:
        raise InvalidTrailingStop("distance must be < 100 for LONG positions")
    return distance


def close_changes(position: Position, exit_price: Decimal, now: datetime | None = None) -> dict:
    """Field changes that close `position` at `exit_price`, including realized PnL."""
    if position.status == PositionStatus.CLOSED:
        raise PositionClosed(f"Position {position.id} is already closed")

    exit_price = Decimal(exit_price)
    entry = position.entry_price
    if position.position_type == PositionType.LONG:
        move = exit_price - entry
    else:
        move = entry - exit_price

    return {
        "status": PositionStatus.CLOSED,
        "exit_price": exit_price,
        "exit_date": now or datetime.now(timezone.utc),
        "pnl": move * position.quantity,
        "pnl_percentage": move / entry * HUNDRED,
    }


def enable_changes(position: Position, distance, current_price) -> dict:
    """Seed the watermark from max/min(existing or entry, current_price) and compute the stop."""
    if position.status == PositionStatus.CLOSED:
        raise PositionClosed(f"Position {position.id} is closed")

    distance = _validate_distance(position.position_type, distance)
    price = Decimal(str(current_price)) if current_price is not None else position.entry_price

    if position.position_type == PositionType.LONG:
        watermark = max(position.highest_price or position.entry_price, price)
        changes = {"highest_price": watermark}
    else:
        watermark = min(position.lowest_price or position.entry_price, price)
        changes = {"lowest_price": watermark}

    changes.update(
        trailing_stop_enabled=True,
        trailing_stop_distance=distance,
        trailing_stop_price=_stop_from_watermark(position.position_type, watermark, distance),
    )
    return changes


def disable_changes(position: Position) -> dict:
    """Turn the trailing stop off; watermarks are kept so a re-enable resumes from them."""
    return {
        "trailing_stop_enabled": False,
        "trailing_stop_distance": None,
        "trailing_stop_price": None,
    }


def step(position: Position, current_price, now: datetime | None = None) -> TrailingStopStep:
    """Evaluate one observed price against the position's trailing stop."""
    if not position.trailing_stop_enabled or position.status == PositionStatus.CLOSED:
        return TrailingStopStep(TrailingStopEvent.NONE)

    price = Decimal(str(current_price))
    distance = position.trailing_stop_distance
    stop = position.trailing_stop_price

    if stop is None:
        # Enabled without a stop level (e.g. set directly in the store): initialise it
        return TrailingStopStep(TrailingStopEvent.UPDATE, enable_changes(position, distance, price))

    if position.position_type == PositionType.LONG:
        if price <= stop:
            return TrailingStopStep(TrailingStopEvent.CLOSE, close_changes(position, price, now))
        highest = position.highest_price or position.entry_price
        if price > highest:
            return TrailingStopStep(
                TrailingStopEvent.UPDATE,
                {
                    "highest_price": price,
                    "trailing_stop_price": _stop_from_watermark(PositionType.LONG, price, distance),
                },
            )
    else:
        if price >= stop:
            return TrailingStopStep(TrailingStopEvent.CLOSE, close_changes(position, price, now))
        lowest = position.lowest_price or position.entry_price
        if price < lowest:
            return TrailingStopStep(
                TrailingStopEvent.UPDATE,
                {
                    "lowest_price": price,
                    "trailing_stop_price": _stop_from_watermark(PositionType.SHORT, price, distance),
                },
            )

    return TrailingStopStep(TrailingStopEvent.NONE)


def apply_changes(position: Position, changes: dict) -> Position:
    for key, value in changes.items():
        setattr(position, key, value)
    if changes:
        position.updated_at = datetime.now(timezone.utc)
    return position


def closing_trade(position: Position, reason: str, notes: str | None = None) -> TradeRecord:
    """Trade record for a closed position; side is the opposite of the entry direction."""
    side = "SELL" if position.position_type == PositionType.LONG else "BUY"
    return TradeRecord(
        symbol=position.symbol,
        side=side,
        price=position.exit_price,
        quantity=position.quantity,
        total_amount=position.exit_price * position.quantity,
        reason=reason,
        notes=notes,
        position_id=position.id,
        timestamp=position.exit_date or datetime.now(timezone.utc),
    )
