"""Trailing-stop batch evaluation and position operations.

Each tick loads all ACTIVE positions with a trailing stop, fetches one
current price per symbol, and runs the state machine per position.
"""

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError

from dca_service.engine.report import ItemResult, Outcome, TickReport
from dca_service.errors import ConfigurationError, MarketDataUnavailable
from dca_service.models import Position, PositionType
from dca_service.schemas.position import PositionCreate
from dca_service.services import trailing_stop
from dca_service.services.ports import MarketDataProvider, Store
from dca_service.services.trailing_stop import TrailingStopEvent
from dca_service.utils.constants import MANUAL_CLOSE_REASON, TRAILING_STOP_REASON

logger = logging.getLogger(__name__)


class TrailingStopEngine:
    def __init__(self, store: Store, market_data: MarketDataProvider):
        self.store = store
        self.market_data = market_data
        self._tick_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Batch evaluation
    # ------------------------------------------------------------------

    async def run_trailing_stop_tick(self) -> TickReport:
        """Step every trailing-stop position once against the current price."""
        report = TickReport(kind="trailing_stop")
        if self._tick_lock.locked():
            logger.warning("Skipping overlapping trailing-stop tick")
            report.skipped_overlap = True
            report.finished_at = datetime.now(timezone.utc)
            return report

        async with self._tick_lock:
            positions = self.store.load_active_positions(trailing_only=True)
            logger.info(f"Trailing-stop tick {report.tick_id}: {len(positions)} positions")

            prices = await self._fetch_prices({p.symbol for p in positions})
            for position in positions:
                report.add(self._evaluate_isolated(position, prices.get(position.symbol)))

            report.finished_at = datetime.now(timezone.utc)
            try:
                self.store.append_tick_logs(report.to_tick_logs("position"))
            except SQLAlchemyError as e:
                logger.error(f"Failed to write tick log for {report.tick_id}: {e}")

        logger.info(report.summary())
        return report

    async def _fetch_prices(self, symbols: set[str]) -> dict[str, Decimal | Exception]:
        """One price per symbol; a failed fetch is kept as the exception for that symbol."""
        prices: dict[str, Decimal | Exception] = {}
        for symbol in sorted(symbols):
            try:
                prices[symbol] = await self.market_data.get_current_price(symbol)
            except MarketDataUnavailable as e:
                prices[symbol] = e
            except Exception as e:
                prices[symbol] = MarketDataUnavailable(f"Price fetch failed for {symbol}: {e}")
        return prices

    def _evaluate_isolated(self, position: Position, price) -> ItemResult:
        try:
            if isinstance(price, Exception):
                raise price
            if price is None:
                raise MarketDataUnavailable(f"No price for {position.symbol}")
            return self.evaluate_position(position, price)
        except ConfigurationError:
            raise
        except MarketDataUnavailable as e:
            logger.error(f"[position {position.id}] {e}")
            return ItemResult.error(position.id, position.symbol, e)
        except Exception as e:
            logger.error(f"[position {position.id}] Evaluation error: {e}", exc_info=True)
            return ItemResult.error(position.id, position.symbol, e)

    def evaluate_position(self, position: Position, current_price: Decimal) -> ItemResult:
        """Apply one state-machine step and persist the result."""
        step = trailing_stop.step(position, current_price)

        if step.event == TrailingStopEvent.NONE:
            return ItemResult(
                position.id, position.symbol, Outcome.SKIPPED, "No change",
                {"current_price": str(current_price), "trailing_stop_price": _str(position.trailing_stop_price)},
            )

        old_stop = position.trailing_stop_price
        trailing_stop.apply_changes(position, step.changes)

        if step.event == TrailingStopEvent.UPDATE:
            self.store.save(position)
            moved = "raised" if position.position_type == PositionType.LONG else "lowered"
            logger.info(
                f"[position {position.id}] {position.symbol} stop {moved} {old_stop} -> {position.trailing_stop_price}"
            )
            return ItemResult(
                position.id, position.symbol, Outcome.UPDATED, "Trailing stop moved",
                {
                    "current_price": str(current_price),
                    "trailing_stop_price": _str(position.trailing_stop_price),
                    "highest_price": _str(position.highest_price),
                    "lowest_price": _str(position.lowest_price),
                },
            )

        self.store.save_with_trade(position, trailing_stop.closing_trade(
            position, TRAILING_STOP_REASON,
            notes=f"Trailing stop distance: {position.trailing_stop_distance}%",
        ))
        logger.info(
            f"[position {position.id}] {position.symbol} closed by trailing stop at {position.exit_price}: "
            f"PnL={position.pnl:.2f} ({position.pnl_percentage:.2f}%)"
        )
        return ItemResult(
            position.id, position.symbol, Outcome.CLOSED, "Trailing stop triggered",
            {
                "exit_price": _str(position.exit_price),
                "pnl": _str(position.pnl),
                "pnl_percentage": _str(position.pnl_percentage),
            },
        )

    # ------------------------------------------------------------------
    # Position operations
    # ------------------------------------------------------------------

    def open_position(self, data: PositionCreate) -> Position:
        position = Position(**data.model_dump())
        return self.store.save(position)

    def set_trailing_stop(
        self,
        position_id: int,
        enabled: bool,
        distance=None,
        current_price=None,
    ) -> Position:
        """Enable or disable the trailing stop of a position."""
        position = self.store.get_position(position_id)
        if enabled:
            changes = trailing_stop.enable_changes(position, distance, current_price)
        else:
            changes = trailing_stop.disable_changes(position)
        trailing_stop.apply_changes(position, changes)
        self.store.save(position)
        logger.info(
            f"[position {position.id}] Trailing stop "
            + (f"enabled: distance={position.trailing_stop_distance}% stop={position.trailing_stop_price}"
               if enabled else "disabled")
        )
        return position

    def close_position(self, position_id: int, exit_price, reason: str = MANUAL_CLOSE_REASON) -> Position:
        """Close a position at `exit_price` outside the tick (manual close)."""
        position = self.store.get_position(position_id)
        changes = trailing_stop.close_changes(position, Decimal(str(exit_price)))
        trailing_stop.apply_changes(position, changes)
        self.store.save_with_trade(position, trailing_stop.closing_trade(position, reason))
        logger.info(f"[position {position.id}] {position.symbol} closed ({reason}) at {position.exit_price}: PnL={position.pnl:.2f}")
        return position


def _str(value) -> str | None:
    return None if value is None else str(value)
