"""DCA decision engine and per-tick batch evaluation.

One tick walks every active campaign and, per campaign:
candle fetch → EMA trigger → order sizing → balance check → order → persist.

Each campaign is isolated: any failure is turned into an ERROR entry in the
tick report and the next campaign is evaluated. Only ConfigurationError
(gateway not usable, store unreachable) aborts the whole tick.
"""

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError

from dca_service.config import Settings
from dca_service.engine.report import ItemResult, Outcome, TickReport
from dca_service.errors import (
    CampaignExists,
    ConfigurationError,
    ExchangeRejected,
    InsufficientBalance,
    MarketDataUnavailable,
    PendingOrderUnresolved,
)
from dca_service.models import Campaign, TradeRecord
from dca_service.schemas.campaign import CampaignCreate
from dca_service.services import signal_engine
from dca_service.services.ports import MarketDataProvider, OrderFill, OrderGateway, Store
from dca_service.utils.constants import DCA_REASON_TEMPLATE

logger = logging.getLogger(__name__)


class DcaEngine:
    def __init__(
        self,
        store: Store,
        market_data: MarketDataProvider,
        gateway: OrderGateway,
        settings: Settings,
    ):
        self.store = store
        self.market_data = market_data
        self.gateway = gateway
        self.settings = settings
        self.multiplier = Decimal(str(settings.order_multiplier))
        self._tick_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Batch evaluation
    # ------------------------------------------------------------------

    async def run_dca_tick(self) -> TickReport:
        """Evaluate every active campaign once, skipping if a prior tick is still in-flight."""
        report = TickReport(kind="dca")
        if self._tick_lock.locked():
            logger.warning("Skipping overlapping DCA tick")
            report.skipped_overlap = True
            report.finished_at = datetime.now(timezone.utc)
            return report

        async with self._tick_lock:
            await self.gateway.check_ready()
            campaigns = self.store.load_active_campaigns()
            logger.info(f"DCA tick {report.tick_id}: {len(campaigns)} active campaigns")

            for campaign in campaigns:
                report.add(await self._evaluate_isolated(campaign))

            report.finished_at = datetime.now(timezone.utc)
            self._record(report)

        logger.info(report.summary())
        return report

    async def _evaluate_isolated(self, campaign: Campaign) -> ItemResult:
        try:
            return await self.evaluate_campaign(campaign)
        except ConfigurationError:
            raise
        except (MarketDataUnavailable, ExchangeRejected, InsufficientBalance, PendingOrderUnresolved) as e:
            logger.error(f"[{campaign.symbol}] {e}")
            return ItemResult.error(campaign.id, campaign.symbol, e)
        except Exception as e:
            logger.error(f"[{campaign.symbol}] Evaluation error: {e}", exc_info=True)
            return ItemResult.error(campaign.id, campaign.symbol, e)

    def _record(self, report: TickReport):
        try:
            self.store.append_tick_logs(report.to_tick_logs("campaign"))
        except SQLAlchemyError as e:
            logger.error(f"Failed to write tick log for {report.tick_id}: {e}")

    # ------------------------------------------------------------------
    # Single campaign
    # ------------------------------------------------------------------

    async def evaluate_campaign(self, campaign: Campaign) -> ItemResult:
        """Run the DCA decision for one campaign. Raises item-scoped errors."""
        symbol = campaign.symbol

        if campaign.pending_client_order_id is not None:
            reconciled = await self._resolve_pending(campaign)
            if reconciled is not None:
                return reconciled

        if campaign.is_completed:
            logger.info(f"[{symbol}] Max orders reached ({campaign.current_order}/{campaign.max_orders})")
            return ItemResult(
                campaign.id, symbol, Outcome.COMPLETED, "Max orders reached",
                {"current_order": campaign.current_order, "max_orders": campaign.max_orders},
            )

        if not campaign.is_active:
            return ItemResult(campaign.id, symbol, Outcome.SKIPPED, "Campaign inactive")

        # Step 1: Fetch market data
        try:
            candles = await self.market_data.get_candles(
                symbol, self.settings.candle_interval_minutes, self.settings.candle_limit
            )
        except MarketDataUnavailable:
            raise
        except Exception as e:
            raise MarketDataUnavailable(f"Candle fetch failed for {symbol}: {e}") from e

        if candles is None or len(candles) == 0:
            raise MarketDataUnavailable(f"Empty candle data for {symbol}")

        # Step 2: Trend filter
        signal = signal_engine.evaluate_dca_entry(candles["close"], self.settings.ema_period)
        logger.info(
            f"[{symbol}] price={signal.current_price} ema{self.settings.ema_period}={signal.ema:.4f} "
            f"distance={signal.price_distance:.2f}%"
        )

        if not signal.should_buy:
            return ItemResult(
                campaign.id, symbol, Outcome.SKIPPED,
                f"Price not below EMA{self.settings.ema_period}",
                signal.as_details(),
            )

        # Step 3: Size and fund the order
        amount = signal_engine.order_amount(campaign.base_amount, campaign.current_order, self.multiplier)
        balance = await self.gateway.get_available_balance(self.settings.quote_asset)
        if balance < amount:
            raise InsufficientBalance(self.settings.quote_asset, amount, balance)

        # Step 4: Record intent, then submit
        client_order_id = campaign.reserve_client_order_id()
        campaign.pending_client_order_id = client_order_id
        campaign.pending_amount = amount
        campaign.pending_since = datetime.now(timezone.utc)
        self.store.save(campaign)

        logger.info(f"[{symbol}] Placing DCA order #{campaign.current_order + 1}: {amount} {self.settings.quote_asset}")
        try:
            fill = await self.gateway.submit_order(symbol, "BUY", amount, client_order_id)
        except ExchangeRejected:
            # Definitive rejection: nothing was filled, drop the intent
            self._clear_pending(campaign)
            self.store.save(campaign)
            raise

        # Step 5: Persist the fill
        order_number = self._apply_fill(campaign, fill, notes=(
            f"EMA{self.settings.ema_period}: {signal.ema:.2f}, distance: {signal.price_distance:.2f}%"
        ))
        details = signal.as_details()
        details.update(_fill_details(fill, amount))
        return ItemResult(
            campaign.id, symbol, Outcome.EXECUTED, f"DCA order #{order_number} executed", details,
        )

    def _apply_fill(self, campaign: Campaign, fill: OrderFill, notes: str | None = None, reconciled: bool = False) -> int:
        """Advance the campaign by one confirmed fill and append its trade record.

        Both are written in one transaction; on failure the stored campaign keeps
        its pending intent and the fill is picked up by reconciliation.
        """
        now = datetime.now(timezone.utc)
        order_number = campaign.current_order + 1
        reason = DCA_REASON_TEMPLATE.format(order_number=order_number)
        if reconciled:
            reason += " (reconciled)"
        record = TradeRecord(
            symbol=campaign.symbol,
            side="BUY",
            price=fill.actual_fill_price,
            quantity=fill.actual_quantity,
            total_amount=fill.total_amount,
            reason=reason,
            notes=notes,
            order_id=fill.order_id,
            campaign_id=campaign.id,
            timestamp=now,
        )

        campaign.current_order = order_number
        campaign.total_invested = campaign.total_invested + fill.total_amount
        campaign.last_check = now
        self._clear_pending(campaign)
        self.store.save_with_trade(campaign, record)
        logger.info(
            f"[{campaign.symbol}] DCA order #{campaign.current_order} filled: "
            f"{fill.actual_quantity} @ {fill.actual_fill_price}"
        )
        return campaign.current_order

    @staticmethod
    def _clear_pending(campaign: Campaign):
        campaign.pending_client_order_id = None
        campaign.pending_amount = None
        campaign.pending_since = None

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def _resolve_pending(self, campaign: Campaign) -> ItemResult | None:
        """Settle an order intent left by an interrupted evaluation.

        Returns an EXECUTED result when the order turns out to have filled,
        None when it never reached the exchange (the intent is cleared).
        """
        client_order_id = campaign.pending_client_order_id
        try:
            fill = await self.gateway.find_order(campaign.symbol, client_order_id)
        except Exception as e:
            raise PendingOrderUnresolved(
                f"Order {client_order_id} for {campaign.symbol} could not be looked up: {e}"
            ) from e

        if fill is None:
            logger.warning(f"[{campaign.symbol}] Pending order {client_order_id} has no fill; clearing intent")
            self._clear_pending(campaign)
            self.store.save(campaign)
            return None

        amount = campaign.pending_amount
        order_number = self._apply_fill(campaign, fill, notes="Recovered from exchange order history", reconciled=True)
        logger.warning(f"[{campaign.symbol}] Reconciled pending order {client_order_id} as DCA order #{order_number}")
        return ItemResult(
            campaign.id, campaign.symbol, Outcome.EXECUTED,
            f"DCA order #{order_number} reconciled from exchange",
            _fill_details(fill, amount),
        )

    async def reconcile_pending_orders(self) -> TickReport:
        """Resolve every outstanding order intent. Called once on startup."""
        report = TickReport(kind="reconcile")
        for campaign in self.store.load_pending_campaigns():
            try:
                result = await self._resolve_pending(campaign)
                if result is None:
                    result = ItemResult(campaign.id, campaign.symbol, Outcome.SKIPPED, "Pending order not filled; intent cleared")
            except Exception as e:
                logger.error(f"[{campaign.symbol}] Reconciliation failed: {e}")
                result = ItemResult.error(campaign.id, campaign.symbol, e)
            report.add(result)
        report.finished_at = datetime.now(timezone.utc)
        if report.items:
            self._record(report)
        logger.info(report.summary())
        return report

    # ------------------------------------------------------------------
    # Campaign configuration
    # ------------------------------------------------------------------

    def create_campaign(self, data: CampaignCreate) -> Campaign:
        if self.store.get_campaign_by_symbol(data.symbol) is not None:
            raise CampaignExists(f"A campaign for {data.symbol} already exists")
        campaign = Campaign(**data.model_dump())
        return self.store.save(campaign)

    def set_campaign_active(self, campaign_id: int, active: bool) -> Campaign:
        """Start/stop (pause/resume) a campaign."""
        campaign = self.store.get_campaign(campaign_id)
        campaign.is_active = active
        self.store.save(campaign)
        logger.info(f"[{campaign.symbol}] Campaign {'activated' if active else 'deactivated'}")
        return campaign

    def reset_campaign(self, campaign_id: int) -> Campaign:
        """Restart a campaign's order sequence from the base amount."""
        campaign = self.store.get_campaign(campaign_id)
        if campaign.pending_client_order_id is not None:
            raise PendingOrderUnresolved(
                f"Campaign {campaign_id} has an unresolved order {campaign.pending_client_order_id}"
            )
        campaign.current_order = 0
        campaign.total_invested = Decimal("0")
        self.store.save(campaign)
        logger.info(f"[{campaign.symbol}] Campaign reset")
        return campaign


def _fill_details(fill: OrderFill, amount: Decimal | None) -> dict:
    return {
        "order_id": fill.order_id,
        "amount": str(amount) if amount is not None else None,
        "quantity": str(fill.actual_quantity),
        "price": str(fill.actual_fill_price),
        "total": str(fill.total_amount),
    }
