"""Tests for the DCA tick: trigger, sizing, isolation, completion and reconciliation."""

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from dca_service.engine.dca_job import DcaEngine
from dca_service.engine.report import Outcome
from dca_service.errors import (
    CampaignExists,
    ConfigurationError,
    ExchangeRejected,
    MarketDataUnavailable,
    PendingOrderUnresolved,
)
from dca_service.models import Campaign
from dca_service.models.campaign import CLIENT_ORDER_ID_SPAN
from dca_service.schemas.campaign import CampaignCreate
from dca_service.services.ports import OrderFill

from tests.conftest import ABOVE_EMA, make_candles, make_lighter_gateway


def _fill(quantity="1", price="90", order_id="ord-1") -> OrderFill:
    return OrderFill(order_id=order_id, actual_quantity=Decimal(quantity), actual_fill_price=Decimal(price))


def _campaign(store, symbol="SOL", base="100", max_orders=6, **kwargs) -> Campaign:
    return store.save(Campaign(symbol=symbol, base_amount=Decimal(base), max_orders=max_orders, **kwargs))


@pytest.fixture
def dca(store, market_data, gateway, settings):
    return DcaEngine(store, market_data, gateway, settings)


# ---------------------------------------------------------------------------
# Single tick behaviour
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_first_order_executes_at_base_amount(dca, store, gateway):
    campaign = _campaign(store)
    gateway.submit_order.return_value = _fill(quantity="1.11", price="90")

    report = await dca.run_dca_tick()

    assert report.outcome_for(campaign.id) == Outcome.EXECUTED
    gateway.submit_order.assert_awaited_once_with("SOL", "BUY", Decimal("100"), campaign.id * CLIENT_ORDER_ID_SPAN + 1)

    saved = store.get_campaign(campaign.id)
    assert saved.current_order == 1
    assert saved.total_invested == Decimal("99.9")
    assert saved.last_check is not None
    assert saved.pending_client_order_id is None

    trades = store.list_trade_records("SOL")
    assert len(trades) == 1
    assert trades[0].reason == "DCA auto order #1"
    assert trades[0].side == "BUY"
    assert trades[0].campaign_id == campaign.id
    assert trades[0].order_id == "ord-1"


@pytest.mark.asyncio
async def test_price_above_ema_is_skipped(dca, store, market_data, gateway):
    campaign = _campaign(store)
    market_data.get_candles.return_value = make_candles(ABOVE_EMA)

    report = await dca.run_dca_tick()

    item = report.items[0]
    assert item.outcome == Outcome.SKIPPED
    assert item.detail["current_price"] == "110.0"
    assert "ema" in item.detail
    gateway.submit_order.assert_not_awaited()
    assert store.get_campaign(campaign.id).current_order == 0
    assert store.list_trade_records() == []


@pytest.mark.asyncio
async def test_completed_campaign_makes_no_calls(dca, store, market_data, gateway):
    campaign = _campaign(store, max_orders=6, current_order=6, total_invested=Decimal("2000"))

    report = await dca.run_dca_tick()

    assert report.outcome_for(campaign.id) == Outcome.COMPLETED
    market_data.get_candles.assert_not_awaited()
    gateway.get_available_balance.assert_not_awaited()
    gateway.submit_order.assert_not_awaited()
    assert store.get_campaign(campaign.id).total_invested == Decimal("2000")


@pytest.mark.asyncio
async def test_market_data_failure_is_isolated(dca, store, market_data, gateway):
    first = _campaign(store, symbol="AAA")
    second = _campaign(store, symbol="BBB")
    candles = make_candles([100.0] * 199 + [90.0])

    async def get_candles(symbol, interval_minutes, limit):
        if symbol == "AAA":
            raise TimeoutError("upstream timeout")
        return candles

    market_data.get_candles.side_effect = get_candles
    gateway.submit_order.return_value = _fill()

    report = await dca.run_dca_tick()

    assert report.outcome_for(first.id) == Outcome.ERROR
    assert report.items[0].detail["error_type"] == "MarketDataUnavailable"
    assert report.outcome_for(second.id) == Outcome.EXECUTED
    assert report.counts["ERROR"] == 1
    assert report.counts["EXECUTED"] == 1
    assert store.get_campaign(first.id).current_order == 0


@pytest.mark.asyncio
async def test_insufficient_balance(dca, store, gateway):
    campaign = _campaign(store)
    gateway.get_available_balance.return_value = Decimal("50")

    report = await dca.run_dca_tick()

    assert report.outcome_for(campaign.id) == Outcome.ERROR
    assert report.items[0].detail["error_type"] == "InsufficientBalance"
    gateway.submit_order.assert_not_awaited()
    saved = store.get_campaign(campaign.id)
    assert saved.current_order == 0
    assert saved.pending_client_order_id is None


@pytest.mark.asyncio
async def test_exchange_rejection_clears_intent(dca, store, gateway):
    campaign = _campaign(store)
    gateway.submit_order.side_effect = ExchangeRejected(21120, "margin check failed")

    report = await dca.run_dca_tick()

    assert report.outcome_for(campaign.id) == Outcome.ERROR
    saved = store.get_campaign(campaign.id)
    assert saved.current_order == 0
    assert saved.total_invested == Decimal("0")
    assert saved.pending_client_order_id is None
    assert store.list_trade_records() == []


@pytest.mark.asyncio
async def test_unknown_submit_failure_keeps_intent(dca, store, gateway):
    campaign = _campaign(store)
    gateway.submit_order.side_effect = TimeoutError("connection reset")

    report = await dca.run_dca_tick()

    assert report.outcome_for(campaign.id) == Outcome.ERROR
    saved = store.get_campaign(campaign.id)
    assert saved.current_order == 0
    assert saved.pending_client_order_id == campaign.id * CLIENT_ORDER_ID_SPAN + 1
    assert saved.pending_amount == Decimal("100")


@pytest.mark.asyncio
async def test_inactive_campaigns_are_not_loaded(dca, store, gateway):
    _campaign(store, is_active=False)

    report = await dca.run_dca_tick()

    assert report.items == []
    gateway.submit_order.assert_not_awaited()


@pytest.mark.asyncio
async def test_gateway_not_ready_aborts_tick(dca, store, market_data, gateway):
    _campaign(store)
    gateway.check_ready.side_effect = ConfigurationError("No Lighter private key configured")

    with pytest.raises(ConfigurationError):
        await dca.run_dca_tick()
    market_data.get_candles.assert_not_awaited()


@pytest.mark.asyncio
async def test_concurrent_update_fails_item(dca, store, market_data, gateway):
    campaign = _campaign(store)
    candles = make_candles([100.0] * 199 + [90.0])

    async def get_candles(symbol, interval_minutes, limit):
        # Another writer bumps the row after this tick loaded it
        other = store.get_campaign(campaign.id)
        other.is_active = True
        store.save(other)
        return candles

    market_data.get_candles.side_effect = get_candles

    report = await dca.run_dca_tick()

    assert report.outcome_for(campaign.id) == Outcome.ERROR
    assert report.items[0].detail["error_type"] == "StaleRecord"
    gateway.submit_order.assert_not_awaited()


@pytest.mark.asyncio
async def test_overlapping_tick_is_skipped(dca, store, market_data):
    _campaign(store)

    async with dca._tick_lock:
        report = await dca.run_dca_tick()

    assert report.skipped_overlap is True
    assert report.items == []
    market_data.get_candles.assert_not_awaited()


@pytest.mark.asyncio
async def test_tick_log_written(dca, store, gateway):
    campaign = _campaign(store)
    gateway.submit_order.return_value = _fill()

    report = await dca.run_dca_tick()

    logs = store.list_tick_logs(report.tick_id)
    assert len(logs) == 1
    assert logs[0].tick_kind == "dca"
    assert logs[0].item_kind == "campaign"
    assert logs[0].item_id == campaign.id
    assert logs[0].outcome == "EXECUTED"
    assert logs[0].details["order_id"] == "ord-1"


# ---------------------------------------------------------------------------
# Across ticks
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_orders_stop_at_max(dca, store, gateway):
    campaign = _campaign(store, max_orders=3)
    gateway.submit_order.return_value = _fill(quantity="1", price="90")

    outcomes = []
    for _ in range(5):
        report = await dca.run_dca_tick()
        outcomes.append(report.outcome_for(campaign.id))

    assert outcomes == [Outcome.EXECUTED] * 3 + [Outcome.COMPLETED] * 2
    amounts = [c.args[2] for c in gateway.submit_order.await_args_list]
    assert amounts == [Decimal("100"), Decimal("150"), Decimal("225")]
    client_ids = [c.args[3] for c in gateway.submit_order.await_args_list]
    assert len(set(client_ids)) == 3

    saved = store.get_campaign(campaign.id)
    assert saved.current_order == 3
    assert saved.total_invested == Decimal("270")
    assert [t.reason for t in reversed(store.list_trade_records("SOL"))] == [
        "DCA auto order #1",
        "DCA auto order #2",
        "DCA auto order #3",
    ]


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

def _pending(store, **kwargs) -> Campaign:
    campaign = _campaign(store, **kwargs)
    campaign.pending_client_order_id = campaign.reserve_client_order_id()
    campaign.pending_amount = Decimal("100")
    return store.save(campaign)


@pytest.mark.asyncio
async def test_pending_fill_is_reconciled_not_resubmitted(dca, store, gateway):
    campaign = _pending(store)
    gateway.find_order.return_value = _fill(quantity="1.1", price="90", order_id=str(campaign.pending_client_order_id))

    report = await dca.run_dca_tick()

    assert report.outcome_for(campaign.id) == Outcome.EXECUTED
    gateway.find_order.assert_awaited_once_with("SOL", campaign.id * CLIENT_ORDER_ID_SPAN + 1)
    gateway.submit_order.assert_not_awaited()
    saved = store.get_campaign(campaign.id)
    assert saved.current_order == 1
    assert saved.total_invested == Decimal("99")
    assert saved.pending_client_order_id is None
    assert store.list_trade_records()[0].reason == "DCA auto order #1 (reconciled)"


@pytest.mark.asyncio
async def test_pending_without_fill_is_cleared_and_evaluated(dca, store, gateway):
    campaign = _pending(store)
    gateway.find_order.return_value = None
    gateway.submit_order.return_value = _fill()

    report = await dca.run_dca_tick()

    assert report.outcome_for(campaign.id) == Outcome.EXECUTED
    gateway.submit_order.assert_awaited_once()
    assert store.get_campaign(campaign.id).current_order == 1


@pytest.mark.asyncio
async def test_pending_lookup_failure_blocks_campaign(dca, store, gateway):
    campaign = _pending(store)
    gateway.find_order.side_effect = ExchangeRejected(None, "Order lookup failed")

    report = await dca.run_dca_tick()

    assert report.outcome_for(campaign.id) == Outcome.ERROR
    assert report.items[0].detail["error_type"] == "PendingOrderUnresolved"
    gateway.submit_order.assert_not_awaited()
    assert store.get_campaign(campaign.id).pending_client_order_id is not None


@pytest.mark.asyncio
async def test_startup_reconciliation(dca, store, gateway):
    filled = _pending(store, symbol="AAA")
    unfilled = _pending(store, symbol="BBB")
    _campaign(store, symbol="CCC")

    async def find_order(symbol, client_order_id):
        if symbol == "AAA":
            return _fill()
        return None

    gateway.find_order.side_effect = find_order

    report = await dca.reconcile_pending_orders()

    assert report.kind == "reconcile"
    assert len(report.items) == 2
    assert report.outcome_for(filled.id) == Outcome.EXECUTED
    assert report.outcome_for(unfilled.id) == Outcome.SKIPPED
    assert store.load_pending_campaigns() == []
    assert store.get_campaign(filled.id).current_order == 1
    assert store.get_campaign(unfilled.id).current_order == 0


@pytest.mark.asyncio
async def test_fill_not_persisted_without_trade_is_reconciled(dca, store, gateway, failing_trade_insert):
    campaign = _campaign(store)
    gateway.submit_order.return_value = _fill(quantity="1.1", price="90")

    report = await dca.run_dca_tick()

    assert report.outcome_for(campaign.id) == Outcome.ERROR
    saved = store.get_campaign(campaign.id)
    assert saved.current_order == 0
    assert saved.total_invested == Decimal("0")
    assert saved.pending_client_order_id == campaign.id * CLIENT_ORDER_ID_SPAN + 1
    assert store.list_trade_records() == []

    # The order did fill; the next tick finds it instead of buying again
    failing_trade_insert()
    gateway.find_order.return_value = _fill(quantity="1.1", price="90")

    report = await dca.run_dca_tick()

    assert report.outcome_for(campaign.id) == Outcome.EXECUTED
    gateway.submit_order.assert_awaited_once()
    saved = store.get_campaign(campaign.id)
    assert saved.current_order == 1
    assert saved.total_invested == Decimal("99")
    trades = store.list_trade_records()
    assert [t.reason for t in trades] == ["DCA auto order #1 (reconciled)"]


# ---------------------------------------------------------------------------
# Through the Lighter gateway
# ---------------------------------------------------------------------------

@pytest.fixture
def lighter_dca(store, market_data, settings):
    gateway = make_lighter_gateway()
    gateway._signer_client.check_client.return_value = None
    gateway.get_available_balance = AsyncMock(return_value=Decimal("1000"))
    return DcaEngine(store, market_data, gateway, settings), gateway


@pytest.mark.asyncio
async def test_lighter_timeout_keeps_intent(lighter_dca, store):
    dca, gateway = lighter_dca
    campaign = _campaign(store)
    gateway._signer_client.create_market_order = AsyncMock(side_effect=TimeoutError("read timed out"))

    report = await dca.run_dca_tick()

    assert report.outcome_for(campaign.id) == Outcome.ERROR
    assert report.items[0].detail["error_type"] == "TimeoutError"
    saved = store.get_campaign(campaign.id)
    assert saved.pending_client_order_id == campaign.id * CLIENT_ORDER_ID_SPAN + 1
    assert saved.pending_amount == Decimal("100")
    assert [c.id for c in store.load_pending_campaigns()] == [campaign.id]


@pytest.mark.asyncio
async def test_lighter_error_response_clears_intent(lighter_dca, store):
    dca, gateway = lighter_dca
    campaign = _campaign(store)
    gateway._signer_client.create_market_order = AsyncMock(
        return_value=(None, SimpleNamespace(code=21120), "insufficient margin")
    )

    report = await dca.run_dca_tick()

    assert report.outcome_for(campaign.id) == Outcome.ERROR
    assert report.items[0].detail["error_type"] == "ExchangeRejected"
    saved = store.get_campaign(campaign.id)
    assert saved.pending_client_order_id is None
    assert saved.current_order == 0
    assert store.load_pending_campaigns() == []


# ---------------------------------------------------------------------------
# Campaign configuration
# ---------------------------------------------------------------------------

def test_create_campaign(dca, store):
    campaign = dca.create_campaign(CampaignCreate(symbol=" sol ", base_amount=Decimal("25")))
    assert campaign.id is not None
    assert campaign.symbol == "SOL"
    assert store.get_campaign_by_symbol("SOL").base_amount == Decimal("25")


def test_pause_and_resume(dca, store):
    campaign = _campaign(store)
    dca.set_campaign_active(campaign.id, False)
    assert store.load_active_campaigns() == []
    dca.set_campaign_active(campaign.id, True)
    assert [c.id for c in store.load_active_campaigns()] == [campaign.id]


def test_reset_campaign(dca, store):
    campaign = _campaign(store, current_order=6, total_invested=Decimal("2077"))
    reset = dca.reset_campaign(campaign.id)
    assert reset.current_order == 0
    assert store.get_campaign(campaign.id).total_invested == Decimal("0")


def test_reset_refused_with_pending_order(dca, store):
    campaign = _pending(store)
    with pytest.raises(PendingOrderUnresolved):
        dca.reset_campaign(campaign.id)


@pytest.mark.asyncio
async def test_market_data_error_type_passthrough(dca, store, market_data):
    campaign = _campaign(store)
    market_data.get_candles.side_effect = MarketDataUnavailable("No candle data for SOL")

    report = await dca.run_dca_tick()

    assert report.outcome_for(campaign.id) == Outcome.ERROR
    assert report.items[0].message == "No candle data for SOL"


@pytest.mark.asyncio
async def test_finished_inactive_campaign_reports_completed(dca, store, market_data):
    campaign = _campaign(store, max_orders=3, current_order=3, is_active=False)

    result = await dca.evaluate_campaign(campaign)

    assert result.outcome == Outcome.COMPLETED
    market_data.get_candles.assert_not_awaited()


@pytest.mark.asyncio
async def test_unfinished_inactive_campaign_is_skipped(dca, store, gateway):
    campaign = _campaign(store, is_active=False)

    result = await dca.evaluate_campaign(campaign)

    assert result.outcome == Outcome.SKIPPED
    gateway.submit_order.assert_not_awaited()


def test_duplicate_campaign_rejected(dca, store):
    dca.create_campaign(CampaignCreate(symbol="SOL", base_amount=Decimal("25")))
    with pytest.raises(CampaignExists):
        dca.create_campaign(CampaignCreate(symbol="sol", base_amount=Decimal("50")))
    assert store.get_campaign_by_symbol("SOL").base_amount == Decimal("25")


@pytest.mark.asyncio
async def test_client_order_ids_not_reused_after_reset(dca, store, gateway):
    campaign = _campaign(store, max_orders=1)
    gateway.submit_order.return_value = _fill()

    await dca.run_dca_tick()
    dca.reset_campaign(campaign.id)
    await dca.run_dca_tick()

    client_ids = [c.args[3] for c in gateway.submit_order.await_args_list]
    assert client_ids == [campaign.id * CLIENT_ORDER_ID_SPAN + 1, campaign.id * CLIENT_ORDER_ID_SPAN + 2]
    assert store.get_campaign(campaign.id).order_sequence == 2


@pytest.mark.asyncio
async def test_rejected_order_consumes_its_client_order_id(dca, store, gateway):
    campaign = _campaign(store)
    gateway.submit_order.side_effect = [ExchangeRejected(21120, "margin check failed"), _fill()]

    await dca.run_dca_tick()
    await dca.run_dca_tick()

    client_ids = [c.args[3] for c in gateway.submit_order.await_args_list]
    assert client_ids == [campaign.id * CLIENT_ORDER_ID_SPAN + 1, campaign.id * CLIENT_ORDER_ID_SPAN + 2]
