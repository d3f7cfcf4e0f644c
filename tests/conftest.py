"""Shared fixtures: in-memory database, store and mocked exchange collaborators."""

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pandas as pd
import pytest
from sqlalchemy import event
from sqlalchemy.exc import OperationalError

from dca_service.config import get_settings
from dca_service.database import create_db_and_tables, make_engine
from dca_service.services.lighter_client import LighterGateway
from dca_service.store import SqlStore


def make_candles(closes: list[float]) -> pd.DataFrame:
    """Candle frame in the shape the market data provider returns, oldest first."""
    index = pd.date_range("2026-01-01", periods=len(closes), freq="30min", tz="UTC")
    return pd.DataFrame(
        {
            "open": closes,
            "high": closes,
            "low": closes,
            "close": closes,
            "volume": [1.0] * len(closes),
        },
        index=index,
    )


def make_lighter_gateway(dry_run=False, private_key="0xdead") -> LighterGateway:
    """LighterGateway with SDK clients already 'initialised' and SOL (market 2) cached at 100."""
    gateway = LighterGateway(
        host="https://mock", private_key=private_key, api_key_index=3, account_index=7,
        slippage_pct=1.0, dry_run=dry_run,
    )
    # Skip _ensure_clients by pretending we already initialised
    gateway._api_client = MagicMock()
    gateway._signer_client = MagicMock()
    gateway._markets = {"SOL": 2}
    gateway._market_meta = {2: {"price_decimals": 2, "size_decimals": 4}}
    gateway._get_market_details = AsyncMock(return_value=SimpleNamespace(last_trade_price="100"))
    return gateway


# 200 candles whose last close sits below / above the EMA89
BELOW_EMA = [100.0] * 199 + [90.0]
ABOVE_EMA = [100.0] * 199 + [110.0]


@pytest.fixture
def settings():
    return get_settings(database_url="sqlite://", dry_run=False)


@pytest.fixture
def db_engine():
    engine = make_engine("sqlite://")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(db_engine):
    return SqlStore(db_engine)


@pytest.fixture
def failing_trade_insert(db_engine):
    """Every INSERT into trade_record fails at the database; call the yielded function to stop."""
    def fail(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("INSERT INTO TRADE_RECORD"):
            raise OperationalError(statement, parameters, Exception("disk I/O error"))

    def restore():
        if event.contains(db_engine, "before_cursor_execute", fail):
            event.remove(db_engine, "before_cursor_execute", fail)

    event.listen(db_engine, "before_cursor_execute", fail)
    yield restore
    restore()


@pytest.fixture
def market_data():
    md = AsyncMock()
    md.get_candles.return_value = make_candles(BELOW_EMA)
    md.get_current_price.return_value = Decimal("100")
    return md


@pytest.fixture
def gateway():
    gw = AsyncMock()
    gw.check_ready.return_value = None
    gw.get_available_balance.return_value = Decimal("10000")
    gw.find_order.return_value = None
    return gw
