"""Market data fetching.

Candle data and mid prices come from Hyperliquid's public info endpoint.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pandas as pd
from hyperliquid.info import Info

from dca_service.errors import MarketDataUnavailable
from dca_service.utils.constants import MINUTES_TO_RESOLUTION

logger = logging.getLogger(__name__)

CANDLE_COLUMNS = ["open", "high", "low", "close", "volume"]


def _to_hl_ticker(asset: str) -> str:
    """Convert asset name to Hyperliquid ticker format.

    Hyperliquid uses 'kX' instead of '1000X' (e.g. kBONK, kPEPE), and quotes
    perps in USD, so a trailing quote suffix is dropped ("SOLUSDT" -> "SOL").
    """
    for suffix in ("USDT", "USDC"):
        if asset.endswith(suffix) and len(asset) > len(suffix):
            asset = asset[: -len(suffix)]
            break
    if asset.startswith("1000"):
        return "k" + asset[4:]
    return asset


class HyperliquidMarketData:
    """MarketDataProvider backed by the Hyperliquid info API (no auth needed)."""

    def __init__(self, base_url: str | None = None):
        self.base_url = base_url
        self._info: Info | None = None

    def _get_info(self) -> Info:
        if self._info is None:
            if self.base_url:
                self._info = Info(self.base_url, skip_ws=True)
            else:
                self._info = Info(skip_ws=True)
        return self._info

    async def get_candles(self, symbol: str, interval_minutes: int, limit: int) -> pd.DataFrame:
        """Fetch the most recent `limit` candles, oldest first.

        Args:
            symbol: Asset ticker (e.g. "SOL", "1000BONK").
            interval_minutes: Candle interval in minutes (e.g. 30).
            limit: Number of candles to return.
        """
        resolution = MINUTES_TO_RESOLUTION.get(interval_minutes)
        if resolution is None:
            raise MarketDataUnavailable(f"Unsupported candle interval: {interval_minutes}m")

        hl_ticker = _to_hl_ticker(symbol)
        now = datetime.now(timezone.utc)
        buffer_candles = int(limit * 1.2)  # 20% buffer
        start_time = now - timedelta(minutes=buffer_candles * interval_minutes)
        start_ms = int(start_time.timestamp() * 1000)
        end_ms = int(now.timestamp() * 1000)

        try:
            info = self._get_info()
            # candles_snapshot is synchronous; run it in the executor
            candles = await asyncio.get_running_loop().run_in_executor(
                None, info.candles_snapshot, hl_ticker, resolution, start_ms, end_ms
            )
        except Exception as e:
            logger.error(f"Error fetching candles for {symbol} ({hl_ticker}): {e}")
            raise MarketDataUnavailable(f"Candle fetch failed for {symbol}: {e}") from e

        df = _parse_candles(candles)
        if df.empty:
            raise MarketDataUnavailable(f"No candle data for {symbol}")
        return df.tail(limit)

    async def get_current_price(self, symbol: str) -> Decimal:
        hl_ticker = _to_hl_ticker(symbol)
        try:
            info = self._get_info()
            mids = await asyncio.get_running_loop().run_in_executor(None, info.all_mids)
        except Exception as e:
            logger.error(f"Error fetching mid price for {symbol} ({hl_ticker}): {e}")
            raise MarketDataUnavailable(f"Price fetch failed for {symbol}: {e}") from e

        mid = mids.get(hl_ticker) if mids else None
        if mid is None:
            raise MarketDataUnavailable(f"No mid price for {symbol}")
        return Decimal(str(mid))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _parse_candles(candles: list[dict]) -> pd.DataFrame:
    """Parse a Hyperliquid candles_snapshot response into an OHLCV DataFrame.

    Each candle dict: {"t": 1772092800000, "T": 1772094599999, "s": "SOL", "i": "30m",
                       "o": "87.212", "c": "87.498", "h": "87.811", "l": "87.212", "v": "1234.5", ...}
    """
    if not candles:
        return pd.DataFrame(columns=CANDLE_COLUMNS)

    records = [
        {
            "close_time": c.get("T", c.get("t")),
            "open": c.get("o"),
            "high": c.get("h"),
            "low": c.get("l"),
            "close": c.get("c"),
            "volume": c.get("v"),
        }
        for c in candles
        if c.get("c") is not None
    ]
    df = pd.DataFrame(records)
    if df.empty:
        return pd.DataFrame(columns=CANDLE_COLUMNS)

    df["close_time"] = pd.to_datetime(df["close_time"], unit="ms", utc=True)
    for col in CANDLE_COLUMNS:
        df[col] = pd.to_numeric(df[col], errors="coerce")
    df = df.set_index("close_time").sort_index()
    return df.dropna(subset=["close"])
