"""Shared constants and defaults."""

VALID_INTERVALS = ["1m", "5m", "15m", "30m", "1h", "2h", "4h", "8h", "1d"]

# Interval to hours mapping for APScheduler
INTERVAL_HOURS: dict[str, float] = {
    "1m": 1 / 60,
    "5m": 5 / 60,
    "15m": 0.25,
    "30m": 0.5,
    "1h": 1.0,
    "2h": 2.0,
    "4h": 4.0,
    "8h": 8.0,
    "1d": 24.0,
}

# Candle interval (minutes) to exchange resolution string
MINUTES_TO_RESOLUTION: dict[int, str] = {
    1: "1m",
    5: "5m",
    15: "15m",
    30: "30m",
    60: "1h",
    120: "2h",
    240: "4h",
    480: "8h",
    1440: "1d",
}

DCA_REASON_TEMPLATE = "DCA auto order #{order_number}"
TRAILING_STOP_REASON = "trailing stop triggered"
MANUAL_CLOSE_REASON = "manual close"
