"""Shared constants."""

VALID_INTERVALS = ["1m", "3m", "5m", "15m", "30m", "1h", "2h", "4h", "8h", "1d"]

INTERVAL_SECONDS: dict[str, int] = {
    "1m": 60,
    "3m": 180,
    "5m": 300,
    "15m": 900,
    "30m": 1800,
    "1h": 3600,
    "2h": 7200,
    "4h": 14400,
    "8h": 28800,
    "1d": 86400,
}

# Binance futures hedge-mode position sides
POSITION_SIDE_LONG = "LONG"
POSITION_SIDE_SHORT = "SHORT"

MAX_LEVERAGE = 125
