"""Market data fetching.

Candles come from the Binance futures klines endpoint through the same
client that places orders (klines are public, so this also works in dry-run).
"""

import logging

import pandas as pd

from hedgebot.utils.constants import INTERVAL_SECONDS

logger = logging.getLogger(__name__)

# Binance kline row: [open_time, open, high, low, close, volume, close_time, ...]
_KLINE_COLUMNS = ["open_time", "open", "high", "low", "close", "volume"]


async def fetch_candles(client, interval: str, limit: int) -> pd.DataFrame:
    """Fetch the most recent candles for the client's symbol.

    Args:
        client: A ``BinanceFuturesClient`` (anything with ``get_klines``).
        interval: Candle interval (e.g. "3m", "1h").
        limit: Number of candles to fetch, including the one still forming.

    Returns:
        DataFrame with float open/high/low/close columns indexed by open time,
        oldest first. Empty on error.
    """
    if interval not in INTERVAL_SECONDS:
        raise ValueError(f"Unsupported candle interval: {interval}")

    try:
        klines = await client.get_klines(interval, limit)
    except Exception as e:
        logger.error(f"Error fetching {interval} candles for {client.symbol}: {e}")
        return _empty_frame()
    return _parse_candles(klines)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _empty_frame() -> pd.DataFrame:
    return pd.DataFrame(columns=["open", "high", "low", "close"], dtype=float)


def _parse_candles(klines: list[list]) -> pd.DataFrame:
    """Parse a klines response into an OHLC DataFrame.

    Each row: [1716800000000, "67000.1", "67100.0", "66950.5", "67050.2", "123.4", ...]
    """
    try:
        if not klines:
            return _empty_frame()

        records = [dict(zip(_KLINE_COLUMNS, row[:len(_KLINE_COLUMNS)])) for row in klines]
        df = pd.DataFrame(records)
        if df.empty:
            return _empty_frame()

        df["open_time"] = pd.to_datetime(df["open_time"], unit="ms", utc=True)
        for col in ("open", "high", "low", "close"):
            df[col] = pd.to_numeric(df[col], errors="coerce")
        df = df.set_index("open_time").sort_index()
        return df[["open", "high", "low", "close"]].dropna()
    except Exception as e:
        logger.error(f"Failed to parse candles: {e}")
        return _empty_frame()
