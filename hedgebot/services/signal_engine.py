"""Breakout signal generation from futures candles.

A Donchian-style breakout over the last LOOKBACK candles: a close at or above
the prior highs is a BUY, at or below the prior lows a SELL. Each entry opens
a *virtual* position with symmetric take-profit / stop-loss levels; those
levels produce the TAKE_PROFIT_* / STOP_LOSS_* signals the bot consumes.

The virtual position is the generator's own bookkeeping and is unrelated to
the bot's real trades.
"""

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from hedgebot.engine.state import Side, Signal
from hedgebot.services.market_data import fetch_candles

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Virtual position tracking
# ---------------------------------------------------------------------------

@dataclass
class VirtualPosition:
    side: Side
    entry_price: float
    stop_loss: float
    take_profit: float


class SignalTracker:
    """Holds the generator's current virtual position between evaluations."""

    def __init__(self):
        self.position: VirtualPosition | None = None

    def enter(self, side: Side, price: float, delta: float):
        self.position = VirtualPosition(
            side=side,
            entry_price=price,
            stop_loss=price - side.sign * delta,
            take_profit=price + side.sign * delta,
        )

    def clear(self):
        self.position = None


# ---------------------------------------------------------------------------
# Pure evaluation
# ---------------------------------------------------------------------------

def evaluate_signal(candles: pd.DataFrame, tracker: SignalTracker, lookback: int, delta: float) -> Signal:
    """Evaluate the latest candle against the breakout channel.

    Args:
        candles: OHLC DataFrame, oldest first. The last row is the candle
            being evaluated; the ``lookback - 1`` rows before it form the channel.
        tracker: Virtual position state, updated in place.
        lookback: Channel length including the evaluated candle.
        delta: Take-profit / stop-loss distance from the virtual entry.
    """
    if candles is None or len(candles) < lookback:
        logger.debug(f"Not enough candles for signal ({0 if candles is None else len(candles)}/{lookback})")
        return Signal.WAIT

    window = candles.iloc[-lookback:]
    last_close = float(window["close"].iloc[-1])
    channel_high = float(np.max(window["high"].to_numpy()[:-1]))
    channel_low = float(np.min(window["low"].to_numpy()[:-1]))

    position = tracker.position
    if position is None:
        if last_close >= channel_high:
            tracker.enter(Side.LONG, last_close, delta)
            logger.info(
                f"BUY breakout at {last_close:.2f} | SL {tracker.position.stop_loss:.2f} "
                f"TP {tracker.position.take_profit:.2f}"
            )
            return Signal.BUY
        if last_close <= channel_low:
            tracker.enter(Side.SHORT, last_close, delta)
            logger.info(
                f"SELL breakout at {last_close:.2f} | SL {tracker.position.stop_loss:.2f} "
                f"TP {tracker.position.take_profit:.2f}"
            )
            return Signal.SELL
        return Signal.WAIT

    if position.side is Side.LONG:
        if last_close <= position.stop_loss:
            tracker.clear()
            logger.info(f"STOP_LOSS_LONG at {last_close:.2f}")
            return Signal.STOP_LOSS_LONG
        if last_close >= position.take_profit:
            tracker.clear()
            logger.info(f"TAKE_PROFIT_LONG at {last_close:.2f}")
            return Signal.TAKE_PROFIT_LONG
    else:
        if last_close >= position.stop_loss:
            tracker.clear()
            logger.info(f"STOP_LOSS_SHORT at {last_close:.2f}")
            return Signal.STOP_LOSS_SHORT
        if last_close <= position.take_profit:
            tracker.clear()
            logger.info(f"TAKE_PROFIT_SHORT at {last_close:.2f}")
            return Signal.TAKE_PROFIT_SHORT

    return Signal.WAIT


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class SignalGenerator:
    """Refreshes the signal from fresh candles and hands it to the monitor.

    ``refresh`` runs on its own schedule; ``consume`` is called once per tick
    and returns a pending non-WAIT signal exactly once.
    """

    def __init__(self, client, interval: str, lookback: int, delta: float):
        self.client = client
        self.interval = interval
        self.lookback = lookback
        self.delta = delta
        self.tracker = SignalTracker()
        self._pending: Signal = Signal.WAIT
        self.last_refresh_error: str | None = None

    @property
    def pending(self) -> Signal:
        return self._pending

    async def refresh(self) -> Signal:
        """Fetch candles and evaluate. A non-WAIT result is held until consumed."""
        candles = await fetch_candles(self.client, self.interval, self.lookback)
        if candles.empty:
            self.last_refresh_error = "no candles"
            return Signal.WAIT
        self.last_refresh_error = None

        signal = evaluate_signal(candles, self.tracker, self.lookback, self.delta)
        if signal is not Signal.WAIT:
            if self._pending is not Signal.WAIT:
                logger.warning(f"Unconsumed signal {self._pending.value} replaced by {signal.value}")
            self._pending = signal
        return signal

    def consume(self) -> Signal:
        signal = self._pending
        self._pending = Signal.WAIT
        return signal
