"""Single-threaded monitor loop driving the state machine.

One tick: read price, take the pending signal, hand both to the state
machine, then let it re-run the boundary checks. Ticks never overlap; a stop
request lets the in-flight tick finish before the loop exits.
"""

import asyncio
import logging
from typing import Callable

from hedgebot.engine.errors import FatalBotError
from hedgebot.engine.position_machine import PositionStateMachine
from hedgebot.engine.state import Signal

logger = logging.getLogger(__name__)


class MonitorLoop:
    def __init__(
        self,
        machine: PositionStateMachine,
        price_source: Callable[[], float | None],
        signal_source: Callable[[], Signal],
        poll_interval: float = 1.0,
        price_backoff: float = 0.25,
        error_backoff: float = 2.0,
        notify: Callable[[str], None] | None = None,
    ):
        self.machine = machine
        self.price_source = price_source
        self.signal_source = signal_source
        self.poll_interval = poll_interval
        self.price_backoff = price_backoff
        self.error_backoff = error_backoff
        self._notify = notify or (lambda message: None)
        self._stop = asyncio.Event()
        self.ticks = 0
        self.last_error: str | None = None
        self.fatal_error: str | None = None

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def request_stop(self):
        self._stop.set()

    def _read_signal(self) -> Signal:
        try:
            return Signal.parse(self.signal_source())
        except Exception as e:
            logger.warning(f"Signal generator error, treating as WAIT: {e}")
            return Signal.WAIT

    async def tick(self) -> bool:
        """Run one iteration. Returns False when no price was available."""
        price = self.price_source()
        if price is None:
            return False
        signal = self._read_signal()
        await self.machine.handle_signal(signal, price)
        await self.machine.evaluate_boundaries(signal, price)
        self.ticks += 1
        return True

    async def run(self):
        """Loop until stopped. FatalBotError stops the loop and propagates."""
        self._stop.clear()
        logger.info(f"Monitor loop started (poll every {self.poll_interval}s)")
        try:
            while not self._stop.is_set():
                try:
                    had_price = await self.tick()
                    delay = self.poll_interval if had_price else self.price_backoff
                except FatalBotError as e:
                    self.fatal_error = str(e)
                    logger.critical(f"Monitor loop halted: {e}")
                    self._notify(f"Bot halted: {e}")
                    raise
                except Exception as e:
                    self.last_error = str(e)
                    logger.error(f"Tick failed: {e}", exc_info=True)
                    delay = self.error_backoff
                await self._sleep(delay)
        finally:
            logger.info(f"Monitor loop stopped after {self.ticks} ticks")

    async def _sleep(self, delay: float):
        # Wakes early on stop so shutdown does not wait a full interval
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass
