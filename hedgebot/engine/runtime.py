"""Bot runtime: wires settings into the store, exchange client, price feed,
signal generator, state machine and monitor loop, and owns their lifecycle.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from hedgebot.engine.errors import FatalBotError, HedgeBotError
from hedgebot.engine.monitor import MonitorLoop
from hedgebot.engine.position_machine import PositionStateMachine, StrategyParams
from hedgebot.engine.scheduler import add_signal_job, remove_signal_job, start_scheduler
from hedgebot.engine.state import PersistedState
from hedgebot.engine.state_store import StateStore
from hedgebot.services.binance_client import BinanceFuturesClient
from hedgebot.services.price_feed import PriceFeed
from hedgebot.services.signal_engine import SignalGenerator

logger = logging.getLogger(__name__)

_runtime: Optional["BotRuntime"] = None


class BotRuntime:
    def __init__(
        self,
        settings,
        store: StateStore | None = None,
        client=None,
        feed=None,
        generator=None,
        notify: Callable[[str], None] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        if notify is None:
            from hedgebot.services.telegram_bot import notify
        self.settings = settings
        self.notify = notify
        self.store = store or StateStore()
        self.client = client or BinanceFuturesClient(
            api_key=settings.binance_api_key,
            api_secret=settings.binance_api_secret,
            symbol=settings.symbol,
            leverage=settings.leverage,
            testnet=settings.binance_testnet,
            dry_run=settings.dry_run,
            timeout=settings.order_timeout_seconds,
        )
        self.feed = feed or PriceFeed(
            symbol=settings.symbol,
            ws_url=settings.price_ws_url,
            reconnect_seconds=settings.price_reconnect_seconds,
        )
        self.generator = generator or SignalGenerator(
            client=self.client,
            interval=settings.signal_interval,
            lookback=settings.signal_lookback,
            delta=settings.signal_tp_sl_delta,
        )
        self.machine = PositionStateMachine(
            state=self.store.load(),
            store=self.store,
            client=self.client,
            params=StrategyParams.from_settings(settings),
            notify=notify,
            clock=clock,
        )
        self.monitor: MonitorLoop | None = None
        self.loop: asyncio.AbstractEventLoop | None = None
        self.fatal_error: str | None = None
        self.started_at: float | None = None
        self._task: asyncio.Task | None = None
        self._lock = asyncio.Lock()
        self._clock = clock

    @property
    def state(self) -> PersistedState:
        return self.machine.state

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def bind_loop(self):
        """Remember the loop the bot runs on (Telegram commands are marshalled onto it)."""
        self.loop = asyncio.get_running_loop()

    async def start(self) -> bool:
        """Start feed, signal job and monitor loop. Returns False if already running."""
        async with self._lock:
            if self.is_running:
                return False
            self.bind_loop()
            self.fatal_error = None
            self.machine.consecutive_order_failures = 0

            self.feed.start()
            try:
                price = await self.feed.wait_for_first_price(self.settings.first_price_timeout_seconds)
            except asyncio.TimeoutError:
                await self.feed.stop()
                raise HedgeBotError(
                    f"No price for {self.settings.symbol} within "
                    f"{self.settings.first_price_timeout_seconds}s, bot not started"
                )

            self._log_resume(price)
            self.machine.set_running(True)
            add_signal_job(self.generator, self.settings.signal_refresh_seconds)
            start_scheduler()

            self.monitor = MonitorLoop(
                machine=self.machine,
                price_source=self.feed.get_current_price,
                signal_source=self.generator.consume,
                poll_interval=self.settings.poll_interval_seconds,
                price_backoff=self.settings.price_backoff_seconds,
                error_backoff=self.settings.error_backoff_seconds,
                notify=self.notify,
            )
            self._task = asyncio.create_task(self._run_monitor(), name="monitor-loop")
            self.started_at = self._clock()
            logger.info(f"Bot started on {self.settings.symbol} (dry_run={self.settings.dry_run})")
            return True

    async def _run_monitor(self):
        try:
            await self.monitor.run()
        except FatalBotError as e:
            # The running flag is left as persisted: the state may not be writable
            self.fatal_error = str(e)
            remove_signal_job()
            await self.feed.stop()

    async def wait(self):
        """Wait for the monitor loop to exit."""
        if self._task is not None:
            await asyncio.shield(self._task)

    async def stop(self) -> bool:
        """Stop after the in-flight tick. Returns False if the loop was not running."""
        async with self._lock:
            if not self.is_running:
                if self.state.running and self.fatal_error is None:
                    self.machine.set_running(False)
                return False
            self.monitor.request_stop()
            await self._task
            self._task = None
            remove_signal_job()
            await self.feed.stop()
            self.machine.set_running(False)
            self.started_at = None
            logger.info("Bot stopped")
            return True

    async def reset(self) -> PersistedState:
        """Wipe the persisted state back to defaults. Only allowed while stopped."""
        async with self._lock:
            if self.is_running:
                raise HedgeBotError("Stop the bot before resetting its state")
            self.machine.state = self.store.reset()
            self.fatal_error = None
            self.notify("Bot state reset to defaults")
            return self.machine.state

    async def resume_if_needed(self):
        """Restart the bot if it was running when the process last stopped."""
        if not self.state.running:
            return
        if self.settings.auto_start:
            logger.info("Bot was running before restart, resuming")
            try:
                await self.start()
            except HedgeBotError as e:
                logger.error(f"Auto-start failed, bot left stopped: {e}")
                self.notify(f"Auto-start failed: {e}")
        else:
            logger.warning("Bot was running before restart; auto_start is off, start it manually")

    async def shutdown(self):
        """Stop the loop (keeping the persisted running flag) and release connections."""
        async with self._lock:
            if self.is_running:
                self.monitor.request_stop()
                await self._task
                self._task = None
                remove_signal_job()
                await self.feed.stop()
        await self.client.close()

    def _log_resume(self, price: float):
        state = self.state
        messages = [f"Bot starting at price {price:.2f}"]
        if state.main_trade:
            main = state.main_trade
            messages.append(
                f"Resuming main {main.side.value} from {main.open_price:.2f} "
                f"(breakthrough {main.breakthrough_price:.2f})"
            )
        if state.hedge_trade:
            hedge = state.hedge_trade
            messages.append(f"Resuming hedge {hedge.side.value} from {hedge.open_price:.2f}")
        if state.main_boundary:
            messages.append(f"Main boundary at {state.main_boundary.boundary_price:.2f}")
        if state.hedge_reentry_boundary:
            messages.append(f"Hedge re-entry level at {state.hedge_reentry_boundary.boundary_price:.2f}")
        if state.last_signal:
            messages.append(f"Last signal {state.last_signal.value}")
        for message in messages:
            logger.info(message)
        self.notify("\n".join(messages))

    def status(self) -> dict:
        state = self.state
        return {
            "running": self.is_running,
            "persisted_running": state.running,
            "symbol": self.settings.symbol,
            "dry_run": self.settings.dry_run,
            "phase": state.phase.value,
            "current_price": self.feed.get_current_price(),
            "last_price": state.last_price,
            "last_signal": state.last_signal.value if state.last_signal else None,
            "pending_signal": self.generator.pending.value,
            "main_trade": state.main_trade.to_dict() if state.main_trade else None,
            "hedge_trade": state.hedge_trade.to_dict() if state.hedge_trade else None,
            "main_boundary": state.main_boundary.to_dict() if state.main_boundary else None,
            "hedge_reentry_boundary": (
                state.hedge_reentry_boundary.to_dict() if state.hedge_reentry_boundary else None
            ),
            "realized_pnl": state.realized_pnl,
            "consecutive_order_failures": self.machine.consecutive_order_failures,
            "ticks": self.monitor.ticks if self.monitor else 0,
            "last_error": self.monitor.last_error if self.monitor else None,
            "fatal_error": self.fatal_error,
            "started_at": self.started_at,
        }


def init_runtime(settings, **kwargs) -> BotRuntime:
    """Create and register the runtime singleton."""
    global _runtime
    _runtime = BotRuntime(settings, **kwargs)
    return _runtime


def get_runtime() -> Optional[BotRuntime]:
    """Get the runtime singleton, or None if not initialized."""
    return _runtime
