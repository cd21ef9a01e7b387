"""Main/hedge position state machine.

Driven once per tick by the monitor loop: signal handling first, then
boundary handling. Every transition that opens or closes a position calls the
order client first and commits the new state only when the order succeeded; a
failed order abandons the transition for this tick, and the trigger is
re-derived from live price on the next one.

Phases: Flat -> MainOnly -> MainPlusHedge. A hedge is always on the side
opposite the main. When the main closes while a hedge is open, the hedge is
promoted to main verbatim, keeping its own breakthrough price.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable

from hedgebot.engine.boundary import BoundaryEngine, is_boundary_hit
from hedgebot.engine.breakthrough import breakthrough_price, is_beyond_breakthrough, realized_pnl
from hedgebot.engine.errors import OrderExecutionHalted, StateInvariantError
from hedgebot.engine.state import (
    PersistedState,
    ProfitLossEntry,
    Role,
    Side,
    Signal,
    Trade,
    parse_price,
)
from hedgebot.engine.state_store import StateEvent, StateStore

logger = logging.getLogger(__name__)

PROMOTION_RESET = "reset"
PROMOTION_HEDGE_ENTRY = "hedge_entry"


@dataclass
class StrategyParams:
    profit_point: float = 300.0
    boundary_gap: float = 300.0
    trail_activation: float = 400.0
    hedge_reentry_distance: float = 250.0
    hedge_cooldown_seconds: float = 60.0
    order_qty: float = 0.001
    promotion_boundary_policy: str = PROMOTION_RESET
    max_consecutive_order_failures: int = 20

    @classmethod
    def from_settings(cls, settings) -> "StrategyParams":
        return cls(
            profit_point=settings.profit_point,
            boundary_gap=settings.boundary_gap,
            trail_activation=settings.trail_activation,
            hedge_reentry_distance=settings.hedge_reentry_distance,
            hedge_cooldown_seconds=settings.hedge_cooldown_seconds,
            order_qty=settings.order_qty,
            promotion_boundary_policy=settings.promotion_boundary_policy,
            max_consecutive_order_failures=settings.max_consecutive_order_failures,
        )


def _fmt(price: float) -> str:
    return f"{price:.2f}"


class PositionStateMachine:
    """Owns the trading state and every transition applied to it.

    Args:
        state: The loaded snapshot; mutated in place and saved after each change.
        store: Persistence for the snapshot and its event log.
        client: Order client with ``open_position(role, side, qty)`` and
            ``close_position(role, side, qty)`` returning an ``OrderResult``.
        params: Strategy distances and order sizing.
        notify: Fire-and-forget sink for human-readable event strings.
        clock: Epoch-seconds clock (cooldowns, PnL timestamps).
    """

    def __init__(
        self,
        state: PersistedState,
        store: StateStore,
        client,
        params: StrategyParams,
        notify: Callable[[str], None] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.state = state
        self.store = store
        self.client = client
        self.params = params
        self._notify = notify or (lambda message: None)
        self._clock = clock
        self.boundaries = BoundaryEngine(
            gap=params.boundary_gap,
            trail_activation=params.trail_activation,
            reentry_distance=params.hedge_reentry_distance,
            clock=clock,
        )
        self.consecutive_order_failures = 0

    # ------------------------------------------------------------------
    # Tick entry points
    # ------------------------------------------------------------------

    async def on_tick(self, signal, price):
        """Apply one full tick: signal handling, then boundary handling."""
        await self.handle_signal(signal, price)
        await self.evaluate_boundaries(signal, price)

    def observe(self, signal: Signal, price: float):
        """Record the last signal and price, persisting only when they changed."""
        if self.state.last_signal is signal and self.state.last_price == price:
            return
        self.state.last_signal = signal
        self.state.last_price = price
        self._commit()

    async def handle_signal(self, signal, price):
        """Steps 1-3: open main, hedge-or-close main, close hedge."""
        signal = Signal.parse(signal)
        price = parse_price(price)
        if price is None:
            logger.debug("Tick without a valid price, signal ignored")
            return
        self.observe(signal, price)
        if signal is Signal.WAIT:
            return

        entry_side = signal.entry_side
        if entry_side is not None:
            if self.state.main_trade is None:
                await self.open_main(entry_side, price)
            else:
                logger.debug(f"{signal.value} ignored, main {self.state.main_trade.side.value} already open")
            return

        exit_side = signal.exit_side
        main = self.state.main_trade
        if main is not None and exit_side is main.side:
            await self._resolve_main_exit(signal, price)

        hedge = self.state.hedge_trade
        if hedge is not None and exit_side is hedge.side:
            await self._resolve_hedge_exit(signal, price)

    async def evaluate_boundaries(self, signal, price):
        """Steps 4-7: hedge re-entry, main trail, main boundary hit, auto-hedge."""
        signal = Signal.parse(signal)
        price = parse_price(price)
        if price is None:
            return
        await self._check_hedge_reentry(price)
        self.trail_main_boundary(price)
        await self._check_main_boundary_hit(price)
        await self._auto_hedge_guard(signal, price)

    # ------------------------------------------------------------------
    # Signal resolution
    # ------------------------------------------------------------------

    async def _resolve_main_exit(self, signal: Signal, price: float):
        main = self.state.main_trade
        if is_beyond_breakthrough(main.side, price, main.breakthrough_price):
            await self.close_main(price, reason=signal.value)
        else:
            await self.open_hedge(main.side.opposite, price, reason=signal.value)

    async def _resolve_hedge_exit(self, signal: Signal, price: float):
        hedge = self.state.hedge_trade
        if is_beyond_breakthrough(hedge.side, price, hedge.breakthrough_price):
            await self.close_hedge(price, reason=signal.value)
        else:
            logger.debug(
                f"{signal.value} at {_fmt(price)} before hedge breakthrough "
                f"{_fmt(hedge.breakthrough_price)}, hedge kept"
            )

    # ------------------------------------------------------------------
    # Boundary handling
    # ------------------------------------------------------------------

    def trail_main_boundary(self, price: float) -> bool:
        """Tighten the main boundary if the trail has activated. Returns True on change."""
        boundary = self.state.main_boundary
        if self.state.main_trade is None or boundary is None:
            return False
        candidate = self.boundaries.trail_main_boundary(boundary, price)
        if candidate is None:
            return False
        self.state.main_boundary = candidate
        self._commit(StateEvent(
            kind="boundary_trail",
            role=Role.MAIN.value,
            side=candidate.side.value,
            price=candidate.boundary_price,
            message=(
                f"Main {candidate.side.value} boundary trailed "
                f"{_fmt(boundary.boundary_price)} -> {_fmt(candidate.boundary_price)} at price {_fmt(price)}"
            ),
        ))
        return True

    async def _check_main_boundary_hit(self, price: float):
        main = self.state.main_trade
        boundary = self.state.main_boundary
        if main is None or boundary is None or not is_boundary_hit(boundary, price):
            return
        if is_beyond_breakthrough(main.side, boundary.boundary_price, main.breakthrough_price):
            logger.info(f"Main boundary {_fmt(boundary.boundary_price)} hit beyond breakthrough")
            await self.close_main(price, reason="boundary")
        elif self.state.hedge_trade is None:
            reentry = self.state.hedge_reentry_boundary
            if reentry is not None:
                # After a hedge close only the re-entry level re-opens the hedge
                logger.debug(f"Main boundary hit, hedge waits for re-entry at {_fmt(reentry.boundary_price)}")
                return
            logger.info(f"Main boundary {_fmt(boundary.boundary_price)} hit before breakthrough")
            await self.open_hedge(main.side.opposite, price, reason="boundary")

    async def _check_hedge_reentry(self, price: float):
        boundary = self.state.hedge_reentry_boundary
        if boundary is None or self.state.main_trade is None or self.state.hedge_trade is not None:
            return
        if is_boundary_hit(boundary, price):
            logger.info(f"Hedge re-entry level {_fmt(boundary.boundary_price)} crossed at {_fmt(price)}")
            await self.open_hedge(boundary.side, price, reason="reentry")
            return
        candidate = self.boundaries.trail_reentry_boundary(boundary, price)
        if candidate is None:
            return
        self.state.hedge_reentry_boundary = candidate
        self._commit(StateEvent(
            kind="boundary_trail",
            role=Role.HEDGE.value,
            side=candidate.side.value,
            price=candidate.boundary_price,
            message=(
                f"Hedge re-entry {candidate.side.value} level trailed "
                f"{_fmt(boundary.boundary_price)} -> {_fmt(candidate.boundary_price)}"
            ),
        ))

    async def _auto_hedge_guard(self, signal: Signal, price: float):
        main = self.state.main_trade
        if main is None or self.state.hedge_trade is not None or signal is not Signal.WAIT:
            return
        if self.state.hedge_reentry_boundary is not None:
            return
        adverse = (main.open_price - price) * main.side.sign
        if adverse >= self.params.profit_point:
            logger.info(f"Price {_fmt(price)} moved {adverse:.2f} against main without a signal")
            await self.open_hedge(main.side.opposite, price, reason="auto_hedge")

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def open_main(self, side: Side, price: float) -> bool:
        if self.state.main_trade is not None:
            raise StateInvariantError("Refusing to open a second main trade")

        result = await self.client.open_position(Role.MAIN, side, self.params.order_qty)
        if not result.success:
            self._order_failed(f"open main {side.value}", result.error)
            return False
        self._order_succeeded()

        trade = Trade(side=side, open_price=price, breakthrough_price=breakthrough_price(side, price, self.params.profit_point))
        self.state.main_trade = trade
        self.state.main_boundary = self.boundaries.initial_main_boundary(side, price)
        self.state.hedge_reentry_boundary = None
        self._commit(StateEvent(
            kind="main_open",
            role=Role.MAIN.value,
            side=side.value,
            price=price,
            message=(
                f"Main {side.value} opened at {_fmt(price)} | breakthrough {_fmt(trade.breakthrough_price)} "
                f"| boundary {_fmt(self.state.main_boundary.boundary_price)}"
            ),
        ))
        return True

    async def close_main(self, price: float, reason: str) -> bool:
        main = self.state.main_trade
        if main is None:
            return False

        result = await self.client.close_position(Role.MAIN, main.side, self.params.order_qty)
        if not result.success:
            self._order_failed(f"close main {main.side.value}", result.error)
            return False
        self._order_succeeded()

        pnl = realized_pnl(main.side, main.open_price, price)
        self.state.profit_loss_log.append(ProfitLossEntry(role=Role.MAIN, amount=pnl, timestamp=self._clock()))
        self.state.main_trade = None
        self.state.main_boundary = None
        self.state.hedge_reentry_boundary = None
        events = [StateEvent(
            kind="main_close",
            role=Role.MAIN.value,
            side=main.side.value,
            price=price,
            pnl=pnl,
            message=f"Main {main.side.value} closed at {_fmt(price)} ({reason}) | PnL {pnl:+.2f}",
        )]
        if self.state.hedge_trade is not None:
            events.append(self._promote_hedge(price))
        self._commit(*events)
        return True

    def _promote_hedge(self, price: float) -> StateEvent:
        """Move the hedge into the main slot. No order is placed: the position stays open."""
        hedge = self.state.hedge_trade
        self.state.main_trade = Trade(
            side=hedge.side,
            open_price=hedge.open_price,
            breakthrough_price=hedge.breakthrough_price,
        )
        self.state.hedge_trade = None
        self.state.hedge_reentry_boundary = None
        if self.params.promotion_boundary_policy == PROMOTION_HEDGE_ENTRY:
            reference = hedge.open_price
        else:
            reference = price
        self.state.main_boundary = self.boundaries.initial_main_boundary(hedge.side, reference)
        return StateEvent(
            kind="promote",
            role=Role.MAIN.value,
            side=hedge.side.value,
            price=price,
            message=(
                f"Hedge {hedge.side.value} promoted to main | entry {_fmt(hedge.open_price)} "
                f"| breakthrough {_fmt(hedge.breakthrough_price)} "
                f"| boundary {_fmt(self.state.main_boundary.boundary_price)}"
            ),
        )

    async def open_hedge(self, side: Side, price: float, reason: str) -> bool:
        main = self.state.main_trade
        if main is None:
            logger.debug(f"Hedge {side.value} skipped, no main trade")
            return False
        if side is main.side:
            raise StateInvariantError(f"Hedge side {side.value} must be opposite the main")
        if self.state.hedge_trade is not None:
            logger.debug(f"Hedge {side.value} skipped ({reason}), hedge already open")
            return False
        now = self._clock()
        cooldown_until = self.state.hedge_cooldown_until
        if cooldown_until is not None and now < cooldown_until:
            logger.debug(f"Hedge {side.value} skipped ({reason}), cooldown for {cooldown_until - now:.0f}s")
            return False

        result = await self.client.open_position(Role.HEDGE, side, self.params.order_qty)
        if not result.success:
            self._order_failed(f"open hedge {side.value}", result.error)
            return False
        self._order_succeeded()

        trade = Trade(side=side, open_price=price, breakthrough_price=breakthrough_price(side, price, self.params.profit_point))
        self.state.hedge_trade = trade
        self.state.hedge_reentry_boundary = None
        self.state.hedge_cooldown_until = now + self.params.hedge_cooldown_seconds
        self._commit(StateEvent(
            kind="hedge_open",
            role=Role.HEDGE.value,
            side=side.value,
            price=price,
            message=(
                f"Hedge {side.value} opened at {_fmt(price)} ({reason}) "
                f"| breakthrough {_fmt(trade.breakthrough_price)}"
            ),
        ))
        return True

    async def close_hedge(self, price: float, reason: str) -> bool:
        hedge = self.state.hedge_trade
        if hedge is None:
            return False

        result = await self.client.close_position(Role.HEDGE, hedge.side, self.params.order_qty)
        if not result.success:
            self._order_failed(f"close hedge {hedge.side.value}", result.error)
            return False
        self._order_succeeded()

        pnl = realized_pnl(hedge.side, hedge.open_price, price)
        self.state.profit_loss_log.append(ProfitLossEntry(role=Role.HEDGE, amount=pnl, timestamp=self._clock()))
        self.state.hedge_trade = None
        reentry = self.boundaries.hedge_reentry_boundary(hedge.side, price)
        self.state.hedge_reentry_boundary = reentry
        self._commit(StateEvent(
            kind="hedge_close",
            role=Role.HEDGE.value,
            side=hedge.side.value,
            price=price,
            pnl=pnl,
            message=(
                f"Hedge {hedge.side.value} closed at {_fmt(price)} ({reason}) | PnL {pnl:+.2f} "
                f"| re-entry at {_fmt(reentry.boundary_price)}"
            ),
        ))
        return True

    async def flatten(self, price: float | None, reason: str = "emergency") -> list[str]:
        """Close hedge then main without promotion. Returns errors instead of raising."""
        errors = []
        price = parse_price(price)
        hedge = self.state.hedge_trade
        if hedge is not None:
            result = await self.client.close_position(Role.HEDGE, hedge.side, self.params.order_qty)
            if result.success:
                events = []
                if price is not None:
                    pnl = realized_pnl(hedge.side, hedge.open_price, price)
                    self.state.profit_loss_log.append(
                        ProfitLossEntry(role=Role.HEDGE, amount=pnl, timestamp=self._clock())
                    )
                    events.append(StateEvent(
                        kind="hedge_close", role=Role.HEDGE.value, side=hedge.side.value, price=price, pnl=pnl,
                        message=f"Hedge {hedge.side.value} closed at {_fmt(price)} ({reason}) | PnL {pnl:+.2f}",
                    ))
                else:
                    events.append(StateEvent(
                        kind="hedge_close", role=Role.HEDGE.value, side=hedge.side.value,
                        message=f"Hedge {hedge.side.value} closed ({reason}), no price for PnL",
                    ))
                self.state.hedge_trade = None
                self.state.hedge_reentry_boundary = None
                self._commit(*events)
            else:
                errors.append(f"hedge {hedge.side.value}: {result.error}")

        main = self.state.main_trade
        if main is not None and self.state.hedge_trade is None:
            result = await self.client.close_position(Role.MAIN, main.side, self.params.order_qty)
            if result.success:
                if price is not None:
                    pnl = realized_pnl(main.side, main.open_price, price)
                    self.state.profit_loss_log.append(
                        ProfitLossEntry(role=Role.MAIN, amount=pnl, timestamp=self._clock())
                    )
                    event = StateEvent(
                        kind="main_close", role=Role.MAIN.value, side=main.side.value, price=price, pnl=pnl,
                        message=f"Main {main.side.value} closed at {_fmt(price)} ({reason}) | PnL {pnl:+.2f}",
                    )
                else:
                    event = StateEvent(
                        kind="main_close", role=Role.MAIN.value, side=main.side.value,
                        message=f"Main {main.side.value} closed ({reason}), no price for PnL",
                    )
                self.state.main_trade = None
                self.state.main_boundary = None
                self.state.hedge_reentry_boundary = None
                self._commit(event)
            else:
                errors.append(f"main {main.side.value}: {result.error}")
        elif main is not None:
            errors.append(f"main {main.side.value}: left open because the hedge could not be closed")
        return errors

    def set_running(self, running: bool):
        if self.state.running == running:
            return
        self.state.running = running
        self._commit(StateEvent(
            kind="bot_started" if running else "bot_stopped",
            message="Bot started" if running else "Bot stopped",
        ))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _commit(self, *events: StateEvent):
        """Check invariants, persist synchronously, then log and notify each event."""
        self.state.check_invariants()
        self.store.save(self.state, events)
        for event in events:
            logger.info(event.message)
            self._notify(event.message)

    def _order_succeeded(self):
        self.consecutive_order_failures = 0

    def _order_failed(self, action: str, error: str | None):
        self.consecutive_order_failures += 1
        message = f"Failed to {action}: {error or 'unknown error'} (attempt {self.consecutive_order_failures})"
        logger.error(message)
        self._notify(message)
        limit = self.params.max_consecutive_order_failures
        if limit and self.consecutive_order_failures > limit:
            raise OrderExecutionHalted(
                f"{self.consecutive_order_failures} consecutive order failures, last: {action}: {error}"
            )
