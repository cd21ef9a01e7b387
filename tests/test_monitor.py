"""Tests for the monitor loop: tick flow, backoff, fatal stop."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from hedgebot.engine.errors import StatePersistenceError
from hedgebot.engine.monitor import MonitorLoop
from hedgebot.engine.state import Signal


def _make_loop(price=50000.0, signal=Signal.WAIT, notifications=None):
    machine = MagicMock()
    machine.handle_signal = AsyncMock()
    machine.evaluate_boundaries = AsyncMock()
    price_source = MagicMock(return_value=price)
    signal_source = MagicMock(return_value=signal)
    loop = MonitorLoop(
        machine=machine,
        price_source=price_source,
        signal_source=signal_source,
        poll_interval=0.01,
        price_backoff=0.01,
        error_backoff=0.01,
        notify=(notifications.append if notifications is not None else None),
    )
    return loop, machine


@pytest.mark.asyncio
async def test_tick_runs_signal_then_boundaries():
    loop, machine = _make_loop(signal=Signal.BUY)
    calls = []
    machine.handle_signal.side_effect = lambda s, p: calls.append(("signal", s, p))
    machine.evaluate_boundaries.side_effect = lambda s, p: calls.append(("boundaries", s, p))

    assert await loop.tick() is True

    assert calls == [("signal", Signal.BUY, 50000.0), ("boundaries", Signal.BUY, 50000.0)]


@pytest.mark.asyncio
async def test_tick_without_price_skips_machine():
    loop, machine = _make_loop(price=None)

    assert await loop.tick() is False

    machine.handle_signal.assert_not_awaited()
    loop.signal_source.assert_not_called()


@pytest.mark.asyncio
async def test_generator_error_becomes_wait():
    loop, machine = _make_loop()
    loop.signal_source.side_effect = RuntimeError("klines unavailable")

    await loop.tick()

    machine.handle_signal.assert_awaited_once_with(Signal.WAIT, 50000.0)


@pytest.mark.asyncio
async def test_stop_lets_current_tick_finish():
    loop, machine = _make_loop()
    machine.evaluate_boundaries.side_effect = lambda s, p: loop.request_stop()

    await loop.run()

    assert loop.ticks == 1
    machine.handle_signal.assert_awaited_once()


@pytest.mark.asyncio
async def test_unexpected_error_backs_off_and_continues():
    loop, machine = _make_loop()

    def _second_call_stops(signal, price):
        if machine.handle_signal.await_count >= 2:
            loop.request_stop()

    machine.handle_signal.side_effect = [RuntimeError("boom"), None]
    machine.evaluate_boundaries.side_effect = _second_call_stops

    await loop.run()

    assert machine.handle_signal.await_count == 2
    assert loop.last_error == "boom"
    assert loop.ticks == 1


@pytest.mark.asyncio
async def test_fatal_error_stops_loop_and_notifies():
    notifications = []
    loop, machine = _make_loop(notifications=notifications)
    machine.handle_signal.side_effect = StatePersistenceError("disk full")

    with pytest.raises(StatePersistenceError):
        await loop.run()

    assert loop.fatal_error == "disk full"
    assert any("disk full" in n for n in notifications)
    assert machine.handle_signal.await_count == 1
