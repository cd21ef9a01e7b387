"""Tests for the control API (runtime injected via dependency override)."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from hedgebot.api.deps import get_bot_runtime
from hedgebot.config import settings
from hedgebot.engine.errors import HedgeBotError
from hedgebot.engine.runtime import BotRuntime
from hedgebot.engine.state import PersistedState, ProfitLossEntry, Role, Side, Signal, Trade
from hedgebot.engine.state_store import StateEvent
from hedgebot.main import app


@pytest.fixture
def runtime(store, order_client, notifications, clock):
    feed = MagicMock()
    feed.get_current_price.return_value = 50050.0
    feed.stop = AsyncMock()
    generator = MagicMock()
    generator.pending = Signal.WAIT
    return BotRuntime(
        settings,
        store=store,
        client=order_client,
        feed=feed,
        generator=generator,
        notify=notifications.append,
        clock=clock,
    )


@pytest.fixture
def api(runtime, monkeypatch):
    monkeypatch.setattr(settings, "api_token", "")
    app.dependency_overrides[get_bot_runtime] = lambda: runtime
    # No context manager: the lifespan (real database, Telegram) is not run
    yield TestClient(app)
    app.dependency_overrides.clear()


def _seed(runtime, store):
    state = PersistedState(
        main_trade=Trade(side=Side.LONG, open_price=50000.0, breakthrough_price=50300.0),
        profit_loss_log=[ProfitLossEntry(role=Role.HEDGE, amount=150.0, timestamp=1.0)],
    )
    store.save(state, [StateEvent(kind="main_open", message="Main Long opened at 50000.00", role="main")])
    runtime.machine.state = store.load()


# ---------------------------------------------------------------------------
# 1. Read endpoints
# ---------------------------------------------------------------------------

def test_health_is_public(api, monkeypatch):
    monkeypatch.setattr(settings, "api_token", "secret")
    assert api.get("/api/system/health").json() == {"status": "ok"}


def test_status(api, runtime, store):
    _seed(runtime, store)

    data = api.get("/api/bot/status").json()

    assert data["running"] is False
    assert data["phase"] == "MainOnly"
    assert data["current_price"] == 50050.0
    assert data["main_trade"]["breakthrough_price"] == 50300.0
    assert data["realized_pnl"] == 150.0


def test_state_and_pnl(api, runtime, store):
    _seed(runtime, store)

    state = api.get("/api/bot/state").json()
    pnl = api.get("/api/bot/pnl").json()

    assert state["main_trade"]["side"] == "Long"
    assert state["hedge_trade"] is None
    assert pnl["total"] == 150.0
    assert pnl["entries"][0]["role"] == "hedge"


def test_events(api, runtime, store):
    _seed(runtime, store)

    events = api.get("/api/system/events", params={"kind": "main_open"}).json()

    assert len(events) == 1
    assert events[0]["message"] == "Main Long opened at 50000.00"


# ---------------------------------------------------------------------------
# 2. Control endpoints
# ---------------------------------------------------------------------------

def test_start_failure_is_503(api, runtime):
    runtime.start = AsyncMock(side_effect=HedgeBotError("No price"))
    resp = api.post("/api/bot/start")
    assert resp.status_code == 503
    assert "No price" in resp.json()["detail"]


def test_stop_when_not_running(api):
    resp = api.post("/api/bot/stop")
    assert resp.status_code == 200
    assert resp.json()["running"] is False


def test_reset_conflict_while_running(api, runtime):
    runtime._task = MagicMock()
    runtime._task.done.return_value = False

    assert api.post("/api/bot/reset").status_code == 409


def test_reset_when_stopped(api, runtime, store):
    _seed(runtime, store)

    resp = api.post("/api/bot/reset")

    assert resp.status_code == 200
    assert resp.json()["phase"] == "Flat"
    assert store.load().main_trade is None


def test_emergency_stop(api, runtime, store, order_client):
    _seed(runtime, store)

    resp = api.post("/api/bot/emergency-stop", json={"close_positions": True})

    assert resp.status_code == 200
    assert resp.json()["positions_closed"] == 1
    order_client.close_position.assert_awaited_once()


# ---------------------------------------------------------------------------
# 3. Auth
# ---------------------------------------------------------------------------

def test_token_required_when_configured(api, monkeypatch):
    monkeypatch.setattr(settings, "api_token", "secret")

    assert api.get("/api/bot/status").status_code == 401
    assert api.get("/api/bot/status", headers={"Authorization": "Bearer wrong"}).status_code == 401
    assert api.get("/api/bot/status", headers={"Authorization": "Bearer secret"}).status_code == 200
