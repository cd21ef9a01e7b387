"""Shared fixtures: in-memory database, fake clock, mocked order client."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

import hedgebot.models  # noqa: F401  (registers tables on the metadata)
from hedgebot.engine.position_machine import PositionStateMachine, StrategyParams
from hedgebot.engine.state import PersistedState
from hedgebot.engine.state_store import StateStore
from hedgebot.services.binance_client import OrderResult


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(db_engine, clock):
    return StateStore(db_engine, clock=clock)


@pytest.fixture
def order_client():
    client = MagicMock()
    client.dry_run = False
    client.open_position = AsyncMock(return_value=OrderResult(success=True, order_id="open-1"))
    client.close_position = AsyncMock(return_value=OrderResult(success=True, order_id="close-1"))
    client.cancel_all_orders = AsyncMock(return_value=True)
    client.get_positions = AsyncMock(return_value=[])
    client.close = AsyncMock()
    return client


@pytest.fixture
def params():
    return StrategyParams(
        profit_point=300.0,
        boundary_gap=300.0,
        trail_activation=400.0,
        hedge_reentry_distance=250.0,
        hedge_cooldown_seconds=60.0,
        order_qty=0.001,
        max_consecutive_order_failures=20,
    )


@pytest.fixture
def notifications():
    return []


@pytest.fixture
def machine(store, order_client, params, notifications, clock):
    return PositionStateMachine(
        state=PersistedState(),
        store=store,
        client=order_client,
        params=params,
        notify=notifications.append,
        clock=clock,
    )
