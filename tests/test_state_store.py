"""Tests for the persisted state store and snapshot types."""

import pytest
from sqlmodel import Session, create_engine, select
from sqlalchemy.pool import StaticPool

from hedgebot.engine.errors import StateInvariantError, StatePersistenceError
from hedgebot.engine.state import (
    Boundary,
    PersistedState,
    PositionPhase,
    ProfitLossEntry,
    Role,
    Side,
    Signal,
    Trade,
    parse_price,
)
from hedgebot.engine.state_store import StateEvent, StateStore
from hedgebot.models.bot_state import BotState, SNAPSHOT_ID


def _open_state() -> PersistedState:
    return PersistedState(
        running=True,
        main_trade=Trade(side=Side.LONG, open_price=50000.0, breakthrough_price=50300.0),
        hedge_trade=Trade(side=Side.SHORT, open_price=50100.0, breakthrough_price=49800.0),
        main_boundary=Boundary(side=Side.LONG, boundary_price=49700.0, reference_price=50000.0, timestamp=1.0),
        last_signal=Signal.STOP_LOSS_LONG,
        last_price=50100.0,
        profit_loss_log=[ProfitLossEntry(role=Role.HEDGE, amount=120.0, timestamp=2.0)],
        hedge_cooldown_until=1_700_000_060.0,
    )


# ---------------------------------------------------------------------------
# 1. Load / save
# ---------------------------------------------------------------------------

def test_load_defaults_on_first_run(store):
    state = store.load()
    assert state.running is False
    assert state.phase is PositionPhase.FLAT
    assert state.profit_loss_log == []


def test_snapshot_reloads_verbatim(store, clock):
    state = _open_state()
    store.save(state)

    loaded = store.load()

    assert loaded.main_trade == state.main_trade
    assert loaded.hedge_trade == state.hedge_trade
    assert loaded.main_boundary == state.main_boundary
    assert loaded.last_signal is Signal.STOP_LOSS_LONG
    assert loaded.hedge_cooldown_until == 1_700_000_060.0
    assert loaded.realized_pnl == 120.0
    assert loaded.updated_at == clock.now


def test_save_overwrites_single_row(store, db_engine):
    store.save(PersistedState(last_price=1.0))
    store.save(PersistedState(last_price=2.0))

    with Session(db_engine) as session:
        rows = session.exec(select(BotState)).all()
    assert len(rows) == 1
    assert store.load().last_price == 2.0


def test_events_written_with_snapshot(store):
    store.save(_open_state(), [
        StateEvent(kind="main_open", message="Main Long opened", role="main", side="Long", price=50000.0),
        StateEvent(kind="hedge_open", message="Hedge Short opened", role="hedge", side="Short", price=50100.0),
    ])

    events = store.recent_events()
    assert [e.kind for e in events] == ["hedge_open", "main_open"]
    assert store.recent_events(kind="main_open")[0].price == 50000.0
    assert len(store.recent_events(limit=1)) == 1


def test_reset_restores_defaults(store):
    store.save(_open_state())

    state = store.reset()

    assert state.main_trade is None
    assert store.load().phase is PositionPhase.FLAT
    assert store.recent_events(kind="state_reset")


# ---------------------------------------------------------------------------
# 2. Failures
# ---------------------------------------------------------------------------

def test_corrupt_snapshot_is_fatal(store, db_engine):
    with Session(db_engine) as session:
        session.add(BotState(id=SNAPSHOT_ID, snapshot={"main_trade": {"side": "Sideways"}}))
        session.commit()

    with pytest.raises(StatePersistenceError):
        store.load()


def test_corrupt_cooldown_is_fatal(store, db_engine):
    with Session(db_engine) as session:
        session.add(BotState(id=SNAPSHOT_ID, snapshot={"hedge_cooldown_until": "soon"}))
        session.commit()

    with pytest.raises(StatePersistenceError):
        store.load()


def test_cooldown_loaded_as_float(store, db_engine):
    with Session(db_engine) as session:
        session.add(BotState(id=SNAPSHOT_ID, snapshot={"hedge_cooldown_until": "1700000060"}))
        session.commit()

    assert store.load().hedge_cooldown_until == 1_700_000_060.0


def test_invariant_violation_on_load_is_fatal(store, db_engine):
    bad = {
        "main_trade": None,
        "hedge_trade": {"side": "Short", "open_price": 50100.0, "breakthrough_price": 49800.0},
    }
    with Session(db_engine) as session:
        session.add(BotState(id=SNAPSHOT_ID, snapshot=bad))
        session.commit()

    with pytest.raises(StateInvariantError):
        store.load()


def test_save_failure_raises_persistence_error():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    # No tables created
    store = StateStore(engine)
    with pytest.raises(StatePersistenceError):
        store.save(PersistedState())


# ---------------------------------------------------------------------------
# 3. Snapshot types
# ---------------------------------------------------------------------------

class TestStateTypes:
    def test_legacy_buy_sell_sides(self):
        assert Side.parse("Buy") is Side.LONG
        assert Side.parse("sell") is Side.SHORT
        with pytest.raises(ValueError):
            Side.parse("flat")

    def test_signal_parse_defaults_to_wait(self):
        assert Signal.parse("take_profit_long") is Signal.TAKE_PROFIT_LONG
        assert Signal.parse(None) is Signal.WAIT
        assert Signal.parse("HOLD") is Signal.WAIT
        assert Signal.parse(42) is Signal.WAIT

    def test_signal_sides(self):
        assert Signal.BUY.entry_side is Side.LONG
        assert Signal.STOP_LOSS_SHORT.exit_side is Side.SHORT
        assert Signal.WAIT.entry_side is None and Signal.WAIT.exit_side is None

    def test_parse_price(self):
        assert parse_price("50000.5") == 50000.5
        assert parse_price(True) is None
        assert parse_price(float("inf")) is None
        assert parse_price(-3) is None

    def test_same_side_hedge_violates_invariant(self):
        state = _open_state()
        state.hedge_trade = Trade(side=Side.LONG, open_price=1.0, breakthrough_price=2.0)
        with pytest.raises(StateInvariantError):
            state.check_invariants()

    def test_boundary_without_main_violates_invariant(self):
        state = PersistedState(
            main_boundary=Boundary(side=Side.LONG, boundary_price=1.0, reference_price=2.0, timestamp=0.0)
        )
        with pytest.raises(StateInvariantError):
            state.check_invariants()
