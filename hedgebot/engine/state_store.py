"""Persisted state store.

A passive ledger: it loads the snapshot once at start and rewrites it after
every mutation. Events describing the mutation are written in the same
transaction so the event log never disagrees with the snapshot.

Write failures raise ``StatePersistenceError``; the caller must stop rather
than keep trading on a state it believes is committed.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from hedgebot.engine.errors import StatePersistenceError
from hedgebot.engine.state import PersistedState
from hedgebot.models.bot_state import BotState, SNAPSHOT_ID
from hedgebot.models.event_log import EventLog

logger = logging.getLogger(__name__)


@dataclass
class StateEvent:
    """A human-readable record of one committed transition."""
    kind: str
    message: str
    role: str | None = None
    side: str | None = None
    price: float | None = None
    pnl: float | None = None

    def to_row(self) -> EventLog:
        return EventLog(
            kind=self.kind,
            message=self.message,
            role=self.role,
            side=self.side,
            price=self.price,
            pnl=self.pnl,
        )


class StateStore:
    """Durable snapshot storage backed by a single ``bot_state`` row."""

    def __init__(self, db_engine: Engine | None = None, clock: Callable[[], float] = time.time):
        if db_engine is None:
            from hedgebot.database import engine as db_engine
        self._engine = db_engine
        self._clock = clock

    def load(self) -> PersistedState:
        """Load the snapshot, or defaults on first run.

        The snapshot is returned verbatim, including stale boundaries and open
        trades. A snapshot that cannot be decoded is fatal.
        """
        try:
            with Session(self._engine) as session:
                row = session.get(BotState, SNAPSHOT_ID)
                snapshot = dict(row.snapshot) if row else None
        except SQLAlchemyError as e:
            raise StatePersistenceError(f"Failed to read state: {e}") from e

        if snapshot is None:
            logger.info("No persisted state found, starting from defaults")
            return PersistedState()

        try:
            state = PersistedState.from_dict(snapshot)
        except (KeyError, TypeError, ValueError) as e:
            raise StatePersistenceError(f"Persisted state is corrupt: {e}") from e

        state.check_invariants()
        logger.info(
            f"Loaded state: phase={state.phase.value} running={state.running} "
            f"realized_pnl={state.realized_pnl:.2f}"
        )
        return state

    def save(self, state: PersistedState, events: Iterable[StateEvent] = ()):
        """Persist the whole snapshot (and accompanying events) synchronously."""
        state.updated_at = self._clock()
        try:
            with Session(self._engine) as session:
                row = session.get(BotState, SNAPSHOT_ID)
                if row is None:
                    row = BotState(id=SNAPSHOT_ID)
                row.snapshot = state.to_dict()
                row.updated_at = datetime.now(timezone.utc)
                session.add(row)
                for event in events:
                    session.add(event.to_row())
                session.commit()
        except (SQLAlchemyError, TypeError, ValueError) as e:
            logger.critical(f"State save failed: {e}", exc_info=True)
            raise StatePersistenceError(f"Failed to persist state: {e}") from e

    def reset(self) -> PersistedState:
        """Overwrite the snapshot with defaults. Operator action only."""
        state = PersistedState()
        self.save(state, [StateEvent(kind="state_reset", message="State reset to defaults")])
        logger.warning("Persisted state reset to defaults")
        return state

    def recent_events(self, limit: int = 100, offset: int = 0, kind: str | None = None) -> list[EventLog]:
        stmt = select(EventLog).order_by(EventLog.id.desc())
        if kind is not None:
            stmt = stmt.where(EventLog.kind == kind)
        stmt = stmt.offset(offset).limit(limit)
        with Session(self._engine) as session:
            return list(session.exec(stmt).all())
