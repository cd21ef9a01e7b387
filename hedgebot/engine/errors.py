"""Exception hierarchy for the trading engine.

Order-execution problems are NOT exceptions here: the exchange client reports
them as failed ``OrderResult`` values and the state machine retries on the
next tick. Only conditions that must stop the bot are raised.
"""


class HedgeBotError(Exception):
    """Base class for engine errors."""


class FatalBotError(HedgeBotError):
    """The monitor loop must stop; state needs operator attention."""


class StatePersistenceError(FatalBotError):
    """A snapshot could not be written or read back."""


class StateInvariantError(FatalBotError):
    """Persisted or in-memory state breaks a position invariant."""


class OrderExecutionHalted(FatalBotError):
    """Too many consecutive order failures; the exchange is not reachable."""
