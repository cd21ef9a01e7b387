"""Trading state: trades, boundaries, signals and the persisted snapshot.

All types are plain dataclasses so the snapshot can be serialized to a single
JSON document and reloaded verbatim after a restart.
"""

import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from hedgebot.engine.errors import StateInvariantError


class Side(str, Enum):
    LONG = "Long"
    SHORT = "Short"

    @property
    def opposite(self) -> "Side":
        return Side.SHORT if self is Side.LONG else Side.LONG

    @property
    def sign(self) -> int:
        """+1 for Long, -1 for Short."""
        return 1 if self is Side.LONG else -1

    @classmethod
    def parse(cls, value: "str | Side") -> "Side":
        if isinstance(value, Side):
            return value
        text = str(value).strip().lower()
        # Older snapshots stored the order side instead of the position side
        if text in ("long", "buy"):
            return cls.LONG
        if text in ("short", "sell"):
            return cls.SHORT
        raise ValueError(f"Unknown side: {value!r}")


class Role(str, Enum):
    MAIN = "main"
    HEDGE = "hedge"


class Signal(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    TAKE_PROFIT_LONG = "TAKE_PROFIT_LONG"
    TAKE_PROFIT_SHORT = "TAKE_PROFIT_SHORT"
    STOP_LOSS_LONG = "STOP_LOSS_LONG"
    STOP_LOSS_SHORT = "STOP_LOSS_SHORT"
    WAIT = "WAIT"

    @classmethod
    def parse(cls, value: Any) -> "Signal":
        """Parse generator output. Anything unrecognised is WAIT."""
        if isinstance(value, Signal):
            return value
        if not isinstance(value, str):
            return cls.WAIT
        try:
            return cls(value.strip().upper())
        except ValueError:
            return cls.WAIT

    @property
    def entry_side(self) -> Side | None:
        """Side a BUY/SELL signal opens, else None."""
        if self is Signal.BUY:
            return Side.LONG
        if self is Signal.SELL:
            return Side.SHORT
        return None

    @property
    def exit_side(self) -> Side | None:
        """Side a take-profit/stop-loss signal refers to, else None."""
        if self in (Signal.TAKE_PROFIT_LONG, Signal.STOP_LOSS_LONG):
            return Side.LONG
        if self in (Signal.TAKE_PROFIT_SHORT, Signal.STOP_LOSS_SHORT):
            return Side.SHORT
        return None


class PositionPhase(str, Enum):
    FLAT = "Flat"
    MAIN_ONLY = "MainOnly"
    MAIN_PLUS_HEDGE = "MainPlusHedge"


def parse_price(value: Any) -> float | None:
    """Return a positive finite price, or None for anything else."""
    if isinstance(value, bool):
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(price) or math.isinf(price) or price <= 0:
        return None
    return price


@dataclass
class Trade:
    side: Side
    open_price: float
    breakthrough_price: float

    def to_dict(self) -> dict:
        return {
            "side": self.side.value,
            "open_price": self.open_price,
            "breakthrough_price": self.breakthrough_price,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Trade":
        return cls(
            side=Side.parse(data["side"]),
            open_price=float(data["open_price"]),
            breakthrough_price=float(data["breakthrough_price"]),
        )


@dataclass
class Boundary:
    side: Side
    boundary_price: float
    reference_price: float  # price at the last update
    timestamp: float

    def to_dict(self) -> dict:
        return {
            "side": self.side.value,
            "boundary_price": self.boundary_price,
            "reference_price": self.reference_price,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Boundary":
        return cls(
            side=Side.parse(data["side"]),
            boundary_price=float(data["boundary_price"]),
            reference_price=float(data["reference_price"]),
            timestamp=float(data["timestamp"]),
        )


@dataclass
class ProfitLossEntry:
    role: Role
    amount: float
    timestamp: float

    def to_dict(self) -> dict:
        return {"role": self.role.value, "amount": self.amount, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict) -> "ProfitLossEntry":
        return cls(
            role=Role(data["role"]),
            amount=float(data["amount"]),
            timestamp=float(data["timestamp"]),
        )


def _optional(factory, data: dict | None):
    return factory(data) if data else None


@dataclass
class PersistedState:
    """Everything the bot needs to resume exactly where it stopped."""
    running: bool = False
    main_trade: Trade | None = None
    hedge_trade: Trade | None = None
    main_boundary: Boundary | None = None
    hedge_reentry_boundary: Boundary | None = None
    last_signal: Signal | None = None
    last_price: float | None = None
    profit_loss_log: list[ProfitLossEntry] = field(default_factory=list)
    hedge_cooldown_until: float | None = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def phase(self) -> PositionPhase:
        if self.main_trade is None:
            return PositionPhase.FLAT
        if self.hedge_trade is None:
            return PositionPhase.MAIN_ONLY
        return PositionPhase.MAIN_PLUS_HEDGE

    @property
    def realized_pnl(self) -> float:
        return sum(entry.amount for entry in self.profit_loss_log)

    def check_invariants(self):
        """Raise StateInvariantError if the snapshot is not a reachable state."""
        if self.hedge_trade is not None and self.main_trade is None:
            raise StateInvariantError("Hedge trade exists without a main trade")
        if self.main_trade and self.hedge_trade and self.main_trade.side == self.hedge_trade.side:
            raise StateInvariantError(
                f"Hedge side {self.hedge_trade.side.value} equals main side"
            )
        if self.main_boundary and self.main_trade is None:
            raise StateInvariantError("Main boundary exists without a main trade")
        if self.main_boundary and self.main_boundary.side != self.main_trade.side:
            raise StateInvariantError("Main boundary side does not match the main trade")

    def to_dict(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "main_trade": self.main_trade.to_dict() if self.main_trade else None,
            "hedge_trade": self.hedge_trade.to_dict() if self.hedge_trade else None,
            "main_boundary": self.main_boundary.to_dict() if self.main_boundary else None,
            "hedge_reentry_boundary": (
                self.hedge_reentry_boundary.to_dict() if self.hedge_reentry_boundary else None
            ),
            "last_signal": self.last_signal.value if self.last_signal else None,
            "last_price": self.last_price,
            "profit_loss_log": [entry.to_dict() for entry in self.profit_loss_log],
            "hedge_cooldown_until": self.hedge_cooldown_until,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PersistedState":
        last_signal = data.get("last_signal")
        cooldown_until = data.get("hedge_cooldown_until")
        return cls(
            running=bool(data.get("running", False)),
            main_trade=_optional(Trade.from_dict, data.get("main_trade")),
            hedge_trade=_optional(Trade.from_dict, data.get("hedge_trade")),
            main_boundary=_optional(Boundary.from_dict, data.get("main_boundary")),
            hedge_reentry_boundary=_optional(Boundary.from_dict, data.get("hedge_reentry_boundary")),
            last_signal=Signal.parse(last_signal) if last_signal else None,
            last_price=parse_price(data.get("last_price")),
            profit_loss_log=[ProfitLossEntry.from_dict(e) for e in data.get("profit_loss_log") or []],
            hedge_cooldown_until=float(cooldown_until) if cooldown_until is not None else None,
            created_at=float(data.get("created_at") or time.time()),
            updated_at=float(data.get("updated_at") or time.time()),
        )
