"""Pydantic schemas for the bot control API."""

from datetime import datetime

from pydantic import BaseModel, Field


class TradeRead(BaseModel):
    side: str
    open_price: float
    breakthrough_price: float


class BoundaryRead(BaseModel):
    side: str
    boundary_price: float
    reference_price: float
    timestamp: float


class ProfitLossRead(BaseModel):
    role: str
    amount: float
    timestamp: float


class StateRead(BaseModel):
    running: bool
    phase: str
    main_trade: TradeRead | None = None
    hedge_trade: TradeRead | None = None
    main_boundary: BoundaryRead | None = None
    hedge_reentry_boundary: BoundaryRead | None = None
    last_signal: str | None = None
    last_price: float | None = None
    profit_loss_log: list[ProfitLossRead] = []
    hedge_cooldown_until: float | None = None
    created_at: float
    updated_at: float


class PnlRead(BaseModel):
    total: float
    count: int
    entries: list[ProfitLossRead]


class BotStatusRead(BaseModel):
    running: bool
    persisted_running: bool
    symbol: str
    dry_run: bool
    phase: str
    current_price: float | None = None
    last_price: float | None = None
    last_signal: str | None = None
    pending_signal: str
    main_trade: TradeRead | None = None
    hedge_trade: TradeRead | None = None
    main_boundary: BoundaryRead | None = None
    hedge_reentry_boundary: BoundaryRead | None = None
    realized_pnl: float
    consecutive_order_failures: int
    ticks: int
    last_error: str | None = None
    fatal_error: str | None = None
    started_at: float | None = None


class EventRead(BaseModel):
    id: int
    timestamp: datetime
    kind: str
    role: str | None = None
    side: str | None = None
    price: float | None = None
    pnl: float | None = None
    message: str


class EmergencyStopRequest(BaseModel):
    close_positions: bool = True


class EmergencyStopResult(BaseModel):
    stopped: bool
    positions_closed: int = Field(ge=0)
    errors: list[str]
