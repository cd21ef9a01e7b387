"""EventLog model: every open/close/promote/boundary event, in commit order."""

from datetime import datetime, timezone

from sqlmodel import SQLModel, Field


class EventLog(SQLModel, table=True):
    __tablename__ = "event_log"

    id: int | None = Field(default=None, primary_key=True)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
    kind: str = Field(index=True)  # "main_open", "hedge_close", "promote", "boundary_trail", ...
    role: str | None = None  # "main" | "hedge"
    side: str | None = None  # "Long" | "Short"
    price: float | None = None
    pnl: float | None = None
    message: str
