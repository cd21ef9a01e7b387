"""BotState model: the single persisted snapshot of all trading state."""

from datetime import datetime, timezone
from typing import Any

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON

SNAPSHOT_ID = 1


class BotState(SQLModel, table=True):
    __tablename__ = "bot_state"

    id: int = Field(default=SNAPSHOT_ID, primary_key=True)
    snapshot: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
