"""Database models."""

from hedgebot.models.bot_state import BotState
from hedgebot.models.event_log import EventLog

__all__ = [
    "BotState",
    "EventLog",
]
