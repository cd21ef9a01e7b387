"""SQLModel database engine setup."""

import logging

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

from hedgebot.config import settings

logger = logging.getLogger(__name__)


def build_engine(database_url: str) -> Engine:
    # SQLite needs check_same_thread=False; PostgreSQL does not
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(database_url, echo=False, connect_args=connect_args)


engine = build_engine(settings.database_url)


def create_db_and_tables(target: Engine | None = None):
    """Create all tables. Called on startup."""
    import hedgebot.models  # noqa: F401  (registers tables on the metadata)

    target = target or engine
    SQLModel.metadata.create_all(target)
    logger.info(f"Database ready at {target.url.render_as_string(hide_password=True)}")
