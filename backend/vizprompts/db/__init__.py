"""
Database module for vizprompts.

Provides async SQLAlchemy engine with SQLite WAL mode,
session management, and schema initialization.
"""
import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from vizprompts.db.engine import async_session, create_engine, create_session_factory, engine, shutdown
from vizprompts.db.models import Base, HistoryRecord

logger = logging.getLogger(__name__)


async def init_database(target: AsyncEngine = engine):
    """Create the history schema on first run."""
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Database ready at {target.url.render_as_string(hide_password=True)}")


__all__ = [
    "Base",
    "HistoryRecord",
    "engine",
    "async_session",
    "create_engine",
    "create_session_factory",
    "shutdown",
    "init_database",
]
