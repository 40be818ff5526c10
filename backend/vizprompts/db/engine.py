"""
Database engine configuration for vizprompts.

Provides async SQLAlchemy engine with SQLite WAL mode
and session management for the history store.
"""
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from vizprompts.config import settings


def configure_sqlite_pragmas(dbapi_conn, connection_record):
    """
    Configure SQLite PRAGMA settings.

    - WAL mode: readers do not block the history writer
    - NORMAL synchronous: history rows are not critical data
    - Busy timeout: wait up to 5s for locks
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def create_engine(database_url: str) -> AsyncEngine:
    """Create an async engine, registering the SQLite pragmas when relevant."""
    engine = create_async_engine(database_url, echo=False)
    if engine.dialect.name == "sqlite":
        # Use engine.sync_engine for aiosqlite compatibility
        event.listens_for(engine.sync_engine, "connect")(configure_sqlite_pragmas)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False keeps attributes readable after commit
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


engine = create_engine(settings.storage.database_url)
async_session = create_session_factory(engine)


async def shutdown():
    """Dispose of engine and close all connections."""
    await engine.dispose()
