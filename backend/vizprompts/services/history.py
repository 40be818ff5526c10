"""History sink: one record per successful run.

The pipeline only ever calls record(); listing recent items is for the
API and CLI.
"""

import logging
from abc import ABC, abstractmethod

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vizprompts.db.models import HistoryRecord
from vizprompts.schemas.analysis import HistoryItem

logger = logging.getLogger(__name__)


class HistorySink(ABC):
    @abstractmethod
    async def record(self, item: HistoryItem) -> None:
        """Persist one history item."""


class SqlHistorySink(HistorySink):
    """History stored in the history_items table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def record(self, item: HistoryItem) -> None:
        async with self._session_factory() as session:
            session.add(
                HistoryRecord(
                    id=item.id,
                    prompt=item.prompt,
                    scenes=item.scenes,
                    thumbnail=item.thumbnail,
                    timestamp=item.timestamp,
                )
            )
            await session.commit()
        logger.info(f"Recorded history item {item.id} ({len(item.scenes)} scenes)")

    async def recent(self, limit: int = 20) -> list[HistoryItem]:
        """Most recent items first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(HistoryRecord).order_by(HistoryRecord.timestamp.desc()).limit(limit)
            )
            rows = result.scalars().all()
        return [
            HistoryItem(
                id=row.id,
                prompt=row.prompt,
                scenes=row.scenes,
                thumbnail=row.thumbnail,
                timestamp=row.timestamp,
            )
            for row in rows
        ]
