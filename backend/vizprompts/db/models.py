"""SQLAlchemy 2.0 ORM models for prompt history."""

from datetime import datetime

from sqlalchemy import JSON, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class HistoryRecord(Base):
    """One successful video analysis or prompt load."""
    __tablename__ = "history_items"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    prompt: Mapped[str] = mapped_column(Text)
    scenes: Mapped[list] = mapped_column(JSON)
    thumbnail: Mapped[str] = mapped_column(Text, default="")
    timestamp: Mapped[datetime] = mapped_column(index=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
