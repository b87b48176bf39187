"""
SQLAlchemy ORM Models for the sanctions watchlist store

One row per source list. The row is the unit of atomicity: content,
published, verified and error are always read and written together.

Tables:
1. source_records - Current content and sync state of each source
"""

from datetime import datetime
from typing import Any, List

from sqlalchemy import BigInteger, DateTime, String, Text, JSON
from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy.sql import func

# Base class for all models
Base = declarative_base()


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )


class SourceRecordRow(Base, TimestampMixin):
    """
    Persisted state of one sanctions source.

    `content` holds the serialized entry list, `published` the upstream
    as-of timestamp, `verified` the time of the last successful check
    and `error` the last fetch failure ('' when healthy).
    """
    __tablename__ = "source_records"

    name: Mapped[str] = mapped_column(String(100), primary_key=True)

    content: Mapped[List[Any]] = mapped_column(JSON, nullable=False, default=list)

    published: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    verified: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    error: Mapped[str] = mapped_column(Text, nullable=False, default="")

    def __repr__(self) -> str:
        return (
            f"<SourceRecordRow(name='{self.name}', published={self.published}, "
            f"verified={self.verified}, entries={len(self.content or [])})>"
        )
