"""
Repository Pattern for watchlist store operations

Provides the data access layer for source records with proper
typing and error handling.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from store.models import SourceRecordRow
from store.records import (
    EntryFormatError,
    SourceRecord,
    entries_from_dicts,
    entries_to_dicts,
)

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class DuplicateSourceError(RepositoryError):
    """Raised when another writer created the source row first."""
    pass


class SourceRecordRepository:
    """Repository for source record operations."""

    def __init__(self, session: Session):
        self.session = session

    def get_row(self, name: str, for_update: bool = False) -> Optional[SourceRecordRow]:
        """
        Get the row of a source.

        Args:
            name: Source name
            for_update: Lock the row until the transaction ends
                (ignored by backends without row locks, e.g. SQLite)
        """
        query = select(SourceRecordRow).where(SourceRecordRow.name == name)
        if for_update:
            query = query.with_for_update()
        try:
            return self.session.execute(query).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to read source '{name}': {e}") from e

    def get(self, name: str) -> Optional[SourceRecord]:
        """Get the record of a source, None if it was never stored."""
        row = self.get_row(name)
        return self.to_record(row) if row is not None else None

    def list_names(self) -> List[str]:
        """List every stored source name in ascending order."""
        query = select(SourceRecordRow.name).order_by(SourceRecordRow.name)
        try:
            return list(self.session.execute(query).scalars().all())
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to list sources: {e}") from e

    def list_all(self) -> Dict[str, SourceRecord]:
        """Read every stored record, ordered by source name."""
        query = select(SourceRecordRow).order_by(SourceRecordRow.name)
        try:
            rows = self.session.execute(query).scalars().all()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to list sources: {e}") from e
        records = {}
        for row in rows:
            try:
                records[row.name] = self.to_record(row)
            except RepositoryError as e:
                logger.error(f"✗ Skipping unreadable source: {e}")
        return records

    def create_empty(self, name: str) -> SourceRecordRow:
        """Create the default record of a source."""
        row = SourceRecordRow(name=name, content=[], published=0, verified=0, error="")
        self.session.add(row)
        try:
            self.session.flush()
        except IntegrityError as e:
            raise DuplicateSourceError(f"Source already exists: {name}") from e
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to create source '{name}': {e}") from e
        logger.debug(f"Created empty record for source: {name}")
        return row

    def write(self, row: SourceRecordRow, record: SourceRecord, content_changed: bool) -> None:
        """
        Write a record onto its row.

        Content is only re-serialized when it changed.
        """
        if content_changed:
            row.content = entries_to_dicts(record.content)
        row.published = record.published
        row.verified = record.verified
        row.error = record.error
        try:
            self.session.flush()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to write source '{row.name}': {e}") from e

    @staticmethod
    def to_record(row: SourceRecordRow) -> SourceRecord:
        """
        Convert a row to its immutable record.

        Raises:
            RepositoryError: Stored content no longer parses
        """
        try:
            content = entries_from_dicts(row.content or [])
        except EntryFormatError as e:
            raise RepositoryError(f"Corrupt record for source '{row.name}': {e}") from e
        return SourceRecord(
            content=content,
            published=int(row.published or 0),
            verified=int(row.verified or 0),
            error=row.error or "",
        )
