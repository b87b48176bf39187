"""
Cache store for sanctions source lists

Reconciles freshly fetched list data against the shared store, one
source at a time:

- A failed fetch only records its error message; the last known-good
  content, its published stamp and the verification time stay as they are.
- A successful fetch always advances `verified`. Content and `published`
  are replaced only when the upstream published stamp moved forward or
  the content itself differs (authorities sometimes republish corrected
  data under the same stamp).

Each source is reconciled in its own transaction with its row locked,
so readers see either the previous or the new generation of a record.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from config_manager import ConfigurationError
from store.connection import DatabaseSessionProvider
from store.records import EMPTY_RECORD, FetchedRecord, Snapshot, SourceRecord
from store.repositories import DuplicateSourceError, SourceRecordRepository

logger = logging.getLogger(__name__)


class OutcomeStatus(str, Enum):
    """Result of reconciling one source"""
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    FETCH_FAILED = "fetch_failed"
    STORE_FAILED = "store_failed"


@dataclass(frozen=True)
class ReconcileOutcome:
    """Tagged outcome of a reconciliation attempt"""
    source: str
    status: OutcomeStatus
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status in (OutcomeStatus.UPDATED, OutcomeStatus.UNCHANGED)

    def to_dict(self) -> Dict[str, str]:
        return {'source': self.source, 'status': self.status.value, 'message': self.message}


def reconcile_record(
    stored: SourceRecord,
    fetched: FetchedRecord,
    now: int,
    source: str = ""
) -> Tuple[SourceRecord, ReconcileOutcome]:
    """Decide the new persisted record from the stored one and a fetch

    Args:
        stored: Currently persisted record (EMPTY_RECORD if none)
        fetched: Fresh result from the source fetcher
        now: Current unix time in seconds
        source: Source name, carried into the outcome

    Returns:
        Tuple of (new record, outcome)
    """
    if fetched.failed:
        new = SourceRecord(
            content=stored.content,
            published=stored.published,
            verified=stored.verified,
            error=fetched.error,
        )
        return new, ReconcileOutcome(source, OutcomeStatus.FETCH_FAILED, fetched.error)

    if fetched.published > stored.published or fetched.content != stored.content:
        new = SourceRecord(
            content=fetched.content,
            published=fetched.published,
            verified=now,
            error="",
        )
        return new, ReconcileOutcome(source, OutcomeStatus.UPDATED)

    new = SourceRecord(
        content=stored.content,
        published=stored.published,
        verified=now,
        error="",
    )
    return new, ReconcileOutcome(source, OutcomeStatus.UNCHANGED)


class CacheStore:
    """Persisted source records plus the reconciliation protocol

    Args:
        reader: Provider used for reads (None: no read capability)
        writer: Provider used for writes (None: no write capability)
        source_names: Sources that get an empty record on construction
    """

    def __init__(
        self,
        reader: Optional[DatabaseSessionProvider],
        writer: Optional[DatabaseSessionProvider] = None,
        source_names: Iterable[str] = ()
    ):
        self.reader = reader
        self.writer = writer
        if self.writer is not None:
            self.writer.init()
            self.writer.create_tables()
            self.ensure_sources(source_names)

    @property
    def can_read(self) -> bool:
        return self.reader is not None

    @property
    def can_write(self) -> bool:
        return self.writer is not None

    def _require_reader(self) -> DatabaseSessionProvider:
        if self.reader is None:
            raise ConfigurationError("Store read capability is not configured")
        return self.reader

    def _require_writer(self) -> DatabaseSessionProvider:
        if self.writer is None:
            raise ConfigurationError("Store write capability is not configured")
        return self.writer

    def ensure_sources(self, source_names: Iterable[str]) -> List[str]:
        """Create empty records for sources that have none

        Returns:
            Names of the records created
        """
        writer = self._require_writer()
        source_names = list(source_names)
        try:
            created = self._create_missing(writer, source_names)
        except DuplicateSourceError:
            logger.debug("Concurrent creation of source records, retrying once")
            created = self._create_missing(writer, source_names)
        if created:
            logger.info(f"Initialized empty records for sources: {created}")
        return created

    @staticmethod
    def _create_missing(writer: DatabaseSessionProvider, source_names: List[str]) -> List[str]:
        created = []
        with writer.session_scope() as session:
            repo = SourceRecordRepository(session)
            existing = set(repo.list_names())
            for name in source_names:
                if name not in existing:
                    repo.create_empty(name)
                    existing.add(name)
                    created.append(name)
        return created

    def reconcile(self, source_name: str, fetched: FetchedRecord, now: Optional[int] = None) -> ReconcileOutcome:
        """Reconcile one source's fetch result into the store atomically

        Args:
            source_name: Source to reconcile
            fetched: Fetch result for that source
            now: Override of the current unix time (seconds)

        Returns:
            Outcome of the reconciliation
        """
        writer = self._require_writer()
        now = int(time.time()) if now is None else int(now)

        try:
            outcome = self._reconcile_in_transaction(writer, source_name, fetched, now)
        except DuplicateSourceError:
            # Another process created the row concurrently; its row now exists
            logger.debug(f"Concurrent creation of source '{source_name}', retrying once")
            outcome = self._reconcile_in_transaction(writer, source_name, fetched, now)

        if outcome.status is OutcomeStatus.FETCH_FAILED:
            logger.warning(f"⚠ Fetch failed for source '{source_name}': {outcome.message}")
        elif outcome.status is OutcomeStatus.UPDATED:
            logger.info(f"✓ Source '{source_name}' updated ({len(fetched.content)} entries, published={fetched.published})")
        else:
            logger.info(f"✓ Source '{source_name}' verified, content unchanged")
        return outcome

    def _reconcile_in_transaction(
        self,
        writer: DatabaseSessionProvider,
        source_name: str,
        fetched: FetchedRecord,
        now: int
    ) -> ReconcileOutcome:
        with writer.session_scope() as session:
            repo = SourceRecordRepository(session)
            row = repo.get_row(source_name, for_update=True)
            if row is None:
                row = repo.create_empty(source_name)
                stored = EMPTY_RECORD
            else:
                stored = repo.to_record(row)

            new, outcome = reconcile_record(stored, fetched, now, source=source_name)
            repo.write(row, new, content_changed=new.content is not stored.content)
        return outcome

    def read_record(self, source_name: str) -> Optional[SourceRecord]:
        """Read one persisted record, None if the source is unknown"""
        with self._require_reader().session_scope() as session:
            return SourceRecordRepository(session).get(source_name)

    def list_records(self) -> Dict[str, SourceRecord]:
        """Read every persisted record, ordered by source name"""
        with self._require_reader().session_scope() as session:
            return SourceRecordRepository(session).list_all()

    def load_snapshot(self) -> Snapshot:
        """Build a fresh in-memory snapshot of every known source"""
        snapshot = Snapshot.from_records(self.list_records())
        logger.info(f"Loaded snapshot: {len(snapshot.sources)} sources, {snapshot.entry_count} entries")
        return snapshot

    def stale_sources(self, max_age_seconds: int, now: Optional[int] = None) -> List[str]:
        """Sources not successfully verified within max_age_seconds"""
        now = int(time.time()) if now is None else int(now)
        return [
            name for name, record in self.list_records().items()
            if record.verified == 0 or now - record.verified > max_age_seconds
        ]

    def ping(self) -> bool:
        """True if every configured store endpoint answers"""
        providers = [p for p in (self.reader, self.writer) if p is not None]
        return all(provider.health_check() for provider in providers)

    def close(self) -> None:
        """Dispose the engines of both providers"""
        if self.reader is not None:
            self.reader.close()
        if self.writer is not None and self.writer is not self.reader:
            self.writer.close()
