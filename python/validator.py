"""
Sanctions Validator
Public entry point: keeps the watchlists in sync and answers queries

    validator = SanctionsValidator(fetcher=HttpSourceFetcher())
    validator.refresh()
    validator.is_sanctioned("Zaki", "Ahmad", "1999-01-05")
    validator.get_match_info({"first_name": "Zaki", "last_name": "Ahmad",
                              "residence": "France"})

Queries only ever look at the snapshot loaded by the last refresh()
or reload(); they never trigger a fetch.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from config_manager import ConfigManager, ConfigurationError, get_config
from exporter import SnapshotExporter
from fetcher import SourceFetcher
from matcher import MatchResult, build_query, find_match, validate_query
from store.cache_store import CacheStore, OutcomeStatus, ReconcileOutcome
from store.connection import create_provider
from store.records import Snapshot
from store.repositories import RepositoryError

logger = logging.getLogger(__name__)


@dataclass
class RefreshReport:
    """Per-source outcomes of one refresh cycle"""
    started_at: str
    outcomes: List[ReconcileOutcome] = field(default_factory=list)
    missing_sources: List[str] = field(default_factory=list)
    processing_time_ms: int = 0

    @property
    def failed(self) -> List[ReconcileOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def success(self) -> bool:
        return not self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            'started_at': self.started_at,
            'success': self.success,
            'outcomes': [o.to_dict() for o in self.outcomes],
            'missing_sources': self.missing_sources,
            'processing_time_ms': self.processing_time_ms,
        }


class SanctionsValidator:
    """Facade over the cache store, the fetcher and the matcher"""

    def __init__(
        self,
        config: Optional[ConfigManager] = None,
        fetcher: Optional[SourceFetcher] = None,
        store: Optional[CacheStore] = None
    ):
        """Initialize validator

        Args:
            config: Configuration manager instance
            fetcher: Source fetcher used by refresh()
            store: Cache store; built from config.store when omitted
        """
        self.config = config or get_config()
        self.fetcher = fetcher
        self.store = store or self._build_store()
        self.exporter = SnapshotExporter(self.config.export)
        self._snapshot: Optional[Snapshot] = None

        if self.store.can_read:
            self._snapshot = self.store.load_snapshot()
        else:
            logger.warning("Store read capability not configured; queries are disabled")

    def _build_store(self) -> CacheStore:
        store_config = self.config.store
        reader = create_provider(store_config, store_config.read_url)
        if store_config.write_url and store_config.write_url == store_config.read_url:
            writer = reader
        else:
            writer = create_provider(store_config, store_config.write_url)
        return CacheStore(reader, writer, source_names=self.config.sources.names)

    @property
    def snapshot(self) -> Snapshot:
        """Currently loaded snapshot"""
        if self._snapshot is None:
            raise ConfigurationError("Store read capability is not configured")
        return self._snapshot

    def reload(self) -> Snapshot:
        """Re-read the snapshot from the store without fetching"""
        self._snapshot = self.store.load_snapshot()
        return self._snapshot

    def refresh(self) -> RefreshReport:
        """Fetch every source, reconcile each one, reload the snapshot

        Raises:
            ConfigurationError: No write capability or no fetcher configured
        """
        if not self.store.can_write:
            raise ConfigurationError("refresh() requires store write capability")
        if self.fetcher is None:
            raise ConfigurationError("refresh() requires a source fetcher")

        start_time = time.time()
        report = RefreshReport(started_at=datetime.now(timezone.utc).isoformat())

        fetched = self.fetcher.fetch_all()

        for source_name, record in fetched.items():
            try:
                outcome = self.store.reconcile(source_name, record)
            except (RepositoryError, SQLAlchemyError) as e:
                logger.error(f"✗ Could not store source '{source_name}': {e}")
                outcome = ReconcileOutcome(source_name, OutcomeStatus.STORE_FAILED, str(e))
            report.outcomes.append(outcome)

        report.missing_sources = [n for n in self.config.sources.names if n not in fetched]
        for name in report.missing_sources:
            logger.warning(f"⚠ Source '{name}' is configured but was not returned by the fetcher")

        if self.store.can_read:
            self.reload()

        report.processing_time_ms = int((time.time() - start_time) * 1000)
        logger.info(
            "Refresh complete: %d sources, %d failed, %d ms",
            len(report.outcomes), len(report.failed), report.processing_time_ms
        )
        return report

    def get_match_info(self, *args: Any, **kwargs: Any) -> MatchResult:
        """Match a query against the loaded snapshot

        Accepts (first_name, last_name[, dob]), a structured attribute
        map, a QueryPerson, or keyword arguments.
        """
        snapshot = self.snapshot
        query = build_query(*args, **kwargs)
        validate_query(query, self.config)
        return find_match(
            snapshot,
            query,
            country_aliases=self.config.matching.country_aliases,
            unresolved_country=self.config.matching.unresolved_country_policy
        )

    def is_sanctioned(self, *args: Any, **kwargs: Any) -> bool:
        """True if the query matches any entry of any source"""
        return self.get_match_info(*args, **kwargs).matched

    def export(self, path: Optional[Path] = None, fmt: Optional[str] = None) -> Path:
        """Dump the loaded snapshot to a file"""
        return self.exporter.export(self.snapshot, path=path, fmt=fmt)

    def health(self, now: Optional[int] = None) -> Dict[str, Any]:
        """Per-source sync health, flagging sources not verified recently"""
        now = int(time.time()) if now is None else int(now)
        if not self.store.ping():
            logger.error("✗ Store is not reachable")
            return {'healthy': False, 'store_available': False, 'sources': {}}

        max_age = self.config.refresh.staleness_warning_hours * 3600
        records = self.store.list_records()
        stale = set(self.store.stale_sources(max_age, now=now))

        sources = {}
        for name, record in records.items():
            sources[name] = {
                'published': record.published,
                'verified': record.verified,
                'error': record.error,
                'entries': len(record.content),
                'stale': name in stale,
            }
            if name in stale:
                logger.warning(f"⚠ Source '{name}' has not been verified in {self.config.refresh.staleness_warning_hours}h")

        return {
            'healthy': all(not s['error'] and not s['stale'] for s in sources.values()),
            'store_available': True,
            'sources': sources,
        }
