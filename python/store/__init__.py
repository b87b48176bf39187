"""
Store Package for the sanctions watchlist service

This package provides:
- Immutable record types (entries, source records, snapshots)
- SQLAlchemy ORM model for persisted source records
- Session providers for transaction management
- Repository pattern for data access
- The cache store and its reconciliation protocol
"""

from store.records import (
    Entry,
    EntryFormatError,
    FetchedRecord,
    Snapshot,
    SnapshotSource,
    SourceRecord,
    EMPTY_RECORD,
    COUNTRY_FIELDS,
    TEXT_FIELDS,
    RESTRICTION_FIELDS,
    entries_from_dicts,
    entries_to_dicts,
)
from store.models import Base, SourceRecordRow
from store.connection import (
    DatabaseSessionProvider,
    StoreSettings,
    create_provider,
    create_test_provider,
)
from store.repositories import DuplicateSourceError, RepositoryError, SourceRecordRepository
from store.cache_store import (
    CacheStore,
    OutcomeStatus,
    ReconcileOutcome,
    reconcile_record,
)

__all__ = [
    # Records
    'Entry',
    'EntryFormatError',
    'FetchedRecord',
    'Snapshot',
    'SnapshotSource',
    'SourceRecord',
    'EMPTY_RECORD',
    'COUNTRY_FIELDS',
    'TEXT_FIELDS',
    'RESTRICTION_FIELDS',
    'entries_from_dicts',
    'entries_to_dicts',
    # Model
    'Base',
    'SourceRecordRow',
    # Connection
    'DatabaseSessionProvider',
    'StoreSettings',
    'create_provider',
    'create_test_provider',
    # Repository
    'DuplicateSourceError',
    'RepositoryError',
    'SourceRecordRepository',
    # Cache store
    'CacheStore',
    'OutcomeStatus',
    'ReconcileOutcome',
    'reconcile_record',
]
