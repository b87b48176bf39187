"""
Tests for the cache store and its reconciliation protocol

Uses an in-memory SQLite database (see conftest.py).
"""

from unittest.mock import MagicMock

import pytest

from conftest import SOURCE_A, SOURCE_B, corrupt_record, entry
from config_manager import ConfigurationError
from store import (
    EMPTY_RECORD,
    CacheStore,
    DuplicateSourceError,
    FetchedRecord,
    OutcomeStatus,
    RepositoryError,
    SourceRecord,
    SourceRecordRepository,
    create_test_provider,
    entries_from_dicts,
    reconcile_record,
)


def fetched(published, *names):
    return FetchedRecord(published=published, content=entries_from_dicts([entry(n) for n in names]))


def stored(published, verified, *names, error=""):
    return SourceRecord(
        content=entries_from_dicts([entry(n) for n in names]),
        published=published,
        verified=verified,
        error=error,
    )


# ============================================
# PURE RECONCILIATION
# ============================================

class TestReconcileRecord:
    """Tests for the pure reconciliation decision."""

    def test_failure_keeps_everything_but_error(self):
        old = stored(100, 500, "Jane Roe")
        new, outcome = reconcile_record(old, FetchedRecord.failure("HTTP 503"), now=900, source="un")

        assert new.content == old.content
        assert new.published == 100
        assert new.verified == 500
        assert new.error == "HTTP 503"
        assert outcome.status is OutcomeStatus.FETCH_FAILED
        assert outcome.message == "HTTP 503"
        assert not outcome.ok

    def test_newer_published_replaces(self):
        old = stored(100, 500, "Jane Roe")
        new, outcome = reconcile_record(old, fetched(200, "John Smith"), now=900)

        assert [e.names for e in new.content] == [("John Smith",)]
        assert (new.published, new.verified, new.error) == (200, 900, "")
        assert outcome.status is OutcomeStatus.UPDATED

    def test_same_published_same_content_only_verifies(self):
        old = stored(100, 500, "Jane Roe", error="old failure")
        new, outcome = reconcile_record(old, fetched(100, "Jane Roe"), now=900)

        assert new.content is old.content
        assert (new.published, new.verified, new.error) == (100, 900, "")
        assert outcome.status is OutcomeStatus.UNCHANGED
        assert outcome.ok

    def test_same_published_changed_content_replaces(self):
        old = stored(100, 500, "Jane Roe")
        new, outcome = reconcile_record(old, fetched(100, "Jane Q Roe"), now=900)

        assert [e.names for e in new.content] == [("Jane Q Roe",)]
        assert outcome.status is OutcomeStatus.UPDATED

    def test_content_compared_structurally_not_by_length(self):
        old = stored(100, 500, "Jane Roe", "John Smith")
        new, outcome = reconcile_record(old, fetched(100, "Jane Roe", "John Smyth"), now=900)
        assert outcome.status is OutcomeStatus.UPDATED

    def test_older_published_identical_content_does_not_regress(self):
        old = stored(200, 500, "Jane Roe")
        new, outcome = reconcile_record(old, fetched(100, "Jane Roe"), now=900)

        assert new.published == 200
        assert new.verified == 900
        assert outcome.status is OutcomeStatus.UNCHANGED

    def test_older_published_different_content_is_accepted(self):
        old = stored(200, 500, "Jane Roe")
        new, outcome = reconcile_record(old, fetched(100, "John Smith"), now=900)

        assert new.published == 100
        assert outcome.status is OutcomeStatus.UPDATED

    def test_first_fetch_over_empty_default(self):
        new, outcome = reconcile_record(EMPTY_RECORD, fetched(0), now=900)

        assert new.content == ()
        assert new.verified == 900
        assert outcome.status is OutcomeStatus.UNCHANGED

    def test_outcome_dict(self):
        _, outcome = reconcile_record(EMPTY_RECORD, FetchedRecord.failure("boom"), now=1, source="un")
        assert outcome.to_dict() == {"source": "un", "status": "fetch_failed", "message": "boom"}


# ============================================
# PERSISTED STORE
# ============================================

class TestCacheStoreInit:
    """Tests for store construction."""

    def test_configured_sources_start_empty(self, store):
        records = store.list_records()

        assert list(records) == [SOURCE_A, SOURCE_B]
        for record in records.values():
            assert record == EMPTY_RECORD

    def test_existing_records_are_kept(self, engine, store):
        store.reconcile(SOURCE_A, fetched(10, "Jane Roe"), now=50)

        provider = create_test_provider(engine=engine)
        reopened = CacheStore(provider, provider, source_names=[SOURCE_A, SOURCE_B, "list_c"])

        assert reopened.read_record(SOURCE_A).published == 10
        assert reopened.read_record("list_c") == EMPTY_RECORD

    def test_capabilities(self, store, read_only_store):
        assert store.can_read and store.can_write
        assert read_only_store.can_read and not read_only_store.can_write

    def test_reconcile_without_writer(self, read_only_store):
        with pytest.raises(ConfigurationError):
            read_only_store.reconcile(SOURCE_A, fetched(1, "Jane Roe"))

    def test_read_without_reader(self, engine):
        provider = create_test_provider(engine=engine)
        write_only = CacheStore(None, provider)
        with pytest.raises(ConfigurationError):
            write_only.load_snapshot()


class TestCacheStoreReconcile:
    """Tests for persisted reconciliation."""

    def test_update_is_persisted(self, store):
        outcome = store.reconcile(SOURCE_A, fetched(10, "Jane Roe"), now=50)
        record = store.read_record(SOURCE_A)

        assert outcome.status is OutcomeStatus.UPDATED
        assert record.published == 10
        assert record.verified == 50
        assert record.error == ""
        assert record.content[0].names == ("Jane Roe",)

    def test_idempotent_apart_from_verified(self, store):
        store.reconcile(SOURCE_A, fetched(10, "Jane Roe"), now=50)
        first = store.read_record(SOURCE_A)
        outcome = store.reconcile(SOURCE_A, fetched(10, "Jane Roe"), now=80)
        second = store.read_record(SOURCE_A)

        assert outcome.status is OutcomeStatus.UNCHANGED
        assert second.content == first.content
        assert second.published == first.published
        assert second.verified == 80

    def test_failure_keeps_last_good_data(self, store):
        store.reconcile(SOURCE_A, fetched(10, "Jane Roe"), now=50)
        outcome = store.reconcile(SOURCE_A, FetchedRecord.failure("timeout"), now=80)
        record = store.read_record(SOURCE_A)

        assert outcome.status is OutcomeStatus.FETCH_FAILED
        assert record.content[0].names == ("Jane Roe",)
        assert (record.published, record.verified, record.error) == (10, 50, "timeout")

    def test_success_clears_error(self, store):
        store.reconcile(SOURCE_A, FetchedRecord.failure("timeout"), now=80)
        store.reconcile(SOURCE_A, fetched(10, "Jane Roe"), now=90)
        assert store.read_record(SOURCE_A).error == ""

    def test_failure_isolated_per_source(self, store):
        store.reconcile(SOURCE_A, fetched(10, "Jane Roe"), now=50)
        store.reconcile(SOURCE_B, fetched(10, "John Smith"), now=50)

        store.reconcile(SOURCE_A, FetchedRecord.failure("HTTP 500"), now=100)
        store.reconcile(SOURCE_B, fetched(20, "John Q Smith"), now=100)

        a = store.read_record(SOURCE_A)
        b = store.read_record(SOURCE_B)
        assert (a.published, a.verified, a.error) == (10, 50, "HTTP 500")
        assert a.content[0].names == ("Jane Roe",)
        assert (b.published, b.verified, b.error) == (20, 100, "")
        assert b.content[0].names == ("John Q Smith",)

    def test_unknown_source_row_is_created(self, store):
        outcome = store.reconcile("adhoc", fetched(5, "Jane Roe"), now=10)

        assert outcome.status is OutcomeStatus.UPDATED
        assert store.read_record("adhoc").published == 5

    def test_restrictions_survive_round_trip(self, store):
        record = FetchedRecord.from_dict({
            'published': 3,
            'content': [entry("Jane Roe", residence=["FR"], passportNo=["P1"], dobYear=[1970])],
        })
        store.reconcile(SOURCE_A, record, now=10)
        loaded = store.read_record(SOURCE_A).content[0]

        assert loaded.residence == frozenset({"fr"})
        assert loaded.passport_no == frozenset({"P1"})
        assert loaded.dob_year == frozenset({1970})

    def test_read_only_store_sees_writes(self, store, read_only_store):
        store.reconcile(SOURCE_A, fetched(10, "Jane Roe"), now=50)
        assert read_only_store.read_record(SOURCE_A).published == 10


class TestSnapshot:
    """Tests for snapshot loading."""

    def test_projection_omits_verified(self, store):
        store.reconcile(SOURCE_A, fetched(10, "Jane Roe"), now=50)
        store.reconcile(SOURCE_B, FetchedRecord.failure("down"), now=50)
        snapshot = store.load_snapshot()

        assert list(snapshot.sources) == [SOURCE_A, SOURCE_B]
        assert snapshot.sources[SOURCE_A].published == 10
        assert snapshot.sources[SOURCE_B].error == "down"
        assert not hasattr(snapshot.sources[SOURCE_A], "verified")
        assert snapshot.entry_count == 1

    def test_snapshot_is_immutable(self, store):
        snapshot = store.load_snapshot()
        with pytest.raises(TypeError):
            snapshot.sources["other"] = None

    def test_new_snapshot_per_load(self, store):
        before = store.load_snapshot()
        store.reconcile(SOURCE_A, fetched(10, "Jane Roe"), now=50)
        after = store.load_snapshot()

        assert before.entry_count == 0
        assert after.entry_count == 1


class TestStaleSources:
    """Tests for staleness detection."""

    def test_never_verified_is_stale(self, store):
        assert store.stale_sources(3600, now=1000) == [SOURCE_A, SOURCE_B]

    def test_recent_verification(self, store):
        store.reconcile(SOURCE_A, fetched(10, "Jane Roe"), now=1000)
        store.reconcile(SOURCE_B, fetched(10, "John Smith"), now=100)
        assert store.stale_sources(600, now=1200) == [SOURCE_B]

    def test_failed_fetch_does_not_refresh_staleness(self, store):
        store.reconcile(SOURCE_A, fetched(10, "Jane Roe"), now=100)
        store.reconcile(SOURCE_A, FetchedRecord.failure("down"), now=5000)
        assert SOURCE_A in store.stale_sources(600, now=5000)


class TestRepository:
    """Tests for the source record repository."""

    def test_list_names_sorted(self, store):
        with store.writer.session_scope() as session:
            repo = SourceRecordRepository(session)
            repo.create_empty("aaa")
            assert repo.list_names() == ["aaa", SOURCE_A, SOURCE_B]

    def test_missing_source(self, store):
        with store.reader.session_scope() as session:
            assert SourceRecordRepository(session).get("nope") is None

    def test_duplicate_create_raises_duplicate_error(self, store):
        with pytest.raises(DuplicateSourceError):
            with store.writer.session_scope() as session:
                SourceRecordRepository(session).create_empty(SOURCE_A)

        assert isinstance(DuplicateSourceError("x"), RepositoryError)


# ============================================
# CORRUPT ROWS AND CONCURRENT WRITERS
# ============================================

class TestCorruptRecord:
    """A stored row whose content no longer parses."""

    def test_reconcile_raises_repository_error(self, store):
        corrupt_record(store, SOURCE_A)

        with pytest.raises(RepositoryError, match=SOURCE_A):
            store.reconcile(SOURCE_A, fetched(1, "Jane Roe"))

    def test_other_sources_still_reconcile(self, store):
        corrupt_record(store, SOURCE_A)

        outcome = store.reconcile(SOURCE_B, fetched(1, "Jane Roe"), now=5)

        assert outcome.status is OutcomeStatus.UPDATED
        assert store.read_record(SOURCE_B).published == 1

    def test_snapshot_skips_unreadable_source(self, store, caplog):
        store.reconcile(SOURCE_B, fetched(1, "Jane Roe"), now=5)
        corrupt_record(store, SOURCE_A)

        snapshot = store.load_snapshot()

        assert list(snapshot.sources) == [SOURCE_B]
        assert "Skipping unreadable source" in caplog.text


class TestConcurrentCreation:
    """Another writer inserts the row between our read and our insert."""

    def test_reconcile_retries_after_duplicate_insert(self, store, monkeypatch):
        real_get_row = SourceRecordRepository.get_row
        calls = []

        def get_row(self, name, for_update=False):
            calls.append(name)
            if len(calls) == 1:
                return None
            return real_get_row(self, name, for_update)

        monkeypatch.setattr(SourceRecordRepository, "get_row", get_row)

        outcome = store.reconcile(SOURCE_A, fetched(10, "Jane Roe"), now=50)

        assert outcome.status is OutcomeStatus.UPDATED
        assert calls == [SOURCE_A, SOURCE_A]
        assert store.read_record(SOURCE_A).published == 10

    def test_ensure_sources_retries_after_duplicate_insert(self, store, monkeypatch):
        real_list_names = SourceRecordRepository.list_names
        calls = []

        def list_names(self):
            calls.append(1)
            if len(calls) == 1:
                return []
            return real_list_names(self)

        monkeypatch.setattr(SourceRecordRepository, "list_names", list_names)

        assert store.ensure_sources([SOURCE_A, "list_c"]) == ["list_c"]
        assert len(calls) == 2
        assert store.read_record(SOURCE_A) == EMPTY_RECORD


# ============================================
# CONNECTION HEALTH
# ============================================

class TestPing:
    def test_reachable_store(self, store, read_only_store):
        assert store.ping() is True
        assert read_only_store.ping() is True

    def test_provider_health_check(self, engine):
        assert create_test_provider(engine=engine).health_check() is True

    def test_unreachable_reader(self):
        reader = MagicMock()
        reader.health_check.return_value = False

        assert CacheStore(reader).ping() is False

    def test_close_disposes_shared_provider_once(self):
        provider = MagicMock()
        store = CacheStore(provider)
        store.writer = provider

        store.close()

        provider.close.assert_called_once_with()
