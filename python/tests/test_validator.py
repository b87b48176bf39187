"""
Integration tests for the SanctionsValidator facade
"""

import json
from unittest.mock import MagicMock

import pytest

from conftest import SOURCE_A, SOURCE_B, corrupt_record, entry
from config_manager import ConfigurationError
from fetcher import StaticSourceFetcher
from matcher import InputValidationError
from store import CacheStore, FetchedRecord, OutcomeStatus, RepositoryError
from validator import RefreshReport, SanctionsValidator


@pytest.fixture
def validator(config, store, fetcher):
    return SanctionsValidator(config=config, fetcher=fetcher, store=store)


def source_doc(published, *entries):
    return {'published': published, 'content': list(entries)}


class TestRefresh:
    """Tests for the refresh cycle."""

    def test_refresh_loads_new_data(self, validator, fetcher):
        fetcher.set(SOURCE_A, source_doc(10, entry("Zaki Izzat Zaki AHMAD", dobYear=[1999])))
        fetcher.set(SOURCE_B, source_doc(10, entry("TMPA")))

        report = validator.refresh()

        assert report.success
        assert [o.status for o in report.outcomes] == [OutcomeStatus.UPDATED, OutcomeStatus.UPDATED]
        assert validator.is_sanctioned("Zaki", "Ahmad", "1999-01-05")
        assert validator.get_match_info(name="TMPA").list == SOURCE_B

    def test_refresh_twice_only_advances_verified(self, validator, fetcher, store):
        fetcher.set(SOURCE_A, source_doc(10, entry("Jane Roe")))
        fetcher.set(SOURCE_B, source_doc(10, entry("John Smith")))
        validator.refresh()
        before = store.list_records()

        report = validator.refresh()
        after = store.list_records()

        assert {o.status for o in report.outcomes} == {OutcomeStatus.UNCHANGED}
        for name in (SOURCE_A, SOURCE_B):
            assert after[name].content == before[name].content
            assert after[name].published == before[name].published
            assert after[name].verified >= before[name].verified

    def test_partial_failure_is_isolated(self, validator, fetcher, store):
        fetcher.set(SOURCE_A, source_doc(10, entry("Jane Roe")))
        fetcher.set(SOURCE_B, source_doc(10, entry("John Smith")))
        validator.refresh()
        a_before = store.read_record(SOURCE_A)

        fetcher.set(SOURCE_A, {'error': "HTTP 502"})
        fetcher.set(SOURCE_B, source_doc(20, entry("John Q Smith")))
        report = validator.refresh()

        assert not report.success
        assert [o.source for o in report.failed] == [SOURCE_A]
        a_after = store.read_record(SOURCE_A)
        assert a_after.content == a_before.content
        assert a_after.published == a_before.published
        assert a_after.verified == a_before.verified
        assert a_after.error == "HTTP 502"
        assert store.read_record(SOURCE_B).published == 20

        # last known-good content still answers queries
        assert validator.is_sanctioned(name="Jane Roe")
        assert validator.snapshot.sources[SOURCE_A].error == "HTTP 502"

    def test_fetch_failure_logs_warning(self, validator, fetcher, caplog):
        fetcher.set(SOURCE_A, {'error': "connection refused"})
        fetcher.set(SOURCE_B, source_doc(1))

        with caplog.at_level("WARNING"):
            validator.refresh()

        assert any(SOURCE_A in r.getMessage() and "connection refused" in r.getMessage()
                   for r in caplog.records)

    def test_malformed_content_is_a_fetch_failure(self, validator, fetcher):
        fetcher.set(SOURCE_A, source_doc(1, {'names': []}))
        fetcher.set(SOURCE_B, source_doc(1, entry("TMPA")))

        report = validator.refresh()

        statuses = {o.source: o.status for o in report.outcomes}
        assert statuses[SOURCE_A] is OutcomeStatus.FETCH_FAILED
        assert statuses[SOURCE_B] is OutcomeStatus.UPDATED

    def test_store_error_is_isolated(self, config, fetcher):
        store = MagicMock(spec=CacheStore)
        store.can_read = False
        store.can_write = True

        def reconcile(name, record):
            if name == SOURCE_A:
                raise RepositoryError("disk full")
            return MagicMock(ok=True, status=OutcomeStatus.UPDATED)

        store.reconcile.side_effect = reconcile
        fetcher.set(SOURCE_A, source_doc(1))
        fetcher.set(SOURCE_B, source_doc(1))

        report = SanctionsValidator(config=config, fetcher=fetcher, store=store).refresh()

        assert report.outcomes[0].status is OutcomeStatus.STORE_FAILED
        assert "disk full" in report.outcomes[0].message
        assert store.reconcile.call_count == 2

    def test_corrupt_stored_record_is_isolated(self, config, store, fetcher):
        corrupt_record(store, SOURCE_A)
        validator = SanctionsValidator(config=config, fetcher=fetcher, store=store)
        fetcher.set(SOURCE_A, source_doc(2, entry("Jane Roe")))
        fetcher.set(SOURCE_B, source_doc(2, entry("TMPA")))

        report = validator.refresh()

        statuses = {o.source: o.status for o in report.outcomes}
        assert statuses == {SOURCE_A: OutcomeStatus.STORE_FAILED, SOURCE_B: OutcomeStatus.UPDATED}
        assert SOURCE_A in report.failed[0].message
        assert validator.is_sanctioned("TMPA", None)
        assert list(validator.snapshot.sources) == [SOURCE_B]

    def test_missing_sources_reported(self, validator, fetcher):
        fetcher.set(SOURCE_A, source_doc(1))

        report = validator.refresh()

        assert report.missing_sources == [SOURCE_B]

    def test_fetcher_called_once_per_refresh(self, validator, fetcher):
        validator.refresh()
        assert fetcher.calls == 1

    def test_refresh_requires_write_capability(self, config, read_only_store, fetcher):
        validator = SanctionsValidator(config=config, fetcher=fetcher, store=read_only_store)
        with pytest.raises(ConfigurationError):
            validator.refresh()
        assert fetcher.calls == 0

    def test_refresh_requires_fetcher(self, config, store):
        with pytest.raises(ConfigurationError):
            SanctionsValidator(config=config, store=store).refresh()

    def test_report_dict(self, validator, fetcher):
        fetcher.set(SOURCE_A, {'error': "down"})
        data = validator.refresh().to_dict()

        assert data['success'] is False
        assert data['outcomes'] == [{'source': SOURCE_A, 'status': "fetch_failed", 'message': "down"}]
        assert data['missing_sources'] == [SOURCE_B]
        json.dumps(data)


class TestQueries:
    """Tests for query operations."""

    def test_construction_loads_persisted_snapshot(self, config, store, read_only_store):
        store.reconcile(SOURCE_A, FetchedRecord.from_dict(source_doc(1, entry("TMPA"))))

        validator = SanctionsValidator(config=config, store=read_only_store)

        assert validator.get_match_info("TMPA", None).to_dict() == {
            'matched': True,
            'list': SOURCE_A,
            'matchedArgs': {'name': "TMPA"},
            'comment': None,
        }

    def test_queries_never_fetch(self, validator, fetcher):
        fetcher.set(SOURCE_A, source_doc(1, entry("TMPA")))

        assert not validator.is_sanctioned(name="TMPA")
        assert fetcher.calls == 0

    def test_snapshot_not_updated_by_other_writers_until_reload(self, validator, store):
        store.reconcile(SOURCE_A, FetchedRecord.from_dict(source_doc(1, entry("TMPA"))))
        assert not validator.is_sanctioned(name="TMPA")

        validator.reload()
        assert validator.is_sanctioned(name="TMPA")

    def test_structured_query(self, validator, fetcher):
        fetcher.set(SOURCE_A, source_doc(1, entry("John Smith", residence=["fr", "us"])))
        validator.refresh()

        result = validator.get_match_info({'first_name': "John", 'last_name': "Smith", 'residence': "France"})
        assert result.matched_args == {'name': "John Smith", 'residence': "fr"}
        assert not validator.is_sanctioned({'first_name': "John", 'last_name': "Smith", 'residence': "Israel"})

    def test_reject_policy_from_config(self, config, store, fetcher):
        config.matching.unresolved_country_policy = 'reject'
        validator = SanctionsValidator(config=config, fetcher=fetcher, store=store)
        fetcher.set(SOURCE_A, source_doc(1, entry("John Smith", residence=["fr"])))
        validator.refresh()

        assert not validator.is_sanctioned(name="John Smith", residence="Atlantis")

    def test_invalid_query_raises(self, validator):
        with pytest.raises(InputValidationError):
            validator.is_sanctioned(name="<script>")

    def test_queries_need_read_capability(self, config, engine, fetcher):
        from store import create_test_provider
        write_only = CacheStore(None, create_test_provider(engine=engine))
        validator = SanctionsValidator(config=config, fetcher=fetcher, store=write_only)

        with pytest.raises(ConfigurationError):
            validator.is_sanctioned(name="TMPA")

    def test_write_only_refresh_still_works(self, config, engine, fetcher):
        from store import create_test_provider
        write_only = CacheStore(None, create_test_provider(engine=engine))
        validator = SanctionsValidator(config=config, fetcher=fetcher, store=write_only)
        fetcher.set(SOURCE_A, source_doc(1, entry("TMPA")))

        assert validator.refresh().success


class TestExportAndHealth:
    """Tests for export and health reporting."""

    def test_export_json(self, validator, fetcher, tmp_path):
        fetcher.set(SOURCE_A, source_doc(7, entry("TMPA")))
        validator.refresh()

        path = validator.export(tmp_path / "snapshot.json")
        data = json.loads(path.read_text(encoding='utf-8'))

        assert data['entry_count'] == 1
        assert data['sources'][SOURCE_A]['published'] == 7

    def test_export_default_location(self, validator, config):
        path = validator.export()
        assert str(path).startswith(config.export.output_directory)
        assert path.suffix == ".json"

    def test_health_flags_stale_and_failed(self, validator, store):
        store.reconcile(SOURCE_A, FetchedRecord.from_dict(source_doc(1, entry("TMPA"))), now=1000)
        store.reconcile(SOURCE_B, FetchedRecord.failure("down"), now=1000)

        report = validator.health(now=1000 + 3600)

        assert report['healthy'] is False
        assert report['sources'][SOURCE_A] == {
            'published': 1, 'verified': 1000, 'error': "", 'entries': 1, 'stale': False,
        }
        assert report['sources'][SOURCE_B]['stale'] is True
        assert report['sources'][SOURCE_B]['error'] == "down"

    def test_health_all_good(self, validator, store):
        for name in (SOURCE_A, SOURCE_B):
            store.reconcile(name, FetchedRecord.from_dict(source_doc(1, entry("TMPA"))), now=1000)

        assert validator.health(now=2000)['healthy'] is True

    def test_health_stale_after_threshold(self, validator, store, config):
        for name in (SOURCE_A, SOURCE_B):
            store.reconcile(name, FetchedRecord.from_dict(source_doc(1, entry("TMPA"))), now=1000)

        later = 1000 + config.refresh.staleness_warning_hours * 3600 + 1
        assert validator.health(now=later)['sources'][SOURCE_A]['stale'] is True

    def test_health_store_unreachable(self, validator, monkeypatch):
        monkeypatch.setattr(validator.store, "ping", lambda: False)

        assert validator.health(now=1000) == {
            'healthy': False, 'store_available': False, 'sources': {},
        }

    def test_health_reports_store_available(self, validator):
        assert validator.health(now=1000)['store_available'] is True


class TestRefreshReport:
    def test_empty_report_is_success(self):
        assert RefreshReport(started_at="now").success
