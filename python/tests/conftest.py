"""
Shared pytest fixtures

Stores run on an in-memory SQLite database shared through a StaticPool,
so a read-only store and a read-write store can see the same data.
"""

import sys
from pathlib import Path

import pytest
import yaml
from sqlalchemy import create_engine, update
from sqlalchemy.pool import StaticPool

sys.path.insert(0, str(Path(__file__).parent.parent))

from config_manager import ConfigManager
from fetcher import StaticSourceFetcher
from store import CacheStore, SourceRecordRow, create_test_provider


SOURCE_A = "list_a"
SOURCE_B = "list_b"


@pytest.fixture
def config_data(tmp_path):
    """Raw configuration written to the temporary config.yaml"""
    return {
        'store': {
            'read_url': 'sqlite://',
            'write_url': 'sqlite://',
        },
        'sources': {
            'timeout_seconds': 5,
            'max_retry_attempts': 2,
            'lists': [
                {'name': SOURCE_A, 'url': 'https://lists.example.org/a.json'},
                {'name': SOURCE_B, 'url': 'https://lists.example.org/b.json'},
            ],
        },
        'matching': {
            'unresolved_country_policy': 'ignore',
        },
        'refresh': {
            'staleness_warning_hours': 24,
        },
        'export': {
            'output_directory': str(tmp_path / 'exports'),
            'format': 'json',
        },
        'logging': {
            'level': 'DEBUG',
            'console': False,
        },
    }


@pytest.fixture
def config(tmp_path, config_data, monkeypatch):
    """ConfigManager loaded from a temporary file"""
    monkeypatch.delenv("SANCTIONS_STORE_READ_URL", raising=False)
    monkeypatch.delenv("SANCTIONS_STORE_WRITE_URL", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(config_data), encoding='utf-8')
    return ConfigManager(str(path))


@pytest.fixture
def engine():
    """In-memory SQLite engine shared across connections"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine, config):
    """Read-write cache store with the configured sources initialized"""
    provider = create_test_provider(engine=engine)
    return CacheStore(provider, provider, source_names=config.sources.names)


@pytest.fixture
def read_only_store(engine, store):
    """Store over the same database without write capability"""
    return CacheStore(create_test_provider(engine=engine))


@pytest.fixture
def fetcher():
    return StaticSourceFetcher()


def entry(*names, **fields):
    """Serialized entry with the given aliases"""
    data = {'names': list(names)}
    data.update(fields)
    return data


def corrupt_record(store, name):
    """Overwrite a stored row with content that no longer parses"""
    with store.writer.session_scope() as session:
        session.execute(
            update(SourceRecordRow)
            .where(SourceRecordRow.name == name)
            .values(content=[{'names': []}])
        )
