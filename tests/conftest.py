"""Common test fixtures for meowpad."""

import tempfile
from pathlib import Path

import pytest

from meowpad.config import config
from meowpad.services.capture_service import CaptureService
from meowpad.services.entity_store import open_store
from meowpad.services.query_service import QueryEngine
from meowpad.storage.database import Database
from tests.fakes import FakeFetcher


@pytest.fixture
def temp_dirs():
    """Create temporary directories for the database and logs."""
    with tempfile.TemporaryDirectory() as db_dir:
        with tempfile.TemporaryDirectory() as log_dir:
            yield Path(db_dir), Path(log_dir)


@pytest.fixture
def test_config(temp_dirs, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    db_dir, log_dir = temp_dirs
    monkeypatch.setattr(config, "database_path", db_dir / "test_meowpad.db")
    monkeypatch.setattr(config, "log_dir", log_dir)
    monkeypatch.setattr(config, "fetch_retries", 0)
    monkeypatch.setattr(config, "editor", None)
    yield config


@pytest.fixture
def db_url(test_config):
    """SQLAlchemy URL of the per-test database file."""
    return test_config.get_db_url()


@pytest.fixture
def db(db_url):
    """A Database on an empty (unmigrated) file."""
    database = Database(db_url)
    yield database
    database.dispose()


@pytest.fixture
def store(db_url):
    """A migrated EntityStore."""
    entity_store = open_store(db_url)
    yield entity_store
    entity_store.close()


@pytest.fixture
def query_engine(store):
    """QueryEngine over the test store."""
    return QueryEngine(store)


@pytest.fixture
def fake_fetcher():
    """Fetcher serving canned pages."""
    return FakeFetcher()


@pytest.fixture
def capture_service(store, fake_fetcher):
    """CaptureService wired to the fake fetcher."""
    return CaptureService(store, fetcher=fake_fetcher)
