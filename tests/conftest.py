"""Common test fixtures for the note tree core."""

import tempfile
from pathlib import Path

import pytest
from sqlalchemy import create_engine

from notetree.config import HISTORY_SNAPSHOT_INTERVAL_OPTION, config
from notetree.models.db_models import Base
from notetree.observability import metrics
from notetree.services.note_service import NoteService
from notetree.storage.gateway import SqlGateway
from notetree.storage.option_repository import OptionRepository
from notetree.storage.sync_log import SyncLog
from tests.fakes import FakeClock

SNAPSHOT_INTERVAL = 600
DATA_KEY = b"0123456789abcdef"
OTHER_KEY = b"fedcba9876543210"
SOURCE_ID = "replica-a"


@pytest.fixture
def temp_dirs():
    """Create temporary directories for the database and logs."""
    with tempfile.TemporaryDirectory() as db_dir:
        with tempfile.TemporaryDirectory() as log_dir:
            yield Path(db_dir), Path(log_dir)


@pytest.fixture
def test_config(temp_dirs, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    db_dir, _ = temp_dirs
    monkeypatch.setattr(config, "database_path", db_dir / "test_notetree.db")
    monkeypatch.setattr(config, "in_memory_db", False)
    monkeypatch.setattr(config, "root_note_id", "root")
    yield config


@pytest.fixture
def engine(test_config):
    """Create an engine on a fresh database file with all tables."""
    engine = create_engine(test_config.get_db_url())
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def gateway(engine):
    return SqlGateway(engine)


@pytest.fixture
def sync_log(gateway):
    return SyncLog(gateway)


@pytest.fixture
def options(gateway):
    """Option store with the snapshot interval set."""
    repo = OptionRepository(gateway)
    repo.set_option(HISTORY_SNAPSHOT_INTERVAL_OPTION, str(SNAPSHOT_INTERVAL))
    return repo


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def note_service(gateway, sync_log, options, clock):
    """Create a NoteService wired to the test database and a fake clock."""
    return NoteService(gateway=gateway, sync_log=sync_log, options=options, clock=clock)


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()
