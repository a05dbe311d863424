"""
Shared fixtures.
"""

import pytest

from fakes import FakePage
from stepwise.config.settings import Settings
from stepwise.storage.store import SQLAlchemyRecordStore


@pytest.fixture
def settings(tmp_path):
    """Settings rooted in a temporary directory."""
    return Settings(
        data_dir=tmp_path / "data",
        artifacts_dir=tmp_path / "artifacts",
        database_url=f"sqlite:///{tmp_path / 'stepwise.sqlite'}",
        step_timeout_seconds=2,
        log_format="text",
    )


@pytest.fixture
def store(settings):
    """Record store on a fresh SQLite database."""
    settings.create_directories()
    record_store = SQLAlchemyRecordStore(settings.database_url)
    record_store.init_db()
    yield record_store
    record_store.close()


@pytest.fixture
def project(store):
    return store.create_project("Shop", "https://app.test", "local", {"team": "qa"})


@pytest.fixture
def fake_page():
    return FakePage()
