"""Shared fixtures: a throwaway SQLite store per test and a scripted telemetry source."""

import copy
from typing import Any, List, Optional

import pytest

from fleetsync.app import create_app
from fleetsync.freshness import FreshnessIndex
from fleetsync.ingestion import IngestionPipeline
from fleetsync.models import init_db, make_engine, make_session_factory
from fleetsync.services import PreferencesService, SettingsService
from fleetsync.store import DocumentStore


class FakeTelemetryClient:
    """Returns whatever snapshot the test put in entries, or raises error."""

    def __init__(self, entries: Optional[List[Any]] = None):
        self.entries = list(entries or [])
        self.error: Optional[Exception] = None
        self.calls = 0

    def fetch_snapshot(self) -> List[Any]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return copy.deepcopy(self.entries)


@pytest.fixture
def database_url(tmp_path):
    return f'sqlite:///{tmp_path / "fleetsync.db"}'


@pytest.fixture
def store(database_url):
    engine = make_engine(database_url)
    init_db(bind=engine)
    yield DocumentStore(make_session_factory(engine))
    engine.dispose()


@pytest.fixture
def freshness():
    return FreshnessIndex()


@pytest.fixture
def telemetry():
    return FakeTelemetryClient()


@pytest.fixture
def pipeline(telemetry, store, freshness):
    return IngestionPipeline(client=telemetry, store=store, freshness=freshness)


@pytest.fixture
def settings_service(store):
    return SettingsService(store)


@pytest.fixture
def preferences_service(store):
    return PreferencesService(store)


@pytest.fixture
def app(database_url, telemetry, tmp_path):
    app = create_app(
        start_ingestion=False,
        database_url=database_url,
        client=telemetry,
        icon_directory=str(tmp_path / 'icons'),
    )
    app.config['TESTING'] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()
