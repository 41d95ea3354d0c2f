from __future__ import annotations

from collections.abc import Iterator

import pytest

from intune_bulk.config import EngineSettings
from intune_bulk.data.repositories import JobRepository
from intune_bulk.data.sql import DatabaseConfig, DatabaseManager
from tests.stubs import FakeClock, FakeGraphClient


@pytest.fixture
def database(tmp_path) -> Iterator[DatabaseManager]:
    """Create an isolated SQLite database for repository tests."""

    db_path = tmp_path / "jobs.db"
    manager = DatabaseManager(DatabaseConfig(path=db_path))
    manager.ensure_schema()
    yield manager
    manager.dispose()


@pytest.fixture
def job_repository(database: DatabaseManager) -> JobRepository:
    return JobRepository(database)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine_settings(tmp_path) -> EngineSettings:
    """Settings with a short poll interval so scheduler tests idle briefly."""

    return EngineSettings(
        poll_interval=0.01,
        database_path=tmp_path / "jobs.db",
    )


@pytest.fixture
def graph_client() -> FakeGraphClient:
    return FakeGraphClient()
