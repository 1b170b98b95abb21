"""Shared pytest fixtures for sleep-tracker tests."""

from __future__ import annotations

from typing import Any

import pytest

from sleep_tracker.config import Settings
from sleep_tracker.database import SleepDatabase, SleepDatabaseDao


@pytest.fixture()
def settings(tmp_path: Any) -> Settings:
    """Settings pointing at a fresh database file under tmp_path."""
    return Settings(db_path=str(tmp_path / "sleep.db"), schema_version=1)


@pytest.fixture()
def database(settings: Settings) -> SleepDatabase:
    return SleepDatabase(settings)


@pytest.fixture()
def dao(database: SleepDatabase) -> SleepDatabaseDao:
    return database.dao


@pytest.fixture(autouse=True)
def _reset_singleton():
    SleepDatabase.reset_instance()
    yield
    SleepDatabase.reset_instance()
