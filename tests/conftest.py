"""Shared test fixtures for yuruppu."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from tests.fakes import FakeMessenger, FakeProvider, make_ctx
from yuruppu.core.context import RequestContext
from yuruppu.history.store import HistoryStore
from yuruppu.storage.database import Database
from yuruppu.storage.objects import SQLiteObjectStorage


@pytest.fixture
async def db(tmp_path) -> Database:  # type: ignore[misc]
    """File-backed SQLite database with the objects schema."""
    database = Database(str(tmp_path / "test.db"))
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def storage(db: Database) -> SQLiteObjectStorage:
    return SQLiteObjectStorage(db)


@pytest.fixture
def history(storage: SQLiteObjectStorage) -> HistoryStore:
    return HistoryStore(storage)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def messenger() -> FakeMessenger:
    return FakeMessenger()


@pytest.fixture
def ctx() -> RequestContext:
    return make_ctx()


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
