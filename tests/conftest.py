"""Shared fixtures: a controllable clock and an in-memory SQLite store."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from folio_analytics.core.database import SQLiteDatabase, init_schema

FIXED_NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable returning a fixed aware datetime; ``advance`` moves it forward."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db():
    database = SQLiteDatabase(":memory:")
    asyncio.run(init_schema(database))
    yield database
    database.close()
