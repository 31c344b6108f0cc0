"""Shared test fixtures."""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from holo_scheduler.scheduler.store import SqliteTaskStore
from holo_scheduler.worker.storage import WorkerTaskStore

T0 = datetime(2025, 1, 6, 8, 0, tzinfo=UTC)


class FakeClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> None:
        self.now = value


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path: Path) -> SqliteTaskStore:
    return SqliteTaskStore(db_path=tmp_path / "test.db")


@pytest.fixture
def worker_store(tmp_path: Path) -> WorkerTaskStore:
    return WorkerTaskStore(db_path=tmp_path / "worker.db")
