"""TaskStore: persistence contract and the aiosqlite-backed implementation."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from holo_scheduler.config import settings
from holo_scheduler.db import transaction
from holo_scheduler.scheduler.models import (
    RESULT_COLUMNS,
    TASK_COLUMNS,
    ScheduledTask,
    TaskResult,
    TaskStatus,
)

if TYPE_CHECKING:
    from datetime import datetime
    from pathlib import Path

    import aiosqlite

logger = logging.getLogger(__name__)

StatusFilter = TaskStatus | Iterable[TaskStatus] | None


@runtime_checkable
class TaskStore(Protocol):
    """Durable storage for task definitions and run history.

    Every write is atomic with respect to a single task id.
    """

    async def put_task(self, task: ScheduledTask) -> ScheduledTask:
        """Insert or replace a task."""
        ...

    async def get_task(self, task_id: str) -> ScheduledTask | None:
        """Fetch a task by ID, or None if not found."""
        ...

    async def list_tasks(
        self,
        status: StatusFilter = None,
        due_before: datetime | None = None,
    ) -> list[ScheduledTask]:
        """Return tasks ordered by creation time, optionally filtered."""
        ...

    async def delete_task(self, task_id: str) -> bool:
        """Delete a task and its history. Returns True if it existed."""
        ...

    async def record_result(
        self,
        task_id: str,
        result: TaskResult,
        mutate: Callable[[ScheduledTask], None] | None = None,
    ) -> ScheduledTask | None:
        """Append *result* to the history and fold it into the task.

        *mutate*, when given, is applied to the task before it is saved, so
        the history entry and the resulting state change commit together.
        """
        ...

    async def list_results(self, task_id: str, limit: int | None = None) -> list[TaskResult]:
        """Return the run history of a task, oldest first."""
        ...

    async def prune_results(self, before: datetime) -> int:
        """Delete history entries that ended before *before*."""
        ...


def status_values(status: StatusFilter) -> list[str] | None:
    if status is None:
        return None
    if isinstance(status, TaskStatus):
        return [str(status)]
    return [str(s) for s in status]


def is_due(task: ScheduledTask, due_before: datetime | None) -> bool:
    if due_before is None:
        return True
    return task.next_run_at is not None and task.next_run_at <= due_before


_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS scheduled_tasks (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT NOT NULL,
    task_type TEXT NOT NULL,
    payload TEXT NOT NULL,
    schedule TEXT NOT NULL,
    priority TEXT NOT NULL DEFAULT 'medium',
    max_retries INTEGER NOT NULL DEFAULT 3,
    retry_delay_seconds INTEGER NOT NULL DEFAULT 30,
    notifications TEXT NOT NULL,
    status TEXT NOT NULL,
    attempt_count INTEGER NOT NULL DEFAULT 0,
    next_run_at TEXT,
    last_run_at TEXT,
    last_result TEXT,
    last_error TEXT,
    started_at TEXT,
    total_executions INTEGER NOT NULL DEFAULT 0,
    successful_executions INTEGER NOT NULL DEFAULT 0,
    failed_executions INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS task_results (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id TEXT NOT NULL,
    outcome TEXT NOT NULL,
    occurrence_started_at TEXT NOT NULL,
    occurrence_ended_at TEXT NOT NULL,
    attempt INTEGER NOT NULL DEFAULT 1,
    result TEXT,
    error TEXT
);
CREATE INDEX IF NOT EXISTS idx_task_results_task_id ON task_results (task_id);
"""

_SELECT_TASK = f"SELECT {', '.join(TASK_COLUMNS)} FROM scheduled_tasks"
_UPSERT_TASK = (
    f"INSERT OR REPLACE INTO scheduled_tasks ({', '.join(TASK_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in TASK_COLUMNS)})"
)
_INSERT_RESULT = (
    f"INSERT INTO task_results ({', '.join(RESULT_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in RESULT_COLUMNS)})"
)


class SqliteTaskStore:
    """Persists scheduled tasks and their run history in SQLite.

    Pass an explicit *db_path* for test isolation (e.g. ``tmp_path / "test.db"``).
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._initialised = False

    # -- Internal helpers ------------------------------------------------------

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        schema = None if self._initialised else _CREATE_TABLES
        async with transaction(self._db_path, schema) as db:
            self._initialised = True
            yield db

    # -- Tasks -----------------------------------------------------------------

    async def put_task(self, task: ScheduledTask) -> ScheduledTask:
        async with self._transaction() as db:
            await db.execute(_UPSERT_TASK, task.to_row())
        logger.debug("Stored task %s (%s, status=%s)", task.name, task.id, task.status)
        return task

    async def get_task(self, task_id: str) -> ScheduledTask | None:
        async with self._transaction() as db:
            cursor = await db.execute(f"{_SELECT_TASK} WHERE id = ?", (task_id,))
            row = await cursor.fetchone()
        return ScheduledTask.from_row(row) if row else None

    async def list_tasks(
        self,
        status: StatusFilter = None,
        due_before: datetime | None = None,
    ) -> list[ScheduledTask]:
        statuses = status_values(status)
        query = _SELECT_TASK
        params: tuple = ()
        if statuses is not None:
            if not statuses:
                return []
            query += f" WHERE status IN ({', '.join('?' for _ in statuses)})"
            params = tuple(statuses)
        query += " ORDER BY created_at, id"

        async with self._transaction() as db:
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()
        tasks = [ScheduledTask.from_row(row) for row in rows]
        return [t for t in tasks if is_due(t, due_before)]

    async def delete_task(self, task_id: str) -> bool:
        async with self._transaction() as db:
            cursor = await db.execute("DELETE FROM scheduled_tasks WHERE id = ?", (task_id,))
            deleted = cursor.rowcount > 0
            await db.execute("DELETE FROM task_results WHERE task_id = ?", (task_id,))
        if deleted:
            logger.info("Deleted task: %s", task_id)
        return deleted

    # -- History ---------------------------------------------------------------

    async def record_result(
        self,
        task_id: str,
        result: TaskResult,
        mutate: Callable[[ScheduledTask], None] | None = None,
    ) -> ScheduledTask | None:
        async with self._transaction() as db:
            cursor = await db.execute(f"{_SELECT_TASK} WHERE id = ?", (task_id,))
            row = await cursor.fetchone()
            if row is None:
                logger.warning("Result for unknown task dropped: %s", task_id)
                return None
            task = ScheduledTask.from_row(row)
            task.apply_result(result)
            if mutate is not None:
                mutate(task)
            await db.execute(_INSERT_RESULT, result.to_row())
            await db.execute(_UPSERT_TASK, task.to_row())
        return task

    async def list_results(self, task_id: str, limit: int | None = None) -> list[TaskResult]:
        query = (
            f"SELECT {', '.join(RESULT_COLUMNS)} FROM task_results WHERE task_id = ? ORDER BY id"
        )
        async with self._transaction() as db:
            cursor = await db.execute(query, (task_id,))
            rows = await cursor.fetchall()
        results = [TaskResult.from_row(row) for row in rows]
        if limit is not None:
            results = results[-limit:] if limit > 0 else []
        return results

    async def prune_results(self, before: datetime) -> int:
        async with self._transaction() as db:
            cursor = await db.execute(
                "DELETE FROM task_results WHERE occurrence_ended_at < ?",
                (before.isoformat(),),
            )
            removed = cursor.rowcount
        if removed:
            logger.info("Pruned %d history entr(ies) older than %s", removed, before.isoformat())
        return removed
