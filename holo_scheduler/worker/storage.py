"""WorkerTaskStore: the BackgroundRunner's own durable key/value store.

A single ``storage(key, value)`` table holds JSON values:

- ``task:<id>``     one task (``ScheduledTask.to_dict()``)
- ``results:<id>``  run history of that task (list of ``TaskResult.to_dict()``)
- anything else     runner state via ``get_value()`` / ``set_value()``

It implements the TaskStore protocol, so a SchedulerEngine can run on it
unchanged. It is independent of the host store; the two are reconciled only
on request.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from holo_scheduler.config import settings
from holo_scheduler.db import transaction
from holo_scheduler.scheduler.models import ScheduledTask, TaskResult, parse_timestamp
from holo_scheduler.scheduler.store import StatusFilter, is_due, status_values

if TYPE_CHECKING:
    from datetime import datetime
    from pathlib import Path

    import aiosqlite

logger = logging.getLogger(__name__)

_TASK_PREFIX = "task:"
_RESULTS_PREFIX = "results:"

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS storage (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


async def _read(db: aiosqlite.Connection, key: str) -> Any:
    cursor = await db.execute("SELECT value FROM storage WHERE key = ?", (key,))
    row = await cursor.fetchone()
    return json.loads(row[0]) if row else None


async def _write(db: aiosqlite.Connection, key: str, value: Any) -> None:
    await db.execute(
        "INSERT OR REPLACE INTO storage (key, value) VALUES (?, ?)",
        (key, json.dumps(value)),
    )


class WorkerTaskStore:
    """Key/value backed TaskStore owned by the BackgroundRunner."""

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.worker_database_path
        self._initialised = False

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        schema = None if self._initialised else _CREATE_TABLE
        async with transaction(self._db_path, schema) as db:
            self._initialised = True
            yield db

    # -- Raw values ------------------------------------------------------------

    async def get_value(self, key: str, default: Any = None) -> Any:
        async with self._transaction() as db:
            value = await _read(db, key)
        return default if value is None else value

    async def set_value(self, key: str, value: Any) -> None:
        async with self._transaction() as db:
            await _write(db, key, value)

    async def delete_value(self, key: str) -> bool:
        async with self._transaction() as db:
            cursor = await db.execute("DELETE FROM storage WHERE key = ?", (key,))
            return cursor.rowcount > 0

    # -- TaskStore -------------------------------------------------------------

    async def put_task(self, task: ScheduledTask) -> ScheduledTask:
        async with self._transaction() as db:
            await _write(db, _TASK_PREFIX + task.id, task.to_dict())
        logger.debug("Worker stored task %s (%s, status=%s)", task.name, task.id, task.status)
        return task

    async def get_task(self, task_id: str) -> ScheduledTask | None:
        async with self._transaction() as db:
            data = await _read(db, _TASK_PREFIX + task_id)
        return ScheduledTask.from_dict(data) if data else None

    async def list_tasks(
        self,
        status: StatusFilter = None,
        due_before: datetime | None = None,
    ) -> list[ScheduledTask]:
        statuses = status_values(status)
        async with self._transaction() as db:
            cursor = await db.execute(
                "SELECT value FROM storage WHERE key LIKE ?", (_TASK_PREFIX + "%",)
            )
            rows = await cursor.fetchall()

        tasks = [ScheduledTask.from_dict(json.loads(row[0])) for row in rows]
        tasks = [
            t
            for t in tasks
            if (statuses is None or str(t.status) in statuses) and is_due(t, due_before)
        ]
        tasks.sort(key=lambda t: (t.created_at, t.id))
        return tasks

    async def delete_task(self, task_id: str) -> bool:
        async with self._transaction() as db:
            cursor = await db.execute(
                "DELETE FROM storage WHERE key = ?", (_TASK_PREFIX + task_id,)
            )
            deleted = cursor.rowcount > 0
            await db.execute("DELETE FROM storage WHERE key = ?", (_RESULTS_PREFIX + task_id,))
        if deleted:
            logger.info("Worker deleted task: %s", task_id)
        return deleted

    async def record_result(
        self,
        task_id: str,
        result: TaskResult,
        mutate: Callable[[ScheduledTask], None] | None = None,
    ) -> ScheduledTask | None:
        async with self._transaction() as db:
            data = await _read(db, _TASK_PREFIX + task_id)
            if data is None:
                logger.warning("Result for unknown worker task dropped: %s", task_id)
                return None
            task = ScheduledTask.from_dict(data)
            task.apply_result(result)
            if mutate is not None:
                mutate(task)
            history = await _read(db, _RESULTS_PREFIX + task_id) or []
            history.append(result.to_dict())
            await _write(db, _RESULTS_PREFIX + task_id, history)
            await _write(db, _TASK_PREFIX + task_id, task.to_dict())
        return task

    async def list_results(self, task_id: str, limit: int | None = None) -> list[TaskResult]:
        async with self._transaction() as db:
            history = await _read(db, _RESULTS_PREFIX + task_id) or []
        results = [TaskResult.from_dict(entry) for entry in history]
        if limit is not None:
            results = results[-limit:] if limit > 0 else []
        return results

    async def prune_results(self, before: datetime) -> int:
        removed = 0
        async with self._transaction() as db:
            cursor = await db.execute(
                "SELECT key, value FROM storage WHERE key LIKE ?", (_RESULTS_PREFIX + "%",)
            )
            for key, value in await cursor.fetchall():
                history = json.loads(value)
                kept = [
                    entry
                    for entry in history
                    if parse_timestamp(entry["occurrenceEndedAt"]) >= before
                ]
                if len(kept) != len(history):
                    removed += len(history) - len(kept)
                    await _write(db, key, kept)
        if removed:
            logger.info(
                "Pruned %d worker history entr(ies) older than %s", removed, before.isoformat()
            )
        return removed
