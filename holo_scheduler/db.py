"""Async SQLite connection helpers over aiosqlite.

Both task stores open one short-lived connection per operation:

- **Host store**: ``settings.database_path``
- **Worker store**: ``settings.worker_database_path``

Tests pass an explicit path under ``tmp_path``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import aiosqlite

from holo_scheduler.errors import PersistenceError

if TYPE_CHECKING:
    from pathlib import Path


async def get_connection(path: Path) -> aiosqlite.Connection:
    """Open a local SQLite connection with WAL mode and busy timeout."""
    path.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(path))
    await db.execute("PRAGMA journal_mode=WAL")
    await db.execute("PRAGMA busy_timeout=5000")
    return db


@asynccontextmanager
async def transaction(path: Path, schema: str | None = None) -> AsyncIterator[aiosqlite.Connection]:
    """Yield a connection; commit on success, roll back on error.

    *schema* (a script of ``CREATE ... IF NOT EXISTS`` statements) runs first
    when given. Driver and filesystem failures surface as PersistenceError.
    """
    try:
        db = await get_connection(path)
        if schema:
            await db.executescript(schema)
    except (aiosqlite.Error, OSError) as exc:
        msg = f"Could not open database {path}: {exc}"
        raise PersistenceError(msg) from exc
    try:
        yield db
        await db.commit()
    except aiosqlite.Error as exc:
        await db.rollback()
        msg = f"Database operation failed on {path}: {exc}"
        raise PersistenceError(msg) from exc
    finally:
        await db.close()
