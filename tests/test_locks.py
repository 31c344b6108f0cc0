"""Tests for ExecutionLocks."""

import pytest

from holo_scheduler.scheduler.locks import ExecutionLocks


def test_acquire_once() -> None:
    locks = ExecutionLocks()
    assert locks.try_acquire("t1") is True
    assert locks.try_acquire("t1") is False
    assert locks.is_held("t1")


def test_independent_ids() -> None:
    locks = ExecutionLocks()
    assert locks.try_acquire("t1")
    assert locks.try_acquire("t2")
    assert locks.held == frozenset({"t1", "t2"})
    assert len(locks) == 2


def test_release_allows_reacquire() -> None:
    locks = ExecutionLocks()
    locks.try_acquire("t1")
    locks.release("t1")
    assert not locks.is_held("t1")
    assert locks.try_acquire("t1")


def test_double_release_is_an_error() -> None:
    locks = ExecutionLocks()
    locks.try_acquire("t1")
    locks.release("t1")
    with pytest.raises(RuntimeError, match="not held"):
        locks.release("t1")
