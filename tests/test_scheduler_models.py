"""Tests for scheduler data models."""

from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from holo_scheduler.scheduler.models import (
    DailySchedule,
    IntervalSchedule,
    NotificationEvent,
    NotificationSettings,
    OnceSchedule,
    Outcome,
    Priority,
    ScheduledTask,
    TaskResult,
    TaskStatus,
    make_task_id,
    parse_timestamp,
    schedule_from_dict,
)

CHICAGO = ZoneInfo("America/Chicago")


def _make_task(**kwargs) -> ScheduledTask:
    defaults = {
        "id": "task1",
        "name": "Nightly report",
        "description": "Summarise the day",
        "task_type": "data_extraction",
        "payload": {"source": "bank_accounts"},
        "schedule": OnceSchedule(at=datetime(2025, 1, 6, 9, 0, tzinfo=UTC)),
        "created_at": datetime(2025, 1, 1, tzinfo=UTC),
    }
    defaults.update(kwargs)
    return ScheduledTask(**defaults)


def _result(outcome: Outcome = Outcome.SUCCESS, **kwargs) -> TaskResult:
    started = datetime(2025, 1, 6, 9, 0, tzinfo=UTC)
    defaults = {
        "task_id": "task1",
        "outcome": outcome,
        "occurrence_started_at": started,
        "occurrence_ended_at": started + timedelta(seconds=2),
    }
    defaults.update(kwargs)
    return TaskResult(**defaults)


# -- Priority ------------------------------------------------------------------


class TestPriority:
    def test_default_is_medium(self):
        assert Priority.parse(None) is Priority.MEDIUM
        assert Priority.parse("") is Priority.MEDIUM

    def test_critical_alias(self):
        assert Priority.parse("critical") is Priority.URGENT

    def test_case_insensitive(self):
        assert Priority.parse("HIGH") is Priority.HIGH

    def test_invalid(self):
        with pytest.raises(ValueError, match="Invalid priority"):
            Priority.parse("whenever")

    def test_rank_order(self):
        ranks = [p.rank for p in (Priority.LOW, Priority.MEDIUM, Priority.HIGH, Priority.URGENT)]
        assert ranks == sorted(ranks)


# -- Timestamps ----------------------------------------------------------------


class TestParseTimestamp:
    def test_iso_with_z(self):
        assert parse_timestamp("2025-03-01T10:00:00Z") == datetime(2025, 3, 1, 10, tzinfo=UTC)

    def test_epoch_millis(self):
        assert parse_timestamp(1_735_689_600_000) == datetime(2025, 1, 1, tzinfo=UTC)

    def test_naive_uses_zone(self):
        # January: Chicago is UTC-6.
        assert parse_timestamp("2025-01-06T09:00:00", CHICAGO) == datetime(
            2025, 1, 6, 15, tzinfo=UTC
        )

    def test_date_only_start_and_end_of_day(self):
        assert parse_timestamp("2025-01-08") == datetime(2025, 1, 8, tzinfo=UTC)
        end = parse_timestamp("2025-01-08", end_of_day=True)
        assert end == datetime(2025, 1, 8, 23, 59, 59, 999999, tzinfo=UTC)

    def test_result_is_utc(self):
        value = parse_timestamp(datetime(2025, 1, 6, 9, tzinfo=CHICAGO))
        assert value.tzinfo is UTC

    @pytest.mark.parametrize("value", [True, None, "", "   ", [1]])
    def test_rejects_garbage(self, value):
        with pytest.raises(ValueError):
            parse_timestamp(value)


# -- Schedules -----------------------------------------------------------------


class TestScheduleFromDict:
    def test_once(self):
        s = schedule_from_dict({"kind": "once", "at": "2025-01-06T09:00:00+00:00"})
        assert s == OnceSchedule(at=datetime(2025, 1, 6, 9, tzinfo=UTC))

    def test_legacy_frequency_shape(self):
        s = schedule_from_dict(
            {"frequency": "daily", "timeOfDay": "07:30", "startDate": "2025-01-06"}
        )
        assert isinstance(s, DailySchedule)
        assert s.time_of_day == "07:30"
        assert s.end_date is None

    def test_daily_end_date_is_inclusive(self):
        s = schedule_from_dict(
            {"kind": "daily", "startDate": "2025-01-06", "endDate": "2025-01-08"}
        )
        assert s.time_of_day == "09:00"
        assert s.end_date == datetime(2025, 1, 8, 23, 59, 59, 999999, tzinfo=UTC)

    def test_interval(self):
        s = schedule_from_dict(
            {"kind": "interval", "everyMs": 60_000, "startAt": "2025-01-06T00:00:00Z"}
        )
        assert isinstance(s, IntervalSchedule)
        assert s.every == timedelta(minutes=1)

    @pytest.mark.parametrize("every", [0, -5, "60000", True, None])
    def test_interval_requires_positive_int(self, every):
        with pytest.raises(ValueError, match="everyMs"):
            schedule_from_dict({"kind": "interval", "everyMs": every})

    def test_unknown_kind(self):
        with pytest.raises(ValueError, match="Unsupported schedule kind"):
            schedule_from_dict({"kind": "cron", "expr": "* * * * *"})

    def test_to_dict_is_parseable(self):
        original = DailySchedule(
            time_of_day="09:00",
            start_date=datetime(2025, 1, 6, tzinfo=UTC),
            end_date=datetime(2025, 1, 8, tzinfo=UTC),
        )
        assert schedule_from_dict(original.to_dict()) == original


# -- Notifications -------------------------------------------------------------


class TestNotificationSettings:
    def test_defaults(self):
        n = NotificationSettings()
        assert not n.wants(NotificationEvent.SUCCESS)
        assert n.wants(NotificationEvent.FAILURE)
        assert n.wants(NotificationEvent.RETRY_EXHAUSTED)
        assert not n.wants(NotificationEvent.COMPLETION)

    def test_from_dict_camel_case(self):
        n = NotificationSettings.from_dict(
            {"onSuccess": True, "onFailure": False, "channel": "webhook"}
        )
        assert n.on_success is True
        assert n.on_failure is False
        assert n.on_retry_exhausted is True
        assert n.channel == "webhook"

    def test_from_none(self):
        assert NotificationSettings.from_dict(None) == NotificationSettings()


# -- TaskResult ----------------------------------------------------------------


class TestTaskResult:
    def test_duration_ms(self):
        assert _result().duration_ms == 2000

    def test_succeeded(self):
        assert _result().succeeded
        assert not _result(Outcome.FAILURE, error="boom").succeeded

    def test_from_dict_restores_fields(self):
        r = _result(Outcome.FAILURE, attempt=2, error="boom")
        restored = TaskResult.from_dict(r.to_dict())
        assert restored == r


# -- ScheduledTask -------------------------------------------------------------


class TestScheduledTask:
    def test_created_at_defaults_to_now(self):
        task = _make_task(created_at=None)
        assert task.created_at is not None
        assert task.created_at.tzinfo is not None

    def test_is_one_off(self):
        assert _make_task().is_one_off
        daily = DailySchedule("09:00", datetime(2025, 1, 6, tzinfo=UTC))
        assert _make_task(schedule=daily).is_recurring

    def test_is_terminal(self):
        assert not _make_task().is_terminal
        assert _make_task(status=TaskStatus.CANCELLED).is_terminal

    def test_apply_success(self):
        task = _make_task(last_error="earlier failure")
        task.apply_result(_result(result={"ok": True}))
        assert task.last_result == {"ok": True}
        assert task.last_error is None
        assert task.last_run_at == datetime(2025, 1, 6, 9, 0, 2, tzinfo=UTC)
        assert (task.total_executions, task.successful_executions) == (1, 1)

    def test_apply_failure_keeps_last_result(self):
        task = _make_task(last_result={"ok": True})
        task.apply_result(_result(Outcome.FAILURE, error="boom"))
        assert task.last_result == {"ok": True}
        assert task.last_error == "boom"
        assert task.failed_executions == 1

    def test_row_round_trip(self):
        task = _make_task(
            priority=Priority.HIGH,
            status=TaskStatus.PAUSED,
            attempt_count=2,
            next_run_at=datetime(2025, 1, 6, 9, tzinfo=UTC),
            notifications=NotificationSettings(on_success=True, channel="log"),
        )
        assert ScheduledTask.from_row(task.to_row()) == task

    def test_to_dict_uses_api_keys(self):
        data = _make_task(next_run_at=datetime(2025, 1, 6, 9, tzinfo=UTC)).to_dict()
        assert data["type"] == "data_extraction"
        assert data["nextRunAt"] == "2025-01-06T09:00:00+00:00"
        assert data["schedule"]["kind"] == "once"
        assert data["status"] == "scheduled"

    def test_from_dict_generates_id_and_defaults(self):
        task = ScheduledTask.from_dict(
            {
                "name": "ping",
                "type": "monitoring",
                "payload": {"targetUrl": "https://example.com"},
                "schedule": {"kind": "once", "at": "2025-01-06T09:00:00Z"},
                "priority": "critical",
            }
        )
        assert len(task.id) == 32
        assert task.priority is Priority.URGENT
        assert task.max_retries == 3
        assert task.status is TaskStatus.SCHEDULED


def test_make_task_id_unique():
    assert make_task_id() != make_task_id()
