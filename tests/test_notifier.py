"""Tests for TaskNotifier and notification formatting."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

from holo_scheduler.notifications.notifier import Notifier, TaskNotifier, format_notification
from holo_scheduler.scheduler.models import (
    NotificationEvent,
    NotificationSettings,
    OnceSchedule,
    Outcome,
    ScheduledTask,
    TaskResult,
)

RUN_AT = datetime(2025, 1, 6, 9, 0, tzinfo=UTC)


def _make_task(**kwargs) -> ScheduledTask:
    defaults = {
        "id": "task1",
        "name": "Daily Finance Summary",
        "description": "Summarise accounts",
        "task_type": "data_extraction",
        "payload": {"source": "bank_accounts"},
        "schedule": OnceSchedule(at=RUN_AT),
    }
    defaults.update(kwargs)
    return ScheduledTask(**defaults)


def _result(**kwargs) -> TaskResult:
    defaults = {
        "task_id": "task1",
        "outcome": Outcome.SUCCESS,
        "occurrence_started_at": RUN_AT,
        "occurrence_ended_at": RUN_AT + timedelta(seconds=1),
    }
    defaults.update(kwargs)
    return TaskResult(**defaults)


# -- format_notification -------------------------------------------------------


class TestFormatNotification:
    def test_success_subject_and_result(self):
        subject, body = format_notification(
            NotificationEvent.SUCCESS, _make_task(), _result(result={"rows": 3})
        )
        assert subject == "Scheduled Task Succeeded: Daily Finance Summary"
        assert "Scheduled Task: Daily Finance Summary" in body
        assert "Description: Summarise accounts" in body
        assert '"rows": 3' in body
        assert "Attempt: 1 of 4" in body
        assert "Error:" not in body

    def test_failure_includes_error(self):
        subject, body = format_notification(
            NotificationEvent.FAILURE,
            _make_task(),
            _result(outcome=Outcome.FAILURE, attempt=2, error="upstream down"),
        )
        assert subject.startswith("Scheduled Task Failed")
        assert "Error: upstream down" in body
        assert "Attempt: 2 of 4" in body

    def test_retry_exhausted_subject(self):
        subject, _ = format_notification(NotificationEvent.RETRY_EXHAUSTED, _make_task())
        assert subject.startswith("Scheduled Task Retries Exhausted")

    def test_completion_without_result(self):
        subject, body = format_notification(NotificationEvent.COMPLETION, _make_task())
        assert subject.startswith("Scheduled Task Completed")
        assert "Execution Time" not in body

    def test_next_run_listed(self):
        task = _make_task(next_run_at=RUN_AT + timedelta(days=1))
        _, body = format_notification(NotificationEvent.SUCCESS, task, _result())
        assert "Next Run: 2025-01-07T09:00:00+00:00" in body


# -- TaskNotifier --------------------------------------------------------------


class TestTaskNotifier:
    def test_satisfies_protocol(self):
        assert isinstance(TaskNotifier(AsyncMock(), "owner"), Notifier)

    async def test_sends_through_router(self):
        router = AsyncMock()
        router.send_rich.return_value = True
        notifier = TaskNotifier(router, "owner")

        ok = await notifier.notify(NotificationEvent.SUCCESS, _make_task(), _result())

        assert ok is True
        router.send_rich.assert_awaited_once()
        args, kwargs = router.send_rich.call_args
        assert args[0] == "owner"
        assert kwargs["channel"] is None
        assert kwargs["subject"].startswith("Scheduled Task Succeeded")
        assert kwargs["data"]["event"] == "success"
        assert kwargs["data"]["task"]["id"] == "task1"
        assert kwargs["data"]["result"]["outcome"] == "success"

    async def test_uses_task_channel_override(self):
        router = AsyncMock()
        router.send_rich.return_value = True
        task = _make_task(notifications=NotificationSettings(channel="webhook"))

        await TaskNotifier(router, "owner").notify(NotificationEvent.COMPLETION, task)

        assert router.send_rich.call_args.kwargs["channel"] == "webhook"
        assert "result" not in router.send_rich.call_args.kwargs["data"]

    async def test_undelivered_returns_false(self):
        router = AsyncMock()
        router.send_rich.return_value = False
        notifier = TaskNotifier(router, "owner")
        assert await notifier.notify(NotificationEvent.FAILURE, _make_task()) is False

    async def test_router_exception_returns_false(self):
        router = AsyncMock()
        router.send_rich.side_effect = RuntimeError("boom")
        notifier = TaskNotifier(router, "owner")
        assert await notifier.notify(NotificationEvent.FAILURE, _make_task()) is False
