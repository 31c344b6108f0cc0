"""TaskNotifier: turns task outcomes into user-visible notifications."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from holo_scheduler.scheduler.models import NotificationEvent

if TYPE_CHECKING:
    from holo_scheduler.notifications.router import NotificationRouter
    from holo_scheduler.scheduler.models import ScheduledTask, TaskResult

logger = logging.getLogger(__name__)

_SUBJECTS = {
    NotificationEvent.SUCCESS: "Scheduled Task Succeeded",
    NotificationEvent.FAILURE: "Scheduled Task Failed",
    NotificationEvent.RETRY_EXHAUSTED: "Scheduled Task Retries Exhausted",
    NotificationEvent.COMPLETION: "Scheduled Task Completed",
}


@runtime_checkable
class Notifier(Protocol):
    """Consumed by the engine after a task outcome it should report."""

    async def notify(
        self,
        event: NotificationEvent,
        task: ScheduledTask,
        result: TaskResult | None = None,
    ) -> bool:
        ...


def format_notification(
    event: NotificationEvent,
    task: ScheduledTask,
    result: TaskResult | None = None,
) -> tuple[str, str]:
    """Return ``(subject, body)`` for a task notification."""
    subject = f"{_SUBJECTS[event]}: {task.name}"
    lines = [
        f"Scheduled Task: {task.name}",
        f"Description: {task.description}",
        f"Status: {task.status}",
    ]
    if result is not None:
        lines.append(f"Execution Time: {result.occurrence_started_at.isoformat()}")
        lines.append(f"Attempt: {result.attempt} of {task.max_retries + 1}")
        if result.result is not None:
            lines.append(f"Result: {json.dumps(result.result, indent=2, default=str)}")
        if result.error:
            lines.append(f"Error: {result.error}")
    if task.next_run_at is not None:
        lines.append(f"Next Run: {task.next_run_at.isoformat()}")
    return subject, "\n".join(lines)


class TaskNotifier:
    """Sends task notifications through a NotificationRouter.

    Args:
        router: Router used to deliver messages.
        recipient: Who receives notifications (single-owner deployment).
    """

    def __init__(self, router: NotificationRouter, recipient: str) -> None:
        self._router = router
        self._recipient = recipient

    async def notify(
        self,
        event: NotificationEvent,
        task: ScheduledTask,
        result: TaskResult | None = None,
    ) -> bool:
        subject, body = format_notification(event, task, result)
        data = {"event": str(event), "task": task.to_dict()}
        if result is not None:
            data["result"] = result.to_dict()
        try:
            sent = await self._router.send_rich(
                self._recipient,
                body,
                channel=task.notifications.channel,
                subject=subject,
                data=data,
            )
        except Exception:
            logger.exception("Notification failed: %s for '%s' (%s)", event, task.name, task.id)
            return False

        if sent:
            logger.info("Sent %s notification for '%s' (%s)", event, task.name, task.id)
        else:
            logger.warning(
                "Notification not delivered: %s for '%s' (%s)", event, task.name, task.id
            )
        return sent
