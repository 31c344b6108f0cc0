"""Notification channel abstraction layer."""

from holo_scheduler.notifications.channels import NotificationChannel
from holo_scheduler.notifications.log_channel import LogChannel
from holo_scheduler.notifications.notifier import TaskNotifier
from holo_scheduler.notifications.router import NotificationRouter
from holo_scheduler.notifications.webhook_channel import WebhookChannel

__all__ = [
    "LogChannel",
    "NotificationChannel",
    "NotificationRouter",
    "TaskNotifier",
    "WebhookChannel",
]
