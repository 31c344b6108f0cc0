"""holo-scheduler entry point."""

from __future__ import annotations

import asyncio
import logging
import signal

from holo_scheduler.config import settings

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)


def build_router():
    """Register notification channels from settings."""
    from holo_scheduler.notifications.log_channel import LogChannel
    from holo_scheduler.notifications.router import NotificationRouter
    from holo_scheduler.notifications.webhook_channel import WebhookChannel

    router = NotificationRouter()
    router.register_channel(LogChannel())
    if settings.notification_webhook_url:
        router.register_channel(WebhookChannel(settings.notification_webhook_url))

    default = settings.default_notification_channel
    if router.get_channel(default) is None:
        logger.warning("Notification channel '%s' not configured; using 'log'", default)
        default = "log"
    router.set_default_channel(default)
    return router


async def run() -> None:
    """Wire the engines, background runner and HTTP API, then serve until signalled."""
    from holo_scheduler.api.server import ApiServer
    from holo_scheduler.notifications.notifier import TaskNotifier
    from holo_scheduler.scheduler.engine import SchedulerEngine
    from holo_scheduler.scheduler.handlers import create_default_executor
    from holo_scheduler.scheduler.locks import ExecutionLocks
    from holo_scheduler.scheduler.store import SqliteTaskStore
    from holo_scheduler.worker.channel import MessageChannel
    from holo_scheduler.worker.runner import BackgroundRunner
    from holo_scheduler.worker.storage import WorkerTaskStore

    locks = ExecutionLocks()
    executor = create_default_executor(settings.data_extraction_url)
    notifier = TaskNotifier(build_router(), settings.notification_recipient)

    engine = SchedulerEngine(SqliteTaskStore(), executor, notifier=notifier, locks=locks)
    await engine.start()

    runner = None
    if settings.background_worker_enabled:
        worker_store = WorkerTaskStore()
        worker_engine = SchedulerEngine(worker_store, executor, notifier=notifier, locks=locks)
        runner = BackgroundRunner(worker_engine, worker_store, MessageChannel())
        await runner.start()

    server = ApiServer(engine)
    await server.start()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await stop.wait()
    finally:
        logger.info("Shutting down...")
        await server.stop()
        if runner is not None:
            await runner.stop()
        await engine.stop()


def main() -> None:
    """Start the scheduler service (blocking)."""
    logger.info("Starting holo-scheduler (tz=%s)...", settings.scheduler_timezone)
    asyncio.run(run())


if __name__ == "__main__":
    main()
