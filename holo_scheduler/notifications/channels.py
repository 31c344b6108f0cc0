"""NotificationChannel protocol: interface for all notification delivery channels."""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class NotificationChannel(Protocol):
    """Protocol that all notification channels must satisfy."""

    @property
    def name(self) -> str:
        """Unique channel identifier (e.g. 'log', 'webhook')."""
        ...

    async def send(self, recipient: str, message: str) -> bool:
        """Send a plain text message. Returns True on success."""
        ...

    async def send_rich(
        self,
        recipient: str,
        message: str,
        *,
        subject: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> bool:
        """Send a message with a subject line and structured data. Returns True on success."""
        ...
