"""NotificationRouter: picks the delivery channel for each task notification."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from holo_scheduler.notifications.channels import NotificationChannel

logger = logging.getLogger(__name__)


class NotificationRouter:
    """Holds the configured channels and routes messages to one of them.

    A message goes to the channel named by the caller, else the default
    channel, else the sole registered channel. With none of those it is
    dropped and the send returns False.

    Args:
        channels: Channels to register up front.
        default: Name of the default channel (must be among *channels*).
    """

    def __init__(
        self,
        channels: Iterable[NotificationChannel] = (),
        default: str | None = None,
    ) -> None:
        self._channels: dict[str, NotificationChannel] = {}
        self._default: str | None = None
        for channel in channels:
            self.register_channel(channel)
        if default is not None:
            self.set_default_channel(default)

    def register_channel(self, channel: NotificationChannel) -> None:
        """Add *channel*. Raises ValueError if its name is taken."""
        if channel.name in self._channels:
            msg = f"Notification channel {channel.name!r} is already registered"
            raise ValueError(msg)
        self._channels[channel.name] = channel
        logger.debug("Notification channel registered: %s", channel.name)

    def set_default_channel(self, name: str) -> None:
        """Raises KeyError unless *name* is registered."""
        if name not in self._channels:
            msg = f"Notification channel {name!r} is not registered"
            raise KeyError(msg)
        self._default = name

    def get_channel(self, name: str) -> NotificationChannel | None:
        return self._channels.get(name)

    def list_channels(self) -> list[str]:
        """Channel names in registration order."""
        return list(self._channels)

    @property
    def default_channel_name(self) -> str | None:
        return self._default

    def resolve(self, name: str | None = None) -> NotificationChannel | None:
        """The channel a message for *name* would be delivered through."""
        if name:
            return self._channels.get(name)
        if self._default is not None:
            return self._channels[self._default]
        if len(self._channels) == 1:
            return next(iter(self._channels.values()))
        return None

    async def send(self, recipient: str, message: str, *, channel: str | None = None) -> bool:
        target = self.resolve(channel)
        if target is None:
            logger.warning("Dropped notification: no channel for %r", channel or "default")
            return False
        return await target.send(recipient, message)

    async def send_rich(
        self,
        recipient: str,
        message: str,
        *,
        channel: str | None = None,
        subject: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> bool:
        target = self.resolve(channel)
        if target is None:
            logger.warning(
                "Dropped notification %r: no channel for %r", subject, channel or "default"
            )
            return False
        return await target.send_rich(recipient, message, subject=subject, data=data)
