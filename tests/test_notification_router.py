"""Tests for NotificationRouter."""

import pytest

from holo_scheduler.notifications.channels import NotificationChannel
from holo_scheduler.notifications.router import NotificationRouter

# -- Helpers -----------------------------------------------------------------


class FakeChannel:
    """Minimal channel implementation for testing."""

    def __init__(self, channel_name: str = "fake") -> None:
        self._name = channel_name
        self.sent: list[tuple[str, str]] = []
        self.sent_rich: list[tuple[str, str, dict]] = []

    @property
    def name(self) -> str:
        return self._name

    async def send(self, recipient: str, message: str) -> bool:
        self.sent.append((recipient, message))
        return True

    async def send_rich(
        self,
        recipient: str,
        message: str,
        *,
        subject: str | None = None,
        data: dict | None = None,
    ) -> bool:
        self.sent_rich.append((recipient, message, {"subject": subject, "data": data}))
        return True


class FailChannel(FakeChannel):
    """Channel that always fails to send."""

    async def send(self, recipient: str, message: str) -> bool:
        return False

    async def send_rich(self, recipient: str, message: str, **kwargs) -> bool:
        return False


# -- Registration ------------------------------------------------------------


def test_fake_channel_satisfies_protocol() -> None:
    assert isinstance(FakeChannel(), NotificationChannel)


def test_register_and_list() -> None:
    router = NotificationRouter()
    ch = FakeChannel("log")
    router.register_channel(ch)
    assert router.list_channels() == ["log"]
    assert router.get_channel("log") is ch


def test_register_duplicate_raises() -> None:
    router = NotificationRouter()
    router.register_channel(FakeChannel("log"))
    with pytest.raises(ValueError, match="already registered"):
        router.register_channel(FakeChannel("log"))


def test_get_channel_missing_returns_none() -> None:
    assert NotificationRouter().get_channel("nonexistent") is None


# -- Default channel ---------------------------------------------------------


def test_set_default_channel() -> None:
    router = NotificationRouter()
    router.register_channel(FakeChannel("webhook"))
    router.set_default_channel("webhook")
    assert router.default_channel_name == "webhook"


def test_set_default_unregistered_raises() -> None:
    router = NotificationRouter()
    with pytest.raises(KeyError, match="not registered"):
        router.set_default_channel("missing")


def test_routers_are_independent() -> None:
    a = NotificationRouter()
    a.register_channel(FakeChannel("log"))
    assert NotificationRouter().list_channels() == []


# -- Send dispatch -----------------------------------------------------------


async def test_send_via_default_channel() -> None:
    router = NotificationRouter()
    ch = FakeChannel("log")
    router.register_channel(ch)
    router.set_default_channel("log")

    ok = await router.send("owner", "hello")
    assert ok is True
    assert ch.sent == [("owner", "hello")]


async def test_send_via_named_channel() -> None:
    router = NotificationRouter()
    log = FakeChannel("log")
    hook = FakeChannel("webhook")
    router.register_channel(log)
    router.register_channel(hook)
    router.set_default_channel("log")

    ok = await router.send("owner", "hello", channel="webhook")
    assert ok is True
    assert hook.sent == [("owner", "hello")]
    assert log.sent == []


async def test_send_unknown_named_channel_returns_false() -> None:
    router = NotificationRouter()
    ch = FakeChannel("log")
    router.register_channel(ch)
    router.set_default_channel("log")

    assert await router.send("owner", "hi", channel="sms") is False
    assert ch.sent == []


async def test_send_fallback_to_only_channel() -> None:
    router = NotificationRouter()
    ch = FakeChannel("log")
    router.register_channel(ch)

    ok = await router.send("owner", "hi")
    assert ok is True
    assert ch.sent == [("owner", "hi")]


async def test_send_no_channel_returns_false() -> None:
    assert await NotificationRouter().send("owner", "hi") is False


async def test_send_ambiguous_no_default_returns_false() -> None:
    router = NotificationRouter()
    router.register_channel(FakeChannel("a"))
    router.register_channel(FakeChannel("b"))
    assert await router.send("owner", "hi") is False


async def test_send_reports_channel_failure() -> None:
    router = NotificationRouter()
    router.register_channel(FailChannel("log"))
    assert await router.send("owner", "hi") is False


# -- Send rich ---------------------------------------------------------------


async def test_send_rich_dispatch() -> None:
    router = NotificationRouter()
    ch = FakeChannel("log")
    router.register_channel(ch)
    router.set_default_channel("log")

    ok = await router.send_rich(
        "owner", "Body", subject="Scheduled Task Failed: ping", data={"event": "failure"}
    )
    assert ok is True
    assert ch.sent_rich == [
        (
            "owner",
            "Body",
            {"subject": "Scheduled Task Failed: ping", "data": {"event": "failure"}},
        )
    ]


async def test_send_rich_no_channel_returns_false() -> None:
    assert await NotificationRouter().send_rich("owner", "hello") is False


async def test_send_rich_failure() -> None:
    router = NotificationRouter()
    router.register_channel(FailChannel("webhook"))
    assert await router.send_rich("owner", "hello", channel="webhook") is False


# -- Construction and resolution -----------------------------------------------


def test_constructor_registers_channels() -> None:
    log = FakeChannel("log")
    hook = FakeChannel("webhook")
    router = NotificationRouter([log, hook], default="webhook")
    assert router.list_channels() == ["log", "webhook"]
    assert router.resolve() is hook
    assert router.resolve("log") is log


def test_constructor_rejects_unknown_default() -> None:
    with pytest.raises(KeyError):
        NotificationRouter([FakeChannel("log")], default="webhook")


def test_no_default_until_set() -> None:
    assert NotificationRouter().default_channel_name is None
