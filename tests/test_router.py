import asyncio
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from alerts.log_notifier import LogNotifier
from alerts.notifiers.base import NotificationMessage, Notifier, NotifierTestResult
from alerts.router import NotificationService
from alerts.webhook import WebhookNotifier, build_payload
from core.config_loader import NotifiersConfig
from core.event_bus import EventBus
from core.events import EventEnvelope, EventType, PoolEvent, Severity


@dataclass
class _FakeNotifier(Notifier):
    name: str
    enabled_flag: bool = True
    messages: List[NotificationMessage] = field(default_factory=list)

    def enabled(self) -> bool:
        return self.enabled_flag

    async def send(self, message: NotificationMessage) -> bool:
        self.messages.append(message)
        return True

    async def self_test(self) -> NotifierTestResult:
        return NotifierTestResult(ok=True, detail="fake")


def _event(event_type: EventType, severity: Severity, message: str) -> EventEnvelope:
    return EventEnvelope(
        event=PoolEvent(event_type=event_type, severity=severity, pool_id="factory", message=message),
        ts=0.0,
    )


def test_rotation_routed_to_enabled_notifiers() -> None:
    async def _run() -> None:
        bus = EventBus()
        active = _FakeNotifier(name="log")
        muted = _FakeNotifier(name="webhook", enabled_flag=False)
        service = NotificationService(event_bus=bus, config=NotifiersConfig(), notifiers=[active, muted])

        bus.publish(_event(EventType.ROTATION, Severity.SUCCESS, "Switched from A to B"))
        await service.drain()

        assert len(active.messages) == 1
        message = active.messages[0]
        assert message.title == "[SUCCESS] Key rotated"
        assert "Switched from A to B" in message.body
        assert "factory" in message.body
        assert "1970-01-01 00:00:00" in message.body
        assert muted.messages == []

    asyncio.run(_run())


def test_error_severity_is_carried_through() -> None:
    async def _run() -> None:
        bus = EventBus()
        fake = _FakeNotifier(name="log")
        service = NotificationService(event_bus=bus, config=NotifiersConfig(), notifiers=[fake])

        bus.publish(_event(EventType.ALL_EXHAUSTED, Severity.ERROR, "All credentials are exhausted"))
        await service.drain()

        assert fake.messages[0].severity is Severity.ERROR
        assert fake.messages[0].title == "[ERROR] All keys exhausted"
        assert fake.messages[0].pool_id == "factory"

    asyncio.run(_run())


def test_publish_without_running_loop_delivers_synchronously() -> None:
    bus = EventBus()
    fake = _FakeNotifier(name="log")
    NotificationService(event_bus=bus, config=NotifiersConfig(), notifiers=[fake])

    delivered = bus.publish(_event(EventType.INVALIDATED, Severity.ERROR, "Key A rejected"))

    assert delivered == 1
    assert len(fake.messages) == 1


def test_default_notifiers_follow_config() -> None:
    config = NotifiersConfig()
    service = NotificationService(event_bus=EventBus(), config=config)

    notifiers = service.notifiers
    assert isinstance(notifiers["log"], LogNotifier)
    assert notifiers["log"].enabled()
    assert isinstance(notifiers["webhook"], WebhookNotifier)
    assert not notifiers["webhook"].enabled()


def test_failing_subscriber_does_not_block_others() -> None:
    bus = EventBus()
    received: List[EventEnvelope] = []

    def broken(envelope: EventEnvelope) -> None:
        raise RuntimeError("boom")

    bus.subscribe(EventType.ROTATION, broken)
    bus.subscribe(None, received.append)

    delivered = bus.publish(_event(EventType.ROTATION, Severity.SUCCESS, "Switched"))

    assert delivered == 1
    assert len(received) == 1


def test_webhook_payload_shape() -> None:
    payload = build_payload(
        NotificationMessage(title="[ERROR] Key invalid", body="- Key A", severity=Severity.ERROR, pool_id="factory")
    )
    assert payload["title"] == "[ERROR] Key invalid"
    assert payload["text"] == "- Key A"
    assert payload["severity"] == "error"
    assert payload["pool"] == "factory"


def test_disabled_webhook_skips_send() -> None:
    notifier = WebhookNotifier(url=None, enabled_flag=True)
    sent = asyncio.run(notifier.send(NotificationMessage(title="t", body="b")))
    assert sent is False


def test_log_notifier_self_test() -> None:
    result = asyncio.run(LogNotifier().self_test())
    assert result.ok is True
