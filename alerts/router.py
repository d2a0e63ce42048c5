"""Notification routing via EventBus subscriptions."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Coroutine, Dict, Iterable, Optional, Set

from alerts.log_notifier import LogNotifier
from alerts.notifiers.base import Notifier, NotificationMessage
from alerts.webhook import WebhookNotifier
from core.config_loader import NotifiersConfig
from core.event_bus import EventBus
from core.events import EventEnvelope, EventType, PoolEvent

LOGGER = logging.getLogger(__name__)

_TITLES = {
    EventType.ROTATION: "Key rotated",
    EventType.EXHAUSTED: "Key exhausted",
    EventType.ALL_EXHAUSTED: "All keys exhausted",
    EventType.INVALIDATED: "Key invalid",
    EventType.RECOVERED: "Key recovered",
    EventType.ENDPOINT_SWITCH: "Endpoint switched",
}


def _format_detail(detail: Any) -> str:
    if not detail:
        return ""
    return ", ".join(f"{k}: {v}" for k, v in detail.items())


def _timestamp(ts: float) -> str:
    dt = datetime.fromtimestamp(ts, tz=timezone.utc)
    return dt.strftime("%Y-%m-%d %H:%M:%S")


class NotificationService:
    """Subscribe to pool events and fan them out to enabled notifiers."""

    def __init__(
        self,
        event_bus: EventBus,
        config: NotifiersConfig,
        notifiers: Optional[Iterable[Notifier]] = None,
    ) -> None:
        self.event_bus = event_bus
        self.config = config
        if notifiers is None:
            notifiers = self._build_notifiers(config)
        self._notifiers: Dict[str, Notifier] = {notifier.name: notifier for notifier in notifiers}
        self._pending: Set[asyncio.Task] = set()
        self.event_bus.subscribe(None, self._on_event)
        LOGGER.info("NotificationService initialized with channels: %s", list(self._notifiers))

    @property
    def notifiers(self) -> Dict[str, Notifier]:
        return dict(self._notifiers)

    def _build_notifiers(self, config: NotifiersConfig) -> list[Notifier]:
        return [
            LogNotifier(enabled_flag=config.log.enabled),
            WebhookNotifier(
                url=config.webhook.url,
                enabled_flag=config.webhook.enabled,
                timeout=config.webhook.timeout_sec,
            ),
        ]

    def _schedule(self, coro: Coroutine[Any, Any, None]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(coro)
            return
        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for notifications scheduled on the running loop."""

        while True:
            pending = [task for task in self._pending if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def _on_event(self, envelope: EventEnvelope) -> None:
        self._schedule(self.dispatch(envelope))

    async def dispatch(self, envelope: EventEnvelope) -> None:
        event = envelope.event
        message = NotificationMessage(
            title=f"[{event.severity.value.upper()}] {_TITLES.get(event.event_type, event.event_type.value)}",
            body=self._body(event, envelope.ts),
            severity=event.severity,
            pool_id=event.pool_id,
        )
        await self._send_to_enabled(message)

    async def _send_to_enabled(self, message: NotificationMessage) -> None:
        for name, notifier in self._notifiers.items():
            if not notifier.enabled():
                LOGGER.debug("Notifier %s disabled", name)
                continue
            success = await notifier.send(message)
            if success:
                LOGGER.debug("Delivered %s via %s", message.title, name)
            else:
                LOGGER.warning("Failed to deliver %s via %s", message.title, name)

    def _body(self, event: PoolEvent, ts: float) -> str:
        lines = [
            f"- Time (UTC): {_timestamp(ts)}",
            f"- Pool: {event.pool_id}",
            f"- {event.message}",
        ]
        detail = _format_detail(event.detail)
        if detail:
            lines.append(f"- Detail: {detail}")
        return "\n".join(lines)


__all__ = ["NotificationService"]
