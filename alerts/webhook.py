"""Webhook notification helper and notifier implementation."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from alerts.notifiers.base import Notifier, NotifierTestResult, NotificationMessage

LOGGER = logging.getLogger(__name__)


def build_payload(message: NotificationMessage) -> Dict[str, Any]:
    return {
        "title": message.title,
        "text": message.body,
        "severity": message.severity.value,
        "pool": message.pool_id,
        "ts": int(time.time()),
    }


async def post_message(url: str, message: NotificationMessage, timeout: float = 10.0) -> None:
    """POST the message as JSON; raises on HTTP errors."""

    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.post(url, json=build_payload(message))
        response.raise_for_status()
    LOGGER.info("Webhook message sent: %s", message.title)


@dataclass(slots=True)
class WebhookNotifier(Notifier):
    """Generic webhook channel that POSTs JSON to the configured url."""

    url: Optional[str]
    enabled_flag: bool
    timeout: float = 10.0
    name: str = "webhook"

    def enabled(self) -> bool:
        return self.enabled_flag and bool(self.url)

    async def send(self, message: NotificationMessage) -> bool:
        if not self.enabled():
            LOGGER.info("Webhook notifier disabled or missing url; skip send")
            return False
        try:
            await post_message(self.url or "", message, self.timeout)
            return True
        except httpx.HTTPError as exc:
            LOGGER.warning("Failed to send webhook message: %s", exc)
            return False

    async def self_test(self) -> NotifierTestResult:
        if not self.url:
            return NotifierTestResult(ok=False, detail="Missing webhook url")
        try:
            await post_message(
                self.url,
                NotificationMessage(title="[TEST] keyswitch", body="Webhook channel reachable"),
                self.timeout,
            )
            return NotifierTestResult(ok=True, detail="Webhook reachable")
        except httpx.HTTPError as exc:
            LOGGER.warning("Webhook self-test failed: %s", exc)
            return NotifierTestResult(ok=False, detail=str(exc))


__all__ = ["build_payload", "post_message", "WebhookNotifier"]
