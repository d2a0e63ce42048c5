"""Notifier that writes pool notifications to the application log."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from alerts.notifiers.base import Notifier, NotifierTestResult, NotificationMessage
from core.events import Severity

LOGGER = logging.getLogger("keyswitch.notifications")


@dataclass(slots=True)
class LogNotifier(Notifier):
    """Log channel, on by default; error severity is logged at WARNING."""

    enabled_flag: bool = True
    name: str = "log"

    def enabled(self) -> bool:
        return self.enabled_flag

    async def send(self, message: NotificationMessage) -> bool:
        level = logging.WARNING if message.severity is Severity.ERROR else logging.INFO
        LOGGER.log(level, "[%s] %s: %s", message.pool_id or "-", message.title, message.body)
        return True

    async def self_test(self) -> NotifierTestResult:
        LOGGER.info("Log notifier self-test")
        return NotifierTestResult(ok=True, detail="log channel active")


__all__ = ["LogNotifier"]
