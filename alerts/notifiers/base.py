"""通知器抽象，确保池事件的通知通道可插拔。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from core.events import Severity


@dataclass(slots=True)
class NotificationMessage:
    """标准化的通知载荷，severity 只有 success / error 两档。"""

    title: str
    body: str
    severity: Severity = Severity.SUCCESS
    pool_id: str = ""


@dataclass(slots=True)
class NotifierTestResult:
    """自检结果：供 CLI 的通道测试展示。"""

    ok: bool
    detail: str = ""


class Notifier(Protocol):
    """通知器统一接口，便于新增日志/Webhook 等通道。"""

    name: str

    def enabled(self) -> bool:
        """返回当前通道是否开启，由配置驱动。"""

    async def send(self, message: NotificationMessage) -> bool:
        """发送通知，返回是否成功。"""

    async def self_test(self) -> NotifierTestResult:
        """触发自检。"""
