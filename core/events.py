"""事件定义：凭证轮换、额度耗尽、凭证失效与 endpoint 健康的统一结构体。

事件层保持传输无关性，协调器、通知器与 CLI 通过共享的类型而非零散的字典通信。
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional


class EventType(str, Enum):
    """事件的顶层分类。"""

    ROTATION = "rotation"
    EXHAUSTED = "exhausted"
    ALL_EXHAUSTED = "all_exhausted"
    INVALIDATED = "invalidated"
    RECOVERED = "recovered"
    ENDPOINT_SWITCH = "endpoint_switch"


class Severity(str, Enum):
    """通知严重程度，对应通知器的 success/error 两档。"""

    SUCCESS = "success"
    ERROR = "error"


@dataclass(slots=True)
class PoolEvent:
    """池状态变化事件。"""

    event_type: EventType
    severity: Severity
    pool_id: str
    message: str
    credential_id: Optional[str] = None
    detail: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class EventEnvelope:
    """事件包裹体，便于在事件总线上传递时间戳。"""

    event: PoolEvent
    ts: float = field(default_factory=time.time)


__all__ = ["EventType", "Severity", "PoolEvent", "EventEnvelope"]
