"""凭证、额度与 endpoint 的数据模型。"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

EXHAUSTION_RATIO = 0.99


class SwitchStrategy(str, Enum):
    """凭证切换策略，按剩余额度挑选候选。"""

    MANUAL = "manual"
    ROUND_ROBIN = "round_robin"
    USE_LOWEST = "use_lowest"
    USE_HIGHEST = "use_highest"


class EndpointStrategy(str, Enum):
    """Endpoint 选择策略。"""

    MANUAL = "manual"
    USE_FASTEST = "use_fastest"


class EndpointStatus(str, Enum):
    UNKNOWN = "unknown"
    ONLINE = "online"
    OFFLINE = "offline"
    PROBING = "probing"


@dataclass(slots=True)
class Quota:
    """一次额度查询的结果，剩余额度与使用率均为派生值。"""

    total_allowance: float
    total_used: float
    last_checked: float = field(default_factory=time.time)
    start_date: Optional[str] = None
    end_date: Optional[str] = None

    @property
    def remaining(self) -> float:
        return max(0, self.total_allowance - self.total_used)

    @property
    def used_ratio(self) -> float:
        if self.total_allowance > 0:
            return self.total_used / self.total_allowance
        return 0.0

    @property
    def is_exhausted(self) -> bool:
        return self.remaining == 0 or self.used_ratio > EXHAUSTION_RATIO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_allowance": self.total_allowance,
            "total_used": self.total_used,
            "remaining": self.remaining,
            "used_ratio": self.used_ratio,
            "last_checked": self.last_checked,
            "start_date": self.start_date,
            "end_date": self.end_date,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Quota":
        return cls(
            total_allowance=data.get("total_allowance", 0),
            total_used=data.get("total_used", 0),
            last_checked=data.get("last_checked", 0.0),
            start_date=data.get("start_date"),
            end_date=data.get("end_date"),
        )


def mask_secret(secret: str) -> str:
    """日志里只显示密钥首尾，避免泄露。"""

    if len(secret) <= 10:
        return "*" * len(secret)
    return f"{secret[:6]}...{secret[-4:]}"


@dataclass(slots=True)
class Credential:
    """池中的单个 API 凭证。quota 为 None 表示尚未探测。"""

    secret: str
    display_name: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    quota: Optional[Quota] = None
    invalid: bool = False
    last_used: Optional[float] = None

    @property
    def masked_secret(self) -> str:
        return mask_secret(self.secret)

    @property
    def remaining(self) -> Optional[float]:
        return self.quota.remaining if self.quota is not None else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "secret": self.secret,
            "display_name": self.display_name,
            "quota": self.quota.to_dict() if self.quota else None,
            "invalid": self.invalid,
            "last_used": self.last_used,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Credential":
        quota = data.get("quota")
        return cls(
            id=data["id"],
            secret=data["secret"],
            display_name=data.get("display_name") or "",
            quota=Quota.from_dict(quota) if quota else None,
            invalid=bool(data.get("invalid", False)),
            last_used=data.get("last_used"),
        )


@dataclass(slots=True)
class Endpoint:
    """单个 endpoint 的运行时状态。"""

    url: str
    added_at: float = field(default_factory=time.time)
    last_used: Optional[float] = None
    latency_ms: Optional[float] = None
    status: EndpointStatus = EndpointStatus.UNKNOWN
    last_tested: Optional[float] = None
    failure_reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "added_at": self.added_at,
            "last_used": self.last_used,
            "latency_ms": self.latency_ms,
            "status": self.status.value,
            "last_tested": self.last_tested,
            "failure_reason": self.failure_reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Endpoint":
        return cls(
            url=data["url"],
            added_at=data.get("added_at", 0.0),
            last_used=data.get("last_used"),
            latency_ms=data.get("latency_ms"),
            status=EndpointStatus(data.get("status", EndpointStatus.UNKNOWN.value)),
            last_tested=data.get("last_tested"),
            failure_reason=data.get("failure_reason", ""),
        )


__all__ = [
    "EXHAUSTION_RATIO",
    "SwitchStrategy",
    "EndpointStrategy",
    "EndpointStatus",
    "Quota",
    "Credential",
    "Endpoint",
    "mask_secret",
]
