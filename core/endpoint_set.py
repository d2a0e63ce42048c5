"""Endpoint 集合：缓存延迟与在线状态，并维护当前选中的 endpoint。"""

from __future__ import annotations

import time
from typing import Any, Dict, Iterable, List, Optional

from core.errors import UnknownEndpoint
from core.models import Endpoint, EndpointStatus


def normalise_url(url: str) -> str:
    return url.strip().rstrip("/")


def select_fastest(endpoints: Iterable[Endpoint]) -> Optional[Endpoint]:
    """在线 endpoint 中延迟最低者；同延迟按加入顺序。"""

    best: Optional[Endpoint] = None
    for endpoint in endpoints:
        if endpoint.status is not EndpointStatus.ONLINE or endpoint.latency_ms is None:
            continue
        if best is None or endpoint.latency_ms < best.latency_ms:
            best = endpoint
    return best


class EndpointSet:
    """按 url 去重的候选 endpoint 集合，可以为空（此时使用默认 endpoint）。"""

    def __init__(self, endpoints: Iterable[Endpoint] = (), selected: Optional[str] = None) -> None:
        self._endpoints: Dict[str, Endpoint] = {}
        for endpoint in endpoints:
            endpoint.url = normalise_url(endpoint.url)
            self._endpoints.setdefault(endpoint.url, endpoint)
        self._selected: Optional[str] = None
        if selected is not None:
            self.set_selected(selected)

    def __len__(self) -> int:
        return len(self._endpoints)

    def __contains__(self, url: object) -> bool:
        return isinstance(url, str) and normalise_url(url) in self._endpoints

    @property
    def endpoints(self) -> List[Endpoint]:
        return list(self._endpoints.values())

    @property
    def selected(self) -> Optional[str]:
        return self._selected

    def get(self, url: str) -> Endpoint:
        try:
            return self._endpoints[normalise_url(url)]
        except KeyError:
            raise UnknownEndpoint(url) from None

    def add(self, url: str) -> Endpoint:
        """加入 endpoint；已存在时返回原条目。"""

        key = normalise_url(url)
        if not key:
            raise ValueError("endpoint url must not be empty")
        endpoint = self._endpoints.get(key)
        if endpoint is None:
            endpoint = Endpoint(url=key)
            self._endpoints[key] = endpoint
        return endpoint

    def remove(self, url: str) -> Endpoint:
        """移除 endpoint；若它正被选中，则改选最快的在线 endpoint 或第一个剩余项。"""

        endpoint = self.get(url)
        del self._endpoints[endpoint.url]
        if self._selected == endpoint.url:
            successor = select_fastest(self._endpoints.values())
            if successor is None and self._endpoints:
                successor = next(iter(self._endpoints.values()))
            self._selected = successor.url if successor else None
        return endpoint

    def set_selected(self, url: str) -> Endpoint:
        endpoint = self.get(url)
        endpoint.last_used = time.time()
        self._selected = endpoint.url
        return endpoint

    def fastest(self) -> Optional[Endpoint]:
        return select_fastest(self._endpoints.values())

    def mark_probing(self, url: str) -> None:
        self.get(url).status = EndpointStatus.PROBING

    def mark_online(self, url: str, latency_ms: float) -> None:
        """标记在线：刷新延迟并清除失败原因。"""

        endpoint = self.get(url)
        endpoint.latency_ms = latency_ms
        endpoint.status = EndpointStatus.ONLINE
        endpoint.last_tested = time.time()
        endpoint.failure_reason = ""

    def mark_offline(self, url: str, reason: str) -> None:
        """标记离线：延迟置空并记录原因，条目保留以便下次重测。"""

        endpoint = self.get(url)
        endpoint.latency_ms = None
        endpoint.status = EndpointStatus.OFFLINE
        endpoint.last_tested = time.time()
        endpoint.failure_reason = reason

    def to_dict(self) -> Dict[str, Any]:
        return {
            "endpoints": [endpoint.to_dict() for endpoint in self._endpoints.values()],
            "selected": self._selected,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EndpointSet":
        return cls(
            endpoints=[Endpoint.from_dict(raw) for raw in data.get("endpoints", [])],
            selected=data.get("selected"),
        )


__all__ = ["EndpointSet", "normalise_url", "select_fastest"]
