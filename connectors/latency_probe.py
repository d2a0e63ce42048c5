"""Endpoint latency probe helpers for manual speed tests and automated checks."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Tuple

import httpx

from core.models import EndpointStatus

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 5000


@dataclass(slots=True)
class LatencyResult:
    """One latency measurement; latency_ms is None when offline."""

    url: str
    status: EndpointStatus
    latency_ms: Optional[float] = None
    status_code: Optional[int] = None
    error: str = ""

    @property
    def online(self) -> bool:
        return self.status is EndpointStatus.ONLINE


class LatencyProbe:
    """Issue a lightweight GET against an endpoint and time it.

    Any HTTP response counts as reachable: the probe measures the network
    path, not whether the API accepts an anonymous request. Timeouts and
    transport errors come back as ``offline`` results instead of exceptions
    so that a batch of probes always completes.
    """

    def __init__(
        self,
        path: str = "",
        client_factory: Optional[Callable[[float], httpx.AsyncClient]] = None,
    ) -> None:
        self.path = path
        self._client_factory = client_factory or (lambda timeout: httpx.AsyncClient(timeout=timeout))

    @staticmethod
    async def _time_first_response(client: httpx.AsyncClient, target: str) -> Tuple[float, int]:
        """Time from dispatch until the response headers arrive; the body is never read."""

        started = time.perf_counter()
        async with client.stream("GET", target) as resp:
            return (time.perf_counter() - started) * 1000, resp.status_code

    async def check(self, url: str, timeout_ms: float = DEFAULT_TIMEOUT_MS) -> LatencyResult:
        target = f"{url.rstrip('/')}{self.path}"
        timeout = timeout_ms / 1000
        try:
            async with self._client_factory(timeout) as client:
                latency_ms, status_code = await asyncio.wait_for(
                    self._time_first_response(client, target), timeout=timeout
                )
        except (httpx.TimeoutException, asyncio.TimeoutError):
            LOGGER.warning("Endpoint %s timed out after %.0fms", url, timeout_ms)
            return LatencyResult(url=url, status=EndpointStatus.OFFLINE, error="timeout")
        except httpx.RequestError as exc:
            LOGGER.warning("Endpoint %s unreachable: %s", url, exc)
            return LatencyResult(url=url, status=EndpointStatus.OFFLINE, error=str(exc) or type(exc).__name__)
        return LatencyResult(
            url=url,
            status=EndpointStatus.ONLINE,
            latency_ms=latency_ms,
            status_code=status_code,
        )

    async def check_many(self, urls: Iterable[str], timeout_ms: float = DEFAULT_TIMEOUT_MS) -> List[LatencyResult]:
        """Measure all urls concurrently, each under its own timeout."""

        return list(await asyncio.gather(*(self.check(url, timeout_ms) for url in urls)))


__all__ = ["DEFAULT_TIMEOUT_MS", "LatencyResult", "LatencyProbe"]
