"""Usage/billing probe for a single credential.

:class:`HttpUsageTransport` talks to the provider's usage endpoint over
httpx and translates HTTP outcomes into the pool error taxonomy.
:class:`QuotaProbe` adds a hard deadline on top of the transport and turns
every failure into a :class:`QuotaResult` so that batch refreshes never see
an exception.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol

import httpx

from core.errors import AuthError, NetworkError, ProbeError, ProbeTimeoutError
from core.models import Credential, Quota

LOGGER = logging.getLogger(__name__)

DEFAULT_USAGE_URL = "https://app.factory.ai/api/organization/members/chat-usage"
DEFAULT_TIMEOUT_SEC = 5.0

_END_DATE_KEYS = ("endDate", "expiresAt", "expiryDate", "validUntil", "end_date", "expires_at")


@dataclass(slots=True)
class UsageReading:
    """Raw usage counts returned by a transport."""

    total_allowance: float
    total_used: float
    start_date: Optional[str] = None
    end_date: Optional[str] = None


@dataclass(slots=True)
class QuotaResult:
    """Outcome of one quota check; on failure quota is None and error is set."""

    credential_id: str
    quota: Optional[Quota] = None
    error: Optional[ProbeError] = None
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def auth_failed(self) -> bool:
        return isinstance(self.error, AuthError)


class UsageTransport(Protocol):
    """Return usage for a secret or raise AuthError/NetworkError/ProbeTimeoutError."""

    async def fetch_usage(self, secret: str) -> UsageReading:
        """Query usage for one secret."""


def parse_usage_payload(payload: Any) -> UsageReading:
    """Extract allowance/used counts from a ``{"usage": {"standard": ...}}`` body."""

    if not isinstance(payload, dict):
        raise NetworkError("usage response is not a JSON object")
    usage = payload.get("usage") or {}
    if not isinstance(usage, dict):
        raise NetworkError("malformed usage payload: usage is not an object")
    standard = usage.get("standard") or {}
    if not isinstance(standard, dict):
        raise NetworkError("malformed usage payload: standard is not an object")
    end_date = next((usage[key] for key in _END_DATE_KEYS if usage.get(key)), None)
    try:
        return UsageReading(
            total_allowance=float(standard.get("totalAllowance") or 0),
            total_used=float(standard.get("orgTotalTokensUsed") or 0),
            start_date=usage.get("startDate"),
            end_date=end_date,
        )
    except (TypeError, ValueError) as exc:
        raise NetworkError(f"malformed usage counts: {exc}") from exc


class HttpUsageTransport:
    """Query the usage endpoint over httpx; 401/403 means the credential is invalid."""

    def __init__(
        self,
        usage_url: str = DEFAULT_USAGE_URL,
        timeout: float = DEFAULT_TIMEOUT_SEC,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
    ) -> None:
        self.usage_url = usage_url
        self.timeout = timeout
        self._client_factory = client_factory or (lambda: httpx.AsyncClient(timeout=self.timeout))

    async def fetch_usage(self, secret: str) -> UsageReading:
        headers = {"Authorization": f"Bearer {secret}", "Accept": "application/json"}
        try:
            async with self._client_factory() as client:
                resp = await client.get(self.usage_url, headers=headers)
        except httpx.TimeoutException as exc:
            raise ProbeTimeoutError(f"usage query timed out: {exc}") from exc
        except httpx.RequestError as exc:
            raise NetworkError(f"usage query failed: {exc}") from exc
        if resp.status_code in (401, 403):
            raise AuthError(f"credential rejected (status {resp.status_code})")
        if resp.status_code != 200:
            raise NetworkError(f"status {resp.status_code}")
        try:
            payload: Dict[str, Any] = resp.json()
        except ValueError as exc:
            raise NetworkError("usage response is not valid JSON") from exc
        return parse_usage_payload(payload)


class QuotaProbe:
    """Query one credential's quota with a hard deadline.

    The probe only reads the credential; applying the result to the pool is
    the coordinator's job.
    """

    def __init__(self, transport: UsageTransport, timeout: float = DEFAULT_TIMEOUT_SEC) -> None:
        self.transport = transport
        self.timeout = timeout

    async def check(self, credential: Credential) -> QuotaResult:
        started = time.perf_counter()
        try:
            reading = await asyncio.wait_for(
                self.transport.fetch_usage(credential.secret), timeout=self.timeout
            )
        except ProbeError as exc:
            error: ProbeError = exc
        except asyncio.TimeoutError:
            error = ProbeTimeoutError(f"no usage response within {self.timeout:.1f}s")
        except Exception as exc:
            error = NetworkError(f"{type(exc).__name__}: {exc}")
        else:
            quota = Quota(
                total_allowance=reading.total_allowance,
                total_used=reading.total_used,
                start_date=reading.start_date,
                end_date=reading.end_date,
            )
            return QuotaResult(
                credential_id=credential.id,
                quota=quota,
                elapsed_ms=(time.perf_counter() - started) * 1000,
            )
        LOGGER.warning(
            "Quota probe for %s (%s) failed: %s: %s",
            credential.display_name,
            credential.masked_secret,
            type(error).__name__,
            error,
        )
        return QuotaResult(
            credential_id=credential.id,
            error=error,
            elapsed_ms=(time.perf_counter() - started) * 1000,
        )


__all__ = [
    "DEFAULT_USAGE_URL",
    "DEFAULT_TIMEOUT_SEC",
    "UsageReading",
    "QuotaResult",
    "UsageTransport",
    "HttpUsageTransport",
    "QuotaProbe",
    "parse_usage_payload",
]
