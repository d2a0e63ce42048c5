"""Probe connectors for upstream usage APIs and endpoint reachability."""

from .latency_probe import DEFAULT_TIMEOUT_MS, LatencyProbe, LatencyResult
from .quota_probe import (
    DEFAULT_TIMEOUT_SEC,
    DEFAULT_USAGE_URL,
    HttpUsageTransport,
    QuotaProbe,
    QuotaResult,
    UsageReading,
    UsageTransport,
    parse_usage_payload,
)

__all__ = [
    "DEFAULT_TIMEOUT_MS",
    "DEFAULT_TIMEOUT_SEC",
    "DEFAULT_USAGE_URL",
    "HttpUsageTransport",
    "LatencyProbe",
    "LatencyResult",
    "QuotaProbe",
    "QuotaResult",
    "UsageReading",
    "UsageTransport",
    "parse_usage_payload",
]
