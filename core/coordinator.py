"""Pool coordinator: the public API of one credential/endpoint pool.

The coordinator owns the pool lock. Structural mutations (add, remove,
set_active, rotation) run synchronously under that lock and never await.
Probes run outside the lock, concurrently, each bounded by its own timeout;
their results are applied one credential at a time under the lock, so a
reader never sees a half-updated credential.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Union

from connectors.latency_probe import DEFAULT_TIMEOUT_MS, LatencyProbe, LatencyResult
from connectors.quota_probe import HttpUsageTransport, QuotaProbe, QuotaResult, UsageTransport
from core.config_loader import DEFAULT_REFRESH_INTERVAL_SEC, AppConfig
from core.endpoint_set import EndpointSet
from core.errors import CredentialNotFound, ProbeError, UnknownEndpoint
from core.event_bus import EventBus
from core.events import EventEnvelope, PoolEvent
from core.failover import FailoverDecision, FailoverEngine, Notice, PoolState
from core.key_pool import BatchAddResult, KeyPool
from core.models import Credential, Endpoint, EndpointStrategy, SwitchStrategy, mask_secret
from storage.pool_store import PoolStore

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class RefreshReport:
    """Summary of one refresh: per-credential and per-endpoint results plus the failover decision."""

    quota_results: List[QuotaResult] = field(default_factory=list)
    latency_results: List[LatencyResult] = field(default_factory=list)
    decision: Optional[FailoverDecision] = None
    recheck: Optional[QuotaResult] = None

    @property
    def errors(self) -> Dict[str, ProbeError]:
        return {result.credential_id: result.error for result in self.quota_results if result.error}

    @property
    def rotated(self) -> bool:
        return bool(self.decision and self.decision.rotated)


class PoolCoordinator:
    """Orchestrate refresh cycles and expose pool operations to the application."""

    def __init__(
        self,
        pool: KeyPool,
        quota_probe: QuotaProbe,
        endpoints: Optional[EndpointSet] = None,
        latency_probe: Optional[LatencyProbe] = None,
        pool_id: str = "default",
        endpoint_strategy: Union[EndpointStrategy, str] = EndpointStrategy.MANUAL,
        event_bus: Optional[EventBus] = None,
        store: Optional[PoolStore] = None,
        probe_timeout_ms: float = DEFAULT_TIMEOUT_MS,
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL_SEC,
        key_prefix: Optional[str] = None,
    ) -> None:
        self.pool = pool
        self.pool_id = pool_id
        self.endpoints = endpoints if endpoints is not None else EndpointSet()
        self.quota_probe = quota_probe
        self.latency_probe = latency_probe or LatencyProbe()
        self.endpoint_strategy = EndpointStrategy(endpoint_strategy)
        self.event_bus = event_bus
        self.store = store
        self.probe_timeout_ms = probe_timeout_ms
        self.refresh_interval = refresh_interval
        self.key_prefix = key_prefix
        self.engine = FailoverEngine(pool, pool_id=pool_id)
        self._lock = threading.RLock()
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._background: Set[asyncio.Task] = set()

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        store: Optional[PoolStore] = None,
        event_bus: Optional[EventBus] = None,
        transport: Optional[UsageTransport] = None,
    ) -> "PoolCoordinator":
        """Build a coordinator from configuration, preferring a saved snapshot."""

        timeout = config.probe.timeout_sec
        snapshot = store.load() if store is not None else None
        if snapshot:
            pool = KeyPool.from_dict(snapshot.get("key_pool", {}))
            endpoints = EndpointSet.from_dict(snapshot.get("endpoints", {}))
            endpoint_strategy = snapshot.get("endpoint_strategy", config.pool.endpoint_strategy)
            LOGGER.info("Restored pool %s with %s credentials", config.pool.id, len(pool))
        else:
            pool = KeyPool(strategy=config.pool.strategy)
            for entry in config.keys:
                secret = entry.resolved_secret
                if not secret:
                    LOGGER.warning("Skipping key %s: no secret configured", entry.name or entry.secret_env)
                    continue
                pool.add(secret, entry.name)
            endpoints = EndpointSet()
            for url in config.endpoints:
                endpoints.add(url)
            endpoint_strategy = config.pool.endpoint_strategy
        transport = transport or HttpUsageTransport(usage_url=config.probe.usage_url, timeout=timeout)
        return cls(
            pool=pool,
            quota_probe=QuotaProbe(transport, timeout=timeout),
            endpoints=endpoints,
            latency_probe=LatencyProbe(path=config.probe.latency_path),
            pool_id=config.pool.id,
            endpoint_strategy=endpoint_strategy,
            event_bus=event_bus,
            store=store,
            probe_timeout_ms=timeout * 1000,
            refresh_interval=config.probe.refresh_interval_sec,
            key_prefix=config.pool.key_prefix,
        )

    # ------------------------------------------------------------------
    # state

    @property
    def state(self) -> PoolState:
        return self.engine.state

    @property
    def strategy(self) -> SwitchStrategy:
        return self.pool.strategy

    def current_credential(self) -> Optional[Credential]:
        """The credential callers should take their secret from right now."""

        with self._lock:
            return self.pool.active

    def snapshot(self, mask_secrets: bool = False) -> Dict[str, Any]:
        with self._lock:
            key_pool = self.pool.to_dict()
            if mask_secrets:
                for raw in key_pool["credentials"]:
                    raw["secret"] = mask_secret(raw["secret"])
            return {
                "pool_id": self.pool_id,
                "state": self.engine.state.value,
                "key_pool": key_pool,
                "endpoints": self.endpoints.to_dict(),
                "endpoint_strategy": self.endpoint_strategy.value,
            }

    def _save(self) -> None:
        if self.store is None:
            return
        self.store.save(self.snapshot())

    def _publish(self, notices: List[Notice]) -> None:
        if self.event_bus is None:
            return
        for notice in notices:
            event = PoolEvent(
                event_type=notice.event_type,
                severity=notice.severity,
                pool_id=self.pool_id,
                message=notice.message,
                credential_id=notice.credential_id,
            )
            self.event_bus.publish(EventEnvelope(event=event))

    def _after_added(self, decision: FailoverDecision) -> None:
        """If a new credential lifted all_exhausted and rotated, schedule its re-check on the running loop."""

        self._publish(decision.notices)
        if not decision.rotated:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            LOGGER.debug("[%s] No running loop; re-check deferred to next refresh", self.pool_id)
            return
        task = loop.create_task(self._recheck(decision))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------
    # structural mutations

    def add_credential(self, secret: str, name: Optional[str] = None) -> Credential:
        with self._lock:
            credential = self.pool.add(secret, name)
            if len(self.pool) == 1:
                self.engine.sync_with_active()
            self._after_added(self.engine.on_credential_added())
            self._save()
            return credential

    def add_credentials(self, text: str) -> BatchAddResult:
        """Batch import, one secret per line with an optional leading name."""

        with self._lock:
            was_empty = len(self.pool) == 0
            result = self.pool.add_batch(text, prefix=self.key_prefix)
            if result.added:
                if was_empty:
                    self.engine.sync_with_active()
                self._after_added(self.engine.on_credential_added())
                self._save()
            return result

    def remove_credential(self, credential_id: str) -> Credential:
        with self._lock:
            active = self.pool.active
            was_active = active is not None and active.id == credential_id
            removed = self.pool.remove(credential_id)
            if was_active:
                self.engine.sync_with_active()
            self._save()
            return removed

    def set_active(self, index: int) -> Credential:
        with self._lock:
            credential = self.pool.set_active(index)
            self.engine.sync_with_active()
            self._save()
            return credential

    def set_strategy(self, strategy: Union[SwitchStrategy, str]) -> None:
        with self._lock:
            self.pool.set_strategy(strategy)
            self._save()

    def set_endpoint_strategy(self, strategy: Union[EndpointStrategy, str]) -> None:
        with self._lock:
            self.endpoint_strategy = EndpointStrategy(strategy)
            self._save()

    def add_endpoint(self, url: str) -> Endpoint:
        with self._lock:
            endpoint = self.endpoints.add(url)
            self._save()
            return endpoint

    def remove_endpoint(self, url: str) -> Endpoint:
        with self._lock:
            endpoint = self.endpoints.remove(url)
            self._save()
            return endpoint

    def select_endpoint(self, url: Optional[str] = None) -> Optional[Endpoint]:
        """Select an endpoint by url, or the fastest online one when url is None."""

        with self._lock:
            if url is not None:
                endpoint = self.endpoints.set_selected(url)
            else:
                endpoint = self.endpoints.fastest()
                if endpoint is None:
                    return None
                self.endpoints.set_selected(endpoint.url)
            self._save()
            return endpoint

    # ------------------------------------------------------------------
    # probing

    def _apply_quota(self, result: QuotaResult, generation: Optional[int] = None) -> Optional[FailoverDecision]:
        with self._lock:
            try:
                credential = self.pool.get(result.credential_id)
            except CredentialNotFound:
                LOGGER.info("Dropping probe result for removed credential %s", result.credential_id)
                return None
            if result.quota is not None:
                self.pool.record_quota(credential.id, result.quota)
            elif result.auth_failed:
                self.pool.mark_invalid(credential.id)
            decision = self.engine.observe(result, generation=generation)
            self._publish(decision.notices)
            self._save()
            return decision

    def _apply_latency(self, results: List[LatencyResult]) -> None:
        with self._lock:
            for result in results:
                try:
                    if result.online and result.latency_ms is not None:
                        self.endpoints.mark_online(result.url, result.latency_ms)
                    else:
                        self.endpoints.mark_offline(result.url, result.error)
                except UnknownEndpoint:
                    LOGGER.info("Dropping latency result for removed endpoint %s", result.url)
            notice = self.engine.choose_endpoint(self.endpoints, self.endpoint_strategy)
            if notice is not None:
                self._publish([notice])
            self._save()

    async def _recheck(self, decision: Optional[FailoverDecision]) -> Optional[QuotaResult]:
        """Re-check the credential a rotation just picked; this result never rotates again."""

        if decision is None or not decision.rotated:
            return None
        with self._lock:
            credential = self.pool.active
        if credential is None:
            return None
        result = await self.quota_probe.check(credential)
        self._apply_quota(result, generation=decision.recheck_generation)
        return result

    async def probe_credential(self, credential_id: str) -> RefreshReport:
        """Probe one credential, e.g. right after it was added."""

        with self._lock:
            credential = self.pool.get(credential_id)
        result = await self.quota_probe.check(credential)
        decision = self._apply_quota(result)
        recheck = await self._recheck(decision)
        return RefreshReport(quota_results=[result], decision=decision, recheck=recheck)

    async def refresh_active(self) -> RefreshReport:
        """Probe only the active credential."""

        with self._lock:
            credential = self.pool.active
        if credential is None:
            return RefreshReport()
        result = await self.quota_probe.check(credential)
        decision = self._apply_quota(result)
        recheck = await self._recheck(decision)
        return RefreshReport(quota_results=[result], decision=decision, recheck=recheck)

    async def refresh_endpoints(self) -> List[LatencyResult]:
        with self._lock:
            urls = [endpoint.url for endpoint in self.endpoints.endpoints]
            for url in urls:
                self.endpoints.mark_probing(url)
        results = await self.latency_probe.check_many(urls, self.probe_timeout_ms)
        self._apply_latency(results)
        return results

    async def refresh_all(self) -> RefreshReport:
        """Probe every credential and endpoint concurrently, then apply.

        Results for inactive credentials are applied before the active one
        so that failover sees fresh quotas for its candidates.
        """

        with self._lock:
            credentials = self.pool.credentials
            active = self.pool.active
            active_id = active.id if active else None
        quota_results, latency_results = await asyncio.gather(
            asyncio.gather(*(self.quota_probe.check(credential) for credential in credentials)),
            self.refresh_endpoints(),
        )
        ordered = sorted(quota_results, key=lambda result: result.credential_id == active_id)
        decision: Optional[FailoverDecision] = None
        for result in ordered:
            applied = self._apply_quota(result)
            if applied is None:
                continue
            if decision is None or not decision.rotated:
                decision = applied
        recheck = await self._recheck(decision)
        failed = sum(1 for result in quota_results if result.error)
        LOGGER.info(
            "[%s] Refreshed %s credentials (%s failed), %s endpoints; state=%s",
            self.pool_id,
            len(quota_results),
            failed,
            len(latency_results),
            self.engine.state.value,
        )
        return RefreshReport(
            quota_results=list(quota_results),
            latency_results=list(latency_results),
            decision=decision,
            recheck=recheck,
        )

    async def retry_failover(self) -> RefreshReport:
        """Manual retry: re-run failover on cached quotas."""

        with self._lock:
            decision = self.engine.evaluate()
            self._publish(decision.notices)
            self._save()
        recheck = await self._recheck(decision)
        return RefreshReport(decision=decision, recheck=recheck)

    # ------------------------------------------------------------------
    # periodic refresh

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, interval: Optional[float] = None) -> asyncio.Task:
        """Start periodic refresh_active on the running loop."""

        if self._task is not None and not self._task.done():
            return self._task
        if interval is not None:
            self.refresh_interval = interval
        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(
            self._periodic(self._stop_event), name=f"refresh:{self.pool_id}"
        )
        return self._task

    async def stop(self) -> None:
        """Stop the timer and wait for the current cycle; in-flight probes finish."""

        if self._task is None or self._stop_event is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self._stop_event = None

    async def _periodic(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await self.refresh_active()
            except Exception as exc:
                LOGGER.exception("[%s] Periodic refresh failed: %s", self.pool_id, exc)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.refresh_interval)
            except asyncio.TimeoutError:
                continue


__all__ = ["DEFAULT_REFRESH_INTERVAL_SEC", "RefreshReport", "PoolCoordinator"]
