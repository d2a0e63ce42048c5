"""Failover state machine for one key pool.

The pool moves between four states driven by quota probes of the active
credential::

    healthy --(remaining == 0 or used_ratio > 0.99)--> exhausted
    exhausted --(candidate found)--> healthy  (active index rotated)
    exhausted --(no candidate)--> all_exhausted
    any --(AuthError)--> invalid              (never rotates by itself)
    any --(positive remaining)--> healthy

Candidate selection and state transitions are pure functions; the
:class:`FailoverEngine` applies them to a :class:`KeyPool` and reports what
happened as a :class:`FailoverDecision` for the coordinator to publish.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from connectors.quota_probe import QuotaResult
from core.endpoint_set import EndpointSet, select_fastest
from core.errors import AllExhausted, AuthError
from core.events import EventType, Severity
from core.key_pool import KeyPool
from core.models import Credential, EndpointStrategy, Quota, SwitchStrategy

LOGGER = logging.getLogger(__name__)


class PoolState(str, Enum):
    HEALTHY = "healthy"
    EXHAUSTED = "exhausted"
    ALL_EXHAUSTED = "all_exhausted"
    INVALID = "invalid"


class Observation(str, Enum):
    """How a probe result is classified; inconclusive results leave the state alone."""

    AVAILABLE = "available"
    EXHAUSTED = "exhausted"
    INVALID = "invalid"
    INCONCLUSIVE = "inconclusive"


@dataclass(slots=True)
class Notice:
    event_type: EventType
    severity: Severity
    message: str
    credential_id: Optional[str] = None


@dataclass(slots=True)
class FailoverDecision:
    """Outcome of one evaluation, published by the coordinator and used to schedule a re-check."""

    state: PoolState
    previous_index: int
    active_index: int
    rotated: bool = False
    recheck_generation: Optional[int] = None
    error: Optional[AllExhausted] = None
    notices: List[Notice] = field(default_factory=list)


def is_exhausted(quota: Optional[Quota]) -> bool:
    """Unknown quota is not exhausted."""

    return quota is not None and quota.is_exhausted


def classify(result: QuotaResult) -> Observation:
    if isinstance(result.error, AuthError):
        return Observation.INVALID
    if result.error is not None or result.quota is None:
        return Observation.INCONCLUSIVE
    if result.quota.is_exhausted:
        return Observation.EXHAUSTED
    return Observation.AVAILABLE


def transition(state: PoolState, observation: Observation) -> PoolState:
    """Next state for an observation of the active credential, before rotation."""

    if observation is Observation.INVALID:
        return PoolState.INVALID
    if observation is Observation.EXHAUSTED:
        return PoolState.EXHAUSTED
    if observation is Observation.AVAILABLE:
        return PoolState.HEALTHY
    return state


def _has_positive_remaining(credential: Credential) -> bool:
    return credential.quota is not None and credential.quota.remaining > 0


def select_candidate(
    credentials: Sequence[Credential], active_index: int, strategy: SwitchStrategy
) -> Optional[int]:
    """Index of the next credential for ``strategy``, or None without a candidate.

    The active and invalid credentials are never candidates. Round robin
    accepts credentials that were never probed; lowest/highest only rank
    known remaining quota above zero and break ties on the lower index.
    """

    count = len(credentials)
    if strategy is SwitchStrategy.MANUAL or count < 2:
        return None
    candidates = [
        index
        for index, credential in enumerate(credentials)
        if index != active_index and not credential.invalid
    ]
    if strategy is SwitchStrategy.ROUND_ROBIN:
        for offset in range(1, count):
            index = (active_index + offset) % count
            if index not in candidates:
                continue
            credential = credentials[index]
            if credential.quota is None or credential.quota.remaining > 0:
                return index
        return None

    known = [index for index in candidates if _has_positive_remaining(credentials[index])]
    if not known:
        return None
    if strategy is SwitchStrategy.USE_LOWEST:
        return min(known, key=lambda index: (credentials[index].quota.remaining, index))
    return min(known, key=lambda index: (-credentials[index].quota.remaining, index))


class FailoverEngine:
    """Apply quota observations to a pool and rotate the active credential.

    A rotation bumps a generation counter. The coordinator passes that
    generation back with the immediate re-probe of the new credential; a
    matching observation updates the state but never rotates again, which
    stops optimistic round-robin picks from spinning through a pool that is
    exhausted everywhere. The marker is consumed by the first matching
    observation and by any manual change of the active credential.
    """

    def __init__(self, pool: KeyPool, pool_id: str = "default") -> None:
        self.pool = pool
        self.pool_id = pool_id
        self._state = PoolState.HEALTHY
        self._generation = 0
        self._pending_generation: Optional[int] = None
        self.sync_with_active()

    @property
    def state(self) -> PoolState:
        return self._state

    @property
    def pending_generation(self) -> Optional[int]:
        return self._pending_generation

    def _decision(self) -> FailoverDecision:
        index = self.pool.active_index
        return FailoverDecision(state=self._state, previous_index=index, active_index=index)

    def sync_with_active(self) -> PoolState:
        """Reset the state from the active credential's cached quota after a manual change."""

        self._pending_generation = None
        active = self.pool.active
        if active is None:
            self._state = PoolState.HEALTHY
        elif active.invalid:
            self._state = PoolState.INVALID
        elif is_exhausted(active.quota):
            self._state = PoolState.EXHAUSTED
        else:
            self._state = PoolState.HEALTHY
        return self._state

    def observe(self, result: QuotaResult, generation: Optional[int] = None) -> FailoverDecision:
        """Feed one already-applied probe result into the state machine."""

        guarded = generation is not None and generation == self._pending_generation
        if guarded:
            self._pending_generation = None
        decision = self._decision()
        active = self.pool.active
        if active is None:
            return decision

        observation = classify(result)
        previous = self._state

        if result.credential_id != active.id:
            if observation is Observation.AVAILABLE and previous in (
                PoolState.EXHAUSTED,
                PoolState.ALL_EXHAUSTED,
            ):
                return self._failover(decision, previous)
            return decision

        self._state = transition(previous, observation)
        decision.state = self._state
        if observation is Observation.INVALID:
            if previous is not PoolState.INVALID:
                LOGGER.warning("[%s] Active credential %s rejected upstream", self.pool_id, active.display_name)
                decision.notices.append(
                    Notice(
                        EventType.INVALIDATED,
                        Severity.ERROR,
                        f"Credential {active.display_name} was rejected by the provider and needs replacement",
                        active.id,
                    )
                )
            return decision
        if observation is Observation.AVAILABLE:
            if previous is not PoolState.HEALTHY:
                decision.notices.append(
                    Notice(
                        EventType.RECOVERED,
                        Severity.SUCCESS,
                        f"Credential {active.display_name} is usable again",
                        active.id,
                    )
                )
            return decision
        if observation is Observation.EXHAUSTED:
            if guarded:
                LOGGER.warning(
                    "[%s] Re-check of rotated credential %s shows it exhausted; holding",
                    self.pool_id,
                    active.display_name,
                )
                decision.notices.append(
                    Notice(
                        EventType.EXHAUSTED,
                        Severity.ERROR,
                        f"Credential {active.display_name} is exhausted right after rotation",
                        active.id,
                    )
                )
                return decision
            return self._failover(decision, previous)
        return decision

    def evaluate(self) -> FailoverDecision:
        """Re-run failover on cached quotas, e.g. after a strategy change."""

        decision = self._decision()
        active = self.pool.active
        if active is None or not is_exhausted(active.quota):
            return decision
        return self._failover(decision, self._state)

    def on_credential_added(self) -> FailoverDecision:
        if self._state is PoolState.ALL_EXHAUSTED:
            return self._failover(self._decision(), PoolState.ALL_EXHAUSTED)
        return self._decision()

    def _failover(self, decision: FailoverDecision, previous: PoolState) -> FailoverDecision:
        active = self.pool.active
        if active is None:
            return decision
        strategy = self.pool.strategy
        if strategy is SwitchStrategy.MANUAL:
            self._state = PoolState.EXHAUSTED
            decision.state = self._state
            if previous is not PoolState.EXHAUSTED:
                decision.notices.append(
                    Notice(
                        EventType.EXHAUSTED,
                        Severity.ERROR,
                        f"Credential {active.display_name} is exhausted; switch keys manually",
                        active.id,
                    )
                )
            return decision

        index = select_candidate(self.pool.credentials, self.pool.active_index, strategy)
        if index is None:
            self._state = PoolState.ALL_EXHAUSTED
            decision.state = self._state
            decision.error = AllExhausted(f"no rotation candidate in pool {self.pool_id}")
            if previous is not PoolState.ALL_EXHAUSTED:
                LOGGER.error("[%s] All credentials exhausted or invalid", self.pool_id)
                decision.notices.append(
                    Notice(
                        EventType.ALL_EXHAUSTED,
                        Severity.ERROR,
                        "All credentials are exhausted or invalid; automatic rotation stopped",
                        active.id,
                    )
                )
            return decision

        successor = self.pool.set_active(index)
        self._generation += 1
        self._pending_generation = self._generation
        self._state = PoolState.HEALTHY
        decision.state = self._state
        decision.active_index = index
        decision.rotated = True
        decision.recheck_generation = self._generation
        LOGGER.info(
            "[%s] Rotated %s -> %s (%s)",
            self.pool_id,
            active.display_name,
            successor.display_name,
            strategy.value,
        )
        decision.notices.append(
            Notice(
                EventType.ROTATION,
                Severity.SUCCESS,
                f"Switched from {active.display_name} to {successor.display_name}",
                successor.id,
            )
        )
        return decision

    def choose_endpoint(self, endpoints: EndpointSet, strategy: EndpointStrategy) -> Optional[Notice]:
        """Under ``use_fastest`` select the lowest-latency online endpoint; offline ones stay."""

        if strategy is not EndpointStrategy.USE_FASTEST:
            return None
        fastest = select_fastest(endpoints.endpoints)
        if fastest is None or fastest.url == endpoints.selected:
            return None
        endpoints.set_selected(fastest.url)
        LOGGER.info("[%s] Selected endpoint %s (%.0fms)", self.pool_id, fastest.url, fastest.latency_ms)
        return Notice(
            EventType.ENDPOINT_SWITCH,
            Severity.SUCCESS,
            f"Using endpoint {fastest.url} ({fastest.latency_ms:.0f}ms)",
        )


__all__ = [
    "PoolState",
    "Observation",
    "Notice",
    "FailoverDecision",
    "FailoverEngine",
    "classify",
    "is_exhausted",
    "select_candidate",
    "transition",
]
