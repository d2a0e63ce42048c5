"""Key pool error taxonomy.

Structural errors propagate to the caller. Probe errors are captured by the
probes and carried in their results, never raised out of a batch refresh.
"""

from __future__ import annotations


class PoolError(Exception):
    """All pool errors derive from this."""


class DuplicateCredential(PoolError):
    """The secret is already present in the pool."""


class PoolWouldBeEmpty(PoolError):
    """Removing this credential would leave the pool empty."""


class CannotRemoveActive(PoolError):
    """The active credential cannot be removed without rotating first."""


class IndexOutOfRange(PoolError, IndexError):
    """No credential at the requested position."""


class CredentialNotFound(PoolError, KeyError):
    """No credential with the requested id."""


class UnknownEndpoint(PoolError, KeyError):
    """No endpoint with the requested url."""


class ProbeError(PoolError):
    """Failure of a single quota or latency probe."""


class AuthError(ProbeError):
    """Upstream rejected the credential (revoked, wrong key)."""


class NetworkError(ProbeError):
    """Transient connectivity or protocol failure."""


class ProbeTimeoutError(ProbeError, TimeoutError):
    """The probe exceeded its deadline."""


class AllExhausted(PoolError):
    """No credential is eligible for automatic rotation."""


__all__ = [
    "PoolError",
    "DuplicateCredential",
    "PoolWouldBeEmpty",
    "CannotRemoveActive",
    "IndexOutOfRange",
    "CredentialNotFound",
    "UnknownEndpoint",
    "ProbeError",
    "AuthError",
    "NetworkError",
    "ProbeTimeoutError",
    "AllExhausted",
]
