"""Data models for the circuit breaker."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import FrozenSet, Optional

from captiongate.app.core.config import settings


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Policy for one circuit breaker.

    Attributes:
        failure_threshold: Counted failures that open the circuit (default: 5)
        reset_timeout_ms: Time the circuit stays open before admitting trial calls (default: 60s)
        half_open_attempts: Trial successes needed to close again; also the
            number of trial calls allowed in flight at once (default: 3)
        retryable_status_codes: Status codes that count as upstream failures
        state_ttl_seconds: Lifetime of shared breaker state in Redis
        call_timeout_seconds: Time budget of a wrapped call
    """
    failure_threshold: int = 5
    reset_timeout_ms: int = 60_000
    half_open_attempts: int = 3
    retryable_status_codes: FrozenSet[int] = field(
        default_factory=lambda: frozenset({429, 500, 502, 503, 504})
    )
    state_ttl_seconds: int = 3600
    call_timeout_seconds: Optional[float] = 28.0

    @classmethod
    def from_settings(cls) -> "CircuitBreakerConfig":
        return cls(
            failure_threshold=settings.circuit_failure_threshold,
            reset_timeout_ms=settings.circuit_reset_timeout_ms,
            half_open_attempts=settings.circuit_half_open_attempts,
            retryable_status_codes=frozenset(settings.circuit_retryable_status_codes),
            state_ttl_seconds=settings.circuit_state_ttl_seconds,
            call_timeout_seconds=settings.upstream_timeout_seconds,
        )


@dataclass(frozen=True)
class CircuitSnapshot:
    """Stored state of one named operation."""
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    last_failure_time: int = 0
    half_open_in_flight: int = 0

    def evolve(self, **changes) -> "CircuitSnapshot":
        return replace(self, **changes)


@dataclass(frozen=True)
class AcquireResult:
    """Whether a call may proceed, and whether it is a recovery trial call."""
    allowed: bool
    trial: bool
    snapshot: CircuitSnapshot
    retry_after_ms: Optional[int] = None


@dataclass(frozen=True)
class CircuitBreakerStats:
    """Read-only view of a breaker for monitoring."""
    is_open: bool
    state: CircuitState
    failure_count: int
    success_count: int
    last_failure_time: Optional[int]

    @classmethod
    def from_snapshot(cls, snapshot: CircuitSnapshot) -> "CircuitBreakerStats":
        return cls(
            is_open=snapshot.state == CircuitState.OPEN,
            state=snapshot.state,
            failure_count=snapshot.failure_count,
            success_count=snapshot.success_count,
            last_failure_time=snapshot.last_failure_time or None,
        )

    def to_dict(self) -> dict:
        return {
            "isOpen": self.is_open,
            "state": self.state.value,
            "failureCount": self.failure_count,
            "successCount": self.success_count,
            "lastFailureTime": self.last_failure_time,
        }
