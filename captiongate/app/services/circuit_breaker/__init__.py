"""Circuit breaker for upstream operations, with state shared via Redis."""

from .backends import (
    CircuitBackend,
    InMemoryCircuitBackend,
    RedisCircuitBackend,
    ResilientCircuitBackend,
    create_circuit_backend,
)
from .models import (
    AcquireResult,
    CircuitBreakerConfig,
    CircuitBreakerStats,
    CircuitSnapshot,
    CircuitState,
)
from .service import (
    CircuitBreaker,
    get_circuit_breaker_stats,
    reset_circuit_breaker,
    with_circuit_breaker,
)

__all__ = [
    "AcquireResult",
    "CircuitBackend",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerStats",
    "CircuitSnapshot",
    "CircuitState",
    "InMemoryCircuitBackend",
    "RedisCircuitBackend",
    "ResilientCircuitBackend",
    "create_circuit_backend",
    "get_circuit_breaker_stats",
    "reset_circuit_breaker",
    "with_circuit_breaker",
]
