"""State backends for the circuit breaker.

Supports process-local state and Redis-shared state, plus a resilient
wrapper that falls back to process-local state while Redis is unavailable.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from captiongate.app.core.logging import get_logger
from captiongate.app.core.redis import RedisConnection
from captiongate.app.core.counter_store import RedisUnavailableError

from . import transitions
from .models import AcquireResult, CircuitBreakerConfig, CircuitSnapshot, CircuitState
from .redis_lua import (
    ACQUIRE_SCRIPT,
    RECORD_FAILURE_SCRIPT,
    RECORD_SUCCESS_SCRIPT,
    RELEASE_SCRIPT,
)

logger = get_logger(__name__)


class CircuitBackend(ABC):
    """Abstract base class for breaker state storage.

    Every method is a single atomic transition of one operation's state.
    """

    @abstractmethod
    async def acquire(self, operation: str, now: int, config: CircuitBreakerConfig) -> AcquireResult:
        pass

    @abstractmethod
    async def record_success(self, operation: str, trial: bool, config: CircuitBreakerConfig) -> CircuitSnapshot:
        pass

    @abstractmethod
    async def record_failure(
        self, operation: str, trial: bool, now: int, config: CircuitBreakerConfig
    ) -> CircuitSnapshot:
        pass

    @abstractmethod
    async def release(self, operation: str, trial: bool, config: CircuitBreakerConfig) -> CircuitSnapshot:
        pass

    @abstractmethod
    async def get(self, operation: str) -> CircuitSnapshot:
        pass

    @abstractmethod
    async def reset(self, operation: str) -> None:
        pass

    @abstractmethod
    async def operations(self) -> List[str]:
        """Names of operations with stored state."""

    @property
    def backend_name(self) -> str:
        return "unknown"


class InMemoryCircuitBackend(CircuitBackend):
    """Process-local breaker state.

    Transitions contain no await, so each one is atomic within the event
    loop. State is not shared across instances.
    """

    def __init__(self) -> None:
        self._states: Dict[str, CircuitSnapshot] = {}

    @property
    def backend_name(self) -> str:
        return "memory"

    def _load(self, operation: str) -> CircuitSnapshot:
        return self._states.get(operation, CircuitSnapshot())

    async def acquire(self, operation: str, now: int, config: CircuitBreakerConfig) -> AcquireResult:
        result = transitions.acquire(self._load(operation), now, config)
        if result.allowed:
            self._states[operation] = result.snapshot
        return result

    async def record_success(self, operation: str, trial: bool, config: CircuitBreakerConfig) -> CircuitSnapshot:
        snapshot = transitions.record_success(self._load(operation), trial, config)
        self._states[operation] = snapshot
        return snapshot

    async def record_failure(
        self, operation: str, trial: bool, now: int, config: CircuitBreakerConfig
    ) -> CircuitSnapshot:
        snapshot = transitions.record_failure(self._load(operation), trial, now, config)
        self._states[operation] = snapshot
        return snapshot

    async def release(self, operation: str, trial: bool, config: CircuitBreakerConfig) -> CircuitSnapshot:
        snapshot = transitions.release(self._load(operation), trial)
        self._states[operation] = snapshot
        return snapshot

    async def get(self, operation: str) -> CircuitSnapshot:
        return self._load(operation)

    async def reset(self, operation: str) -> None:
        self._states.pop(operation, None)

    async def operations(self) -> List[str]:
        return list(self._states)


def _text(value: Any) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


def _parse_snapshot(values: Sequence[Any]) -> CircuitSnapshot:
    return CircuitSnapshot(
        state=CircuitState(_text(values[0])),
        failure_count=int(values[1]),
        success_count=int(values[2]),
        last_failure_time=int(values[3]),
        half_open_in_flight=int(values[4]),
    )


class RedisCircuitBackend(CircuitBackend):
    """Breaker state shared through Redis.

    Redis key format:
    - circuit-breaker:{operation} - hash holding the breaker state
    """

    KEY_PREFIX = "circuit-breaker:"

    def __init__(self, connection: RedisConnection) -> None:
        self._connection = connection

    @property
    def backend_name(self) -> str:
        return "redis"

    def _client(self) -> Any:
        client = self._connection.get_client()
        if client is None:
            raise RedisUnavailableError("Redis is disabled or temporarily unavailable")
        return client

    def _key(self, operation: str) -> str:
        return self.KEY_PREFIX + operation

    async def acquire(self, operation: str, now: int, config: CircuitBreakerConfig) -> AcquireResult:
        result = await self._client().eval(
            ACQUIRE_SCRIPT,
            1,
            self._key(operation),
            now,
            config.reset_timeout_ms,
            config.half_open_attempts,
            config.state_ttl_seconds,
        )
        retry_after = int(result[2])
        return AcquireResult(
            allowed=bool(int(result[0])),
            trial=bool(int(result[1])),
            snapshot=_parse_snapshot(result[3:]),
            retry_after_ms=retry_after if retry_after >= 0 else None,
        )

    async def record_success(self, operation: str, trial: bool, config: CircuitBreakerConfig) -> CircuitSnapshot:
        result = await self._client().eval(
            RECORD_SUCCESS_SCRIPT,
            1,
            self._key(operation),
            int(trial),
            config.half_open_attempts,
            config.state_ttl_seconds,
        )
        return _parse_snapshot(result)

    async def record_failure(
        self, operation: str, trial: bool, now: int, config: CircuitBreakerConfig
    ) -> CircuitSnapshot:
        result = await self._client().eval(
            RECORD_FAILURE_SCRIPT,
            1,
            self._key(operation),
            int(trial),
            now,
            config.failure_threshold,
            config.state_ttl_seconds,
        )
        return _parse_snapshot(result)

    async def release(self, operation: str, trial: bool, config: CircuitBreakerConfig) -> CircuitSnapshot:
        result = await self._client().eval(
            RELEASE_SCRIPT,
            1,
            self._key(operation),
            int(trial),
            config.state_ttl_seconds,
        )
        return _parse_snapshot(result)

    async def get(self, operation: str) -> CircuitSnapshot:
        raw = await self._client().hgetall(self._key(operation))
        if not raw:
            return CircuitSnapshot()
        data = {_text(k): v for k, v in raw.items()}
        return _parse_snapshot([
            data.get("state", b"CLOSED"),
            data.get("failures", 0),
            data.get("successes", 0),
            data.get("last_failure", 0),
            data.get("in_flight", 0),
        ])

    async def reset(self, operation: str) -> None:
        await self._client().delete(self._key(operation))

    async def operations(self) -> List[str]:
        names = []
        async for key in self._client().scan_iter(match=self.KEY_PREFIX + "*"):
            names.append(_text(key)[len(self.KEY_PREFIX):])
        return names


class ResilientCircuitBackend(CircuitBackend):
    """Prefers shared Redis state and degrades to process-local state.

    While Redis is unavailable each instance trips its own breaker; that
    state is not reconciled with Redis when it comes back.
    """

    def __init__(
        self,
        connection: RedisConnection,
        redis_backend: Optional[RedisCircuitBackend] = None,
        memory_backend: Optional[InMemoryCircuitBackend] = None,
    ) -> None:
        self._connection = connection
        self._redis = redis_backend or RedisCircuitBackend(connection)
        self._memory = memory_backend or InMemoryCircuitBackend()

    @property
    def backend_name(self) -> str:
        return "redis" if self._connection.stats()["available"] else "memory"

    async def _run(self, method: str, operation: str, *args: Any) -> Any:
        if self._connection.get_client() is not None:
            try:
                return await getattr(self._redis, method)(operation, *args)
            except Exception as e:
                self._connection.record_error(e)
                logger.warning(
                    f"Redis circuit {method} failed: {e}. Using in-process breaker state.",
                    extra={"operation": operation},
                )
        return await getattr(self._memory, method)(operation, *args)

    async def acquire(self, operation: str, now: int, config: CircuitBreakerConfig) -> AcquireResult:
        return await self._run("acquire", operation, now, config)

    async def record_success(self, operation: str, trial: bool, config: CircuitBreakerConfig) -> CircuitSnapshot:
        return await self._run("record_success", operation, trial, config)

    async def record_failure(
        self, operation: str, trial: bool, now: int, config: CircuitBreakerConfig
    ) -> CircuitSnapshot:
        return await self._run("record_failure", operation, trial, now, config)

    async def release(self, operation: str, trial: bool, config: CircuitBreakerConfig) -> CircuitSnapshot:
        return await self._run("release", operation, trial, config)

    async def get(self, operation: str) -> CircuitSnapshot:
        return await self._run("get", operation)

    async def reset(self, operation: str) -> None:
        # Clear both so a breaker tripped during an outage does not linger.
        await self._memory.reset(operation)
        await self._run("reset", operation)

    async def operations(self) -> List[str]:
        names = set(await self._memory.operations())
        if self._connection.get_client() is not None:
            try:
                names.update(await self._redis.operations())
            except Exception as e:
                self._connection.record_error(e)
                logger.warning(f"Redis circuit scan failed: {e}")
        return sorted(names)


def create_circuit_backend(connection: Optional[RedisConnection] = None) -> CircuitBackend:
    """Build the breaker backend for the configured deployment."""
    connection = connection or RedisConnection()
    if connection.enabled:
        return ResilientCircuitBackend(connection)
    return InMemoryCircuitBackend()
