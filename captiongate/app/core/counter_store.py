"""Counter store abstraction used for rate windows, quota buckets and caches.

Provides a Redis implementation (atomic across processes), an in-process
implementation and a resilient wrapper that degrades from the former to the
latter.

The in-process store is NOT authoritative across instances: when Redis is
unreachable every instance counts on its own, so a caller spread across N
instances may be admitted up to N times the configured limit until Redis
returns.
"""

import asyncio
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

from captiongate.app.core.config import settings
from captiongate.app.core.logging import get_logger
from captiongate.app.core.redis import RedisConnection
from captiongate.app.core.utils import now_ms

logger = get_logger(__name__)

# KEYS[1] counter, KEYS[2] window start; ARGV[1] window ms, ARGV[2] now ms.
# Both keys carry the same hash tag so Redis Cluster maps them to one slot.
# INCR and the expiry happen in one script so a crash between them cannot
# leave a counter without a TTL.
INCREMENT_SCRIPT = """
    local count = redis.call('INCR', KEYS[1])
    if count == 1 or redis.call('PTTL', KEYS[1]) < 0 then
        redis.call('PEXPIRE', KEYS[1], ARGV[1])
    end
    local start = redis.call('GET', KEYS[2])
    if count == 1 or not start then
        start = ARGV[2]
        redis.call('SET', KEYS[2], start, 'PX', ARGV[1])
    end
    return {count, tonumber(start)}
"""


class RedisUnavailableError(RuntimeError):
    """Raised when the Redis store is used while Redis is disabled or over its error budget."""


@dataclass(frozen=True)
class CounterWindow:
    """Result of an atomic increment."""

    count: int
    window_start_ms: int


@dataclass
class _CounterEntry:
    """Internal entry with TTL tracking."""

    value: str
    window_start_ms: int
    expires_at_ms: Optional[int] = None

    def is_expired(self, now: int) -> bool:
        if self.expires_at_ms is None:
            return False
        return now >= self.expires_at_ms


class CounterStore(ABC):
    """Abstract base class for counter stores."""

    @abstractmethod
    async def increment(self, key: str, window_ms: int) -> CounterWindow:
        """Atomically increment ``key``.

        Creates the counter with TTL ``window_ms`` when absent.

        Args:
            key: The counter key.
            window_ms: Lifetime of a newly created counter in milliseconds.

        Returns:
            Post-increment count and the start of the counter's window.
        """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Retrieve a value, or None if absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: str, ttl_ms: int) -> None:
        """Store a value with a time-to-live in milliseconds."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a value."""

    @property
    def backend_name(self) -> str:
        return "unknown"


class InMemoryCounterStore(CounterStore):
    """Process-local counter store.

    Used when Redis is not configured or unreachable, and in tests. Entries
    expire lazily on access; the map is bounded and evicts the least
    recently touched entries first.
    """

    DEFAULT_MAX_ENTRIES = 10000

    def __init__(
        self,
        max_entries: Optional[int] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._data: OrderedDict[str, _CounterEntry] = OrderedDict()
        self._max_entries = max_entries or self.DEFAULT_MAX_ENTRIES
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def backend_name(self) -> str:
        return "memory"

    def _live_entry(self, key: str, now: int) -> Optional[_CounterEntry]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.is_expired(now):
            del self._data[key]
            return None
        self._data.move_to_end(key)
        return entry

    def _enforce_limit(self) -> None:
        if len(self._data) > self._max_entries:
            # Remove oldest 20% of entries
            remove_count = max(1, int(self._max_entries * 0.2))
            for _ in range(min(remove_count, len(self._data))):
                self._data.popitem(last=False)

    async def increment(self, key: str, window_ms: int) -> CounterWindow:
        async with self._lock:
            now = self._clock()
            entry = self._live_entry(key, now)
            if entry is None:
                entry = _CounterEntry(value="0", window_start_ms=now, expires_at_ms=now + window_ms)
                self._data[key] = entry
                self._enforce_limit()
            count = int(entry.value) + 1
            entry.value = str(count)
            return CounterWindow(count=count, window_start_ms=entry.window_start_ms)

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            entry = self._live_entry(key, self._clock())
            return entry.value if entry is not None else None

    async def set(self, key: str, value: str, ttl_ms: int) -> None:
        async with self._lock:
            now = self._clock()
            expires_at = now + ttl_ms if ttl_ms > 0 else None
            self._data[key] = _CounterEntry(value=str(value), window_start_ms=now, expires_at_ms=expires_at)
            self._data.move_to_end(key)
            self._enforce_limit()

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def cleanup_expired(self) -> int:
        """Remove all expired entries.

        Returns:
            Number of entries removed.
        """
        async with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._data.items() if entry.is_expired(now)]
            for key in expired:
                del self._data[key]
            return len(expired)


class RedisCounterStore(CounterStore):
    """Redis-backed counter store shared by every server instance."""

    WINDOW_START_SUFFIX = ":start"

    def __init__(self, connection: RedisConnection, clock: Callable[[], int] = now_ms) -> None:
        self._connection = connection
        self._clock = clock

    @property
    def backend_name(self) -> str:
        return "redis"

    def _client(self) -> Any:
        client = self._connection.get_client()
        if client is None:
            raise RedisUnavailableError("Redis is disabled or temporarily unavailable")
        return client

    @staticmethod
    def redis_key(key: str) -> str:
        """Wrap a logical key in a hash tag; every key derived from it shares the slot."""
        return "{" + key + "}"

    async def increment(self, key: str, window_ms: int) -> CounterWindow:
        client = self._client()
        result = await client.eval(
            INCREMENT_SCRIPT,
            2,
            self.redis_key(key),  # KEYS[1]
            self.redis_key(key) + self.WINDOW_START_SUFFIX,  # KEYS[2]
            int(window_ms),  # ARGV[1]
            self._clock(),  # ARGV[2]
        )
        return CounterWindow(count=int(result[0]), window_start_ms=int(result[1]))

    async def get(self, key: str) -> Optional[str]:
        value = await self._client().get(self.redis_key(key))
        if value is None:
            return None
        return value.decode() if isinstance(value, bytes) else str(value)

    async def set(self, key: str, value: str, ttl_ms: int) -> None:
        client = self._client()
        if ttl_ms > 0:
            await client.set(self.redis_key(key), value, px=int(ttl_ms))
        else:
            await client.set(self.redis_key(key), value)

    async def delete(self, key: str) -> None:
        tagged = self.redis_key(key)
        await self._client().delete(tagged, tagged + self.WINDOW_START_SUFFIX)


class ResilientCounterStore(CounterStore):
    """Counter store that prefers Redis and degrades to process memory.

    Redis failures are logged and counted against the connection's error
    budget; the operation is then served from the in-process store. A
    Redis outage therefore never fails a request, at the cost of
    per-instance (non-authoritative) counting while it lasts.
    """

    def __init__(
        self,
        connection: RedisConnection,
        redis_store: Optional[RedisCounterStore] = None,
        memory_store: Optional[InMemoryCounterStore] = None,
    ) -> None:
        self._connection = connection
        self._redis_store = redis_store or RedisCounterStore(connection)
        self._memory_store = memory_store or InMemoryCounterStore(
            max_entries=settings.counter_store_max_entries
        )

    @property
    def backend_name(self) -> str:
        if self._connection.enabled and self._connection.stats()["available"]:
            return "redis"
        return "memory"

    @property
    def memory_store(self) -> InMemoryCounterStore:
        return self._memory_store

    async def _run(self, operation: str, key: str, *args: Any) -> Any:
        if self._connection.get_client() is not None:
            try:
                return await getattr(self._redis_store, operation)(key, *args)
            except Exception as e:
                self._connection.record_error(e)
                logger.warning(
                    f"Redis {operation} failed for {key}: {e}. Using in-process store."
                )
        return await getattr(self._memory_store, operation)(key, *args)

    async def increment(self, key: str, window_ms: int) -> CounterWindow:
        return await self._run("increment", key, window_ms)

    async def get(self, key: str) -> Optional[str]:
        return await self._run("get", key)

    async def set(self, key: str, value: str, ttl_ms: int) -> None:
        await self._run("set", key, value, ttl_ms)

    async def delete(self, key: str) -> None:
        await self._run("delete", key)


def create_counter_store(connection: Optional[RedisConnection] = None) -> CounterStore:
    """Build the counter store for the configured deployment.

    Returns a :class:`ResilientCounterStore` when Redis is enabled, otherwise
    a plain :class:`InMemoryCounterStore`.
    """
    connection = connection or RedisConnection()
    if connection.enabled:
        logger.info("Using Redis counter store with in-process fallback")
        return ResilientCounterStore(connection)
    logger.info("Redis disabled; using in-process counter store (not shared across instances)")
    return InMemoryCounterStore(max_entries=settings.counter_store_max_entries)
