"""Shared Redis connection with an error budget.

The connection is built lazily and is skipped for a cool-down period after
repeated failures so that a flapping Redis does not add a network timeout to
every request.
"""

import time
from typing import Any, Callable, Dict, Optional

from captiongate.app.core.config import settings
from captiongate.app.core.logging import get_logger

logger = get_logger(__name__)


class RedisConnection:
    """Lazily created ``redis.asyncio`` client guarded by an error budget.

    After ``max_errors`` failures, each less than ``error_reset_seconds``
    apart, :meth:`get_client` returns ``None`` until ``error_reset_seconds``
    have passed since the last error.

    Usage:
        connection = RedisConnection(redis_url="redis://localhost:6379/0")
        client = connection.get_client()
        if client is not None:
            try:
                await client.get("key")
            except Exception as e:
                connection.record_error(e)
    """

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: Optional[str] = None,
        enabled: Optional[bool] = None,
        max_errors: Optional[int] = None,
        error_reset_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._redis = redis_client
        self._redis_url = redis_url or settings.redis_url
        # An injected client implies Redis is wanted.
        if enabled is None:
            enabled = redis_client is not None or settings.redis_enabled
        self._enabled = enabled
        self._max_errors = max_errors or settings.redis_max_errors
        self._error_reset_seconds = (
            error_reset_seconds if error_reset_seconds is not None
            else settings.redis_error_reset_seconds
        )
        self._clock = clock
        self._error_count = 0
        self._last_error_time: Optional[float] = None

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _within_budget(self) -> bool:
        if self._last_error_time is None:
            return True
        elapsed = self._clock() - self._last_error_time
        if elapsed >= self._error_reset_seconds:
            self._error_count = 0
            return True
        return self._error_count < self._max_errors

    def get_client(self) -> Optional[Any]:
        """Return the Redis client, or None when disabled or over budget."""
        if not self._enabled:
            return None
        if not self._within_budget():
            return None
        if self._redis is None:
            try:
                import redis.asyncio as aioredis
                self._redis = aioredis.from_url(self._redis_url)
            except Exception as e:
                self.record_error(e)
                return None
        return self._redis

    def record_error(self, error: BaseException) -> None:
        """Count a Redis failure against the error budget."""
        now = self._clock()
        if self._last_error_time is not None and now - self._last_error_time >= self._error_reset_seconds:
            self._error_count = 0
        self._error_count += 1
        self._last_error_time = now
        if self._error_count == self._max_errors:
            logger.warning(
                f"Redis failed {self._error_count} times; using in-process state "
                f"for {self._error_reset_seconds}s"
            )
        else:
            logger.warning(f"Redis error: {type(error).__name__}: {error}")

    def stats(self) -> Dict[str, Any]:
        """Report connection state for health checks."""
        return {
            "enabled": self._enabled,
            "available": self._enabled and self._within_budget(),
            "error_count": self._error_count,
            "last_error_time": self._last_error_time,
        }

    async def ping(self) -> bool:
        client = self.get_client()
        if client is None:
            return False
        try:
            return bool(await client.ping())
        except Exception as e:
            self.record_error(e)
            return False

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._redis is not None:
            try:
                await self._redis.aclose()
            except Exception as e:
                logger.warning(f"Error closing Redis connection: {e}")
            self._redis = None
