"""Tests for the counter stores and the Redis connection error budget."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from captiongate.app.core.counter_store import (
    InMemoryCounterStore,
    RedisCounterStore,
    RedisUnavailableError,
    ResilientCounterStore,
    create_counter_store,
)
from captiongate.app.core.redis import RedisConnection


class TestInMemoryCounterStore:
    """Test the process-local counter store."""

    @pytest.mark.asyncio
    async def test_increment_creates_window(self, clock):
        store = InMemoryCounterStore(clock=clock)

        first = await store.increment("k", 1000)
        clock.advance(10)
        second = await store.increment("k", 1000)

        assert first.count == 1
        assert second.count == 2
        assert first.window_start_ms == second.window_start_ms == clock.now - 10

    @pytest.mark.asyncio
    async def test_counter_expires_after_window(self, clock):
        store = InMemoryCounterStore(clock=clock)
        await store.increment("k", 1000)
        await store.increment("k", 1000)

        clock.advance(1000)
        window = await store.increment("k", 1000)

        assert window.count == 1
        assert window.window_start_ms == clock.now

    @pytest.mark.asyncio
    async def test_get_set_delete(self, clock):
        store = InMemoryCounterStore(clock=clock)

        await store.set("plan", "pro", 500)
        assert await store.get("plan") == "pro"

        clock.advance(500)
        assert await store.get("plan") is None

        await store.set("plan", "user", 500)
        await store.delete("plan")
        assert await store.get("plan") is None

    @pytest.mark.asyncio
    async def test_get_returns_counter_value(self, clock):
        store = InMemoryCounterStore(clock=clock)
        await store.increment("k", 1000)
        await store.increment("k", 1000)
        assert await store.get("k") == "2"

    @pytest.mark.asyncio
    async def test_eviction_keeps_size_bounded(self, clock):
        store = InMemoryCounterStore(max_entries=10, clock=clock)
        for i in range(25):
            await store.increment(f"k{i}", 60_000)

        assert len(store._data) <= 10
        # Most recent keys survive
        assert await store.get("k24") == "1"
        assert await store.get("k0") is None

    @pytest.mark.asyncio
    async def test_concurrent_increments_are_not_lost(self, clock):
        store = InMemoryCounterStore(clock=clock)
        results = await asyncio.gather(*[store.increment("k", 60_000) for _ in range(50)])

        assert sorted(w.count for w in results) == list(range(1, 51))

    @pytest.mark.asyncio
    async def test_cleanup_expired(self, clock):
        store = InMemoryCounterStore(clock=clock)
        await store.increment("short", 100)
        await store.increment("long", 10_000)

        clock.advance(100)
        assert await store.cleanup_expired() == 1
        assert await store.get("long") == "1"


class TestRedisCounterStore:
    """Test the Redis counter store against the simulated client."""

    @pytest.mark.asyncio
    async def test_increment_uses_one_script_call(self, redis_connection, mock_redis, clock):
        store = RedisCounterStore(redis_connection, clock=clock)

        first = await store.increment("ratelimit:a", 60_000)
        clock.advance(5)
        second = await store.increment("ratelimit:a", 60_000)

        assert (first.count, second.count) == (1, 2)
        assert first.window_start_ms == second.window_start_ms == clock.now - 5
        assert mock_redis.data["{ratelimit:a}:start"] == str(clock.now - 5)
        assert "{ratelimit:a}" in mock_redis.expires

    @pytest.mark.asyncio
    async def test_get_set_delete(self, redis_connection, mock_redis):
        store = RedisCounterStore(redis_connection)

        await store.set("quota:profile:u1", "pro", 60_000)
        assert await store.get("quota:profile:u1") == "pro"

        await store.increment("quota:x", 1000)
        await store.delete("quota:x")
        assert "{quota:x}" not in mock_redis.data
        assert "{quota:x}:start" not in mock_redis.data

    @pytest.mark.asyncio
    async def test_script_keys_share_hash_tag(self, redis_connection, mock_redis):
        mock_redis.eval = AsyncMock(return_value=[1, 0])
        store = RedisCounterStore(redis_connection)

        await store.increment("ratelimit:generate:ip:1.2.3.4", 60_000)

        _, num_keys, counter_key, start_key = mock_redis.eval.call_args.args[:4]
        assert num_keys == 2
        assert counter_key == "{ratelimit:generate:ip:1.2.3.4}"
        assert start_key == "{ratelimit:generate:ip:1.2.3.4}:start"

    @pytest.mark.asyncio
    async def test_delete_keys_share_hash_tag(self, redis_connection, mock_redis):
        mock_redis.delete = AsyncMock(return_value=2)
        store = RedisCounterStore(redis_connection)

        await store.delete("quota:user:user:u1:2026-01-31")

        mock_redis.delete.assert_awaited_once_with(
            "{quota:user:user:u1:2026-01-31}", "{quota:user:user:u1:2026-01-31}:start"
        )

    @pytest.mark.asyncio
    async def test_raises_when_redis_disabled(self):
        store = RedisCounterStore(RedisConnection(enabled=False))
        with pytest.raises(RedisUnavailableError):
            await store.increment("k", 1000)


class TestResilientCounterStore:
    """Test fallback from Redis to the in-process store."""

    @pytest.mark.asyncio
    async def test_uses_redis_when_healthy(self, redis_connection, mock_redis):
        store = ResilientCounterStore(redis_connection)

        window = await store.increment("k", 60_000)

        assert window.count == 1
        assert mock_redis.data["{k}"] == "1"
        assert store.backend_name == "redis"

    @pytest.mark.asyncio
    async def test_falls_back_to_memory_on_redis_error(self, mock_redis):
        mock_redis.eval = AsyncMock(side_effect=ConnectionError("Redis down"))
        connection = RedisConnection(redis_client=mock_redis)
        store = ResilientCounterStore(connection)

        first = await store.increment("k", 60_000)
        second = await store.increment("k", 60_000)

        assert (first.count, second.count) == (1, 2)
        assert connection.stats()["error_count"] == 2

    @pytest.mark.asyncio
    async def test_skips_redis_once_error_budget_is_spent(self, mock_redis, clock):
        mock_redis.eval = AsyncMock(side_effect=ConnectionError("Redis down"))
        monotonic = [0.0]
        connection = RedisConnection(
            redis_client=mock_redis, max_errors=3, error_reset_seconds=60, clock=lambda: monotonic[0]
        )
        store = ResilientCounterStore(connection)

        for _ in range(5):
            await store.increment("k", 60_000)

        assert mock_redis.eval.await_count == 3
        assert store.backend_name == "memory"

        # Redis is retried once the cool-down has passed
        monotonic[0] = 61.0
        await store.increment("k", 60_000)
        assert mock_redis.eval.await_count == 4

    @pytest.mark.asyncio
    async def test_get_falls_back_on_error(self, mock_redis):
        mock_redis.get = AsyncMock(side_effect=TimeoutError("slow"))
        store = ResilientCounterStore(RedisConnection(redis_client=mock_redis))

        assert await store.get("missing") is None


class TestRedisConnection:
    """Test the Redis error budget."""

    def test_disabled_connection_has_no_client(self):
        connection = RedisConnection(enabled=False)
        assert connection.get_client() is None
        assert connection.stats()["available"] is False

    def test_errors_spaced_apart_reset_the_budget(self, mock_redis):
        now = [0.0]
        connection = RedisConnection(
            redis_client=mock_redis, max_errors=2, error_reset_seconds=60, clock=lambda: now[0]
        )
        connection.record_error(RuntimeError("a"))
        now[0] = 70.0
        connection.record_error(RuntimeError("b"))

        assert connection.stats()["error_count"] == 1
        assert connection.get_client() is mock_redis

    @pytest.mark.asyncio
    async def test_ping(self, redis_connection):
        assert await redis_connection.ping() is True

    def test_create_counter_store_without_redis(self):
        store = create_counter_store(RedisConnection(enabled=False))
        assert isinstance(store, InMemoryCounterStore)

    def test_create_counter_store_with_redis(self, redis_connection):
        store = create_counter_store(redis_connection)
        assert isinstance(store, ResilientCounterStore)
