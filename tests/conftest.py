"""Shared fixtures.

Redis is simulated by a MagicMock whose ``eval`` reproduces the Lua scripts
in Python, so the Redis-backed stores can be tested without a server.
"""

import fnmatch
import time
from unittest.mock import MagicMock

import pytest

from captiongate.app.core.counter_store import INCREMENT_SCRIPT
from captiongate.app.core.redis import RedisConnection
from captiongate.app.services.circuit_breaker import transitions
from captiongate.app.services.circuit_breaker.models import (
    CircuitBreakerConfig,
    CircuitSnapshot,
    CircuitState,
)
from captiongate.app.services.circuit_breaker.redis_lua import (
    ACQUIRE_SCRIPT,
    RECORD_FAILURE_SCRIPT,
    RECORD_SUCCESS_SCRIPT,
    RELEASE_SCRIPT,
)


class ManualClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start_ms: int = 1_767_225_600_000):  # 2026-01-01T00:00:00Z
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return ManualClock()


def _snapshot_from_hash(fields: dict) -> CircuitSnapshot:
    if not fields:
        return CircuitSnapshot()
    return CircuitSnapshot(
        state=CircuitState(fields["state"]),
        failure_count=int(fields["failures"]),
        success_count=int(fields["successes"]),
        last_failure_time=int(fields["last_failure"]),
        half_open_in_flight=int(fields["in_flight"]),
    )


def _hash_from_snapshot(snapshot: CircuitSnapshot) -> dict:
    return {
        "state": snapshot.state.value,
        "failures": str(snapshot.failure_count),
        "successes": str(snapshot.success_count),
        "last_failure": str(snapshot.last_failure_time),
        "in_flight": str(snapshot.half_open_in_flight),
    }


def _reply(snapshot: CircuitSnapshot) -> list:
    return [
        snapshot.state.value.encode(),
        snapshot.failure_count,
        snapshot.success_count,
        snapshot.last_failure_time,
        snapshot.half_open_in_flight,
    ]


def _make_mock_redis() -> MagicMock:
    redis = MagicMock()
    redis.data = {}
    redis.hashes = {}
    redis.expires = {}
    redis.clock = lambda: int(time.time() * 1000)

    def expired(key):
        deadline = redis.expires.get(key)
        if deadline is not None and deadline <= redis.clock():
            redis.data.pop(key, None)
            redis.hashes.pop(key, None)
            redis.expires.pop(key, None)
            return True
        return False

    async def mock_get(key):
        expired(key)
        value = redis.data.get(key)
        return value.encode() if value is not None else None

    async def mock_set(key, value, px=None):
        redis.data[key] = str(value)
        if px is not None:
            redis.expires[key] = redis.clock() + int(px)
        else:
            redis.expires.pop(key, None)
        return True

    async def mock_delete(*keys):
        removed = 0
        for key in keys:
            if redis.data.pop(key, None) is not None or redis.hashes.pop(key, None) is not None:
                removed += 1
            redis.expires.pop(key, None)
        return removed

    async def mock_hgetall(key):
        expired(key)
        return {k.encode(): v.encode() for k, v in redis.hashes.get(key, {}).items()}

    async def mock_scan_iter(match="*"):
        for key in list(redis.data) + list(redis.hashes):
            if fnmatch.fnmatchcase(key, match):
                yield key.encode()

    def run_increment(keys, args):
        counter_key, start_key = keys
        window_ms, now = int(args[0]), int(args[1])
        expired(counter_key)
        expired(start_key)
        count = int(redis.data.get(counter_key, "0")) + 1
        redis.data[counter_key] = str(count)
        if count == 1 or counter_key not in redis.expires:
            redis.expires[counter_key] = redis.clock() + window_ms
        start = redis.data.get(start_key)
        if count == 1 or start is None:
            start = str(now)
            redis.data[start_key] = start
            redis.expires[start_key] = redis.clock() + window_ms
        return [count, int(start)]

    def run_circuit(script, key, args):
        expired(key)
        snapshot = _snapshot_from_hash(redis.hashes.get(key, {}))

        if script is ACQUIRE_SCRIPT:
            now, reset_timeout, attempts, ttl = (int(a) for a in args)
            config = CircuitBreakerConfig(reset_timeout_ms=reset_timeout, half_open_attempts=attempts)
            result = transitions.acquire(snapshot, now, config)
            if result.allowed and result.snapshot != snapshot:
                save(key, result.snapshot, ttl)
            retry_after = result.retry_after_ms if result.retry_after_ms is not None else -1
            return [int(result.allowed), int(result.trial), retry_after] + _reply(result.snapshot)

        if script is RECORD_SUCCESS_SCRIPT:
            trial, attempts, ttl = (int(a) for a in args)
            config = CircuitBreakerConfig(half_open_attempts=attempts)
            updated = transitions.record_success(snapshot, bool(trial), config)
        elif script is RECORD_FAILURE_SCRIPT:
            trial, now, threshold, ttl = (int(a) for a in args)
            config = CircuitBreakerConfig(failure_threshold=threshold)
            updated = transitions.record_failure(snapshot, bool(trial), now, config)
        else:
            trial, ttl = (int(a) for a in args)
            updated = transitions.release(snapshot, bool(trial))
            if updated == snapshot:
                return _reply(snapshot)
        save(key, updated, ttl)
        return _reply(updated)

    def save(key, snapshot, ttl_seconds):
        redis.hashes[key] = _hash_from_snapshot(snapshot)
        redis.expires[key] = redis.clock() + ttl_seconds * 1000

    async def mock_eval(script, num_keys, *args):
        keys, argv = list(args[:num_keys]), list(args[num_keys:])
        if script is INCREMENT_SCRIPT:
            return run_increment(keys, argv)
        if script in (ACQUIRE_SCRIPT, RECORD_SUCCESS_SCRIPT, RECORD_FAILURE_SCRIPT, RELEASE_SCRIPT):
            return run_circuit(script, keys[0], argv)
        raise AssertionError("unexpected script")

    async def mock_ping():
        return True

    async def mock_aclose():
        return None

    redis.get = mock_get
    redis.set = mock_set
    redis.delete = mock_delete
    redis.hgetall = mock_hgetall
    redis.scan_iter = mock_scan_iter
    redis.eval = mock_eval
    redis.ping = mock_ping
    redis.aclose = mock_aclose
    return redis


@pytest.fixture
def mock_redis():
    """Create a mock Redis client for testing."""
    return _make_mock_redis()


@pytest.fixture
def redis_connection(mock_redis):
    return RedisConnection(redis_client=mock_redis)
