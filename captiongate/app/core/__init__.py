"""Core utilities for the captiongate application."""

from captiongate.app.core.config import settings
from captiongate.app.core.counter_store import (
    CounterStore,
    CounterWindow,
    InMemoryCounterStore,
    RedisCounterStore,
    ResilientCounterStore,
    create_counter_store,
)
from captiongate.app.core.logging import get_logger, setup_logging
from captiongate.app.core.redis import RedisConnection

__all__ = [
    "CounterStore",
    "CounterWindow",
    "InMemoryCounterStore",
    "RedisCounterStore",
    "ResilientCounterStore",
    "create_counter_store",
    "settings",
    "get_logger",
    "setup_logging",
    "RedisConnection",
]
