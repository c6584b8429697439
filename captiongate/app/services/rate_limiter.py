"""Fixed-window rate limiting keyed by caller identity and route purpose.

Each call atomically increments one counter in the counter store; the window
starts with the first request and ends ``window_ms`` later. A fixed window
keeps O(1) state per key at the cost of boundary bursts: up to twice the
limit can be admitted across a window edge. That is fine for abuse
prevention and is not a billing guarantee.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from captiongate.app.core.config import RatePolicy, settings
from captiongate.app.core.counter_store import CounterStore
from captiongate.app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check.

    ``reset_at`` is the end of the current window in epoch milliseconds.
    """
    allowed: bool
    limit: int
    remaining: int
    reset_at: int

    def retry_after_seconds(self, now_ms: int) -> int:
        return max(1, -(-(self.reset_at - now_ms) // 1000))


class RateLimiter:
    """Fixed-window limiter over a shared counter store.

    Callers must invoke :meth:`check_rate_limit` exactly once per logical
    request; the call is not idempotent.
    """

    KEY_PREFIX = "ratelimit"

    def __init__(self, store: CounterStore) -> None:
        self._store = store

    def _make_key(self, identifier: str) -> str:
        return f"{self.KEY_PREFIX}:{identifier}"

    async def check_rate_limit(self, identifier: str, limit: int, window_ms: int) -> RateLimitResult:
        """Count one request for ``identifier`` and decide whether it may pass.

        Args:
            identifier: Route-namespaced caller key, e.g. ``generate:ip:1.2.3.4``
            limit: Requests allowed per window
            window_ms: Window length in milliseconds

        Returns:
            RateLimitResult with allowed status and header metadata
        """
        if limit < 1 or window_ms < 1:
            raise ValueError("limit and window_ms must be positive")

        window = await self._store.increment(self._make_key(identifier), window_ms)
        allowed = window.count <= limit
        result = RateLimitResult(
            allowed=allowed,
            limit=limit,
            remaining=max(limit - window.count, 0),
            reset_at=window.window_start_ms + window_ms,
        )
        if not allowed:
            logger.info(
                f"Rate limit exceeded for {identifier} ({window.count}/{limit})",
                extra={"route": identifier.split(":", 1)[0]},
            )
        return result

    async def check_route(
        self, purpose: str, identity_key: str, policy: Optional[RatePolicy] = None
    ) -> RateLimitResult:
        """Apply the configured policy for a route purpose (``generate``, ``quota``...)."""
        policy = policy or settings.rate_policy(purpose)
        return await self.check_rate_limit(f"{purpose}:{identity_key}", policy.limit, policy.window_ms)


def create_rate_limit_headers(result: RateLimitResult) -> Dict[str, str]:
    """Render a rate limit result as response headers."""
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset_at),
    }
