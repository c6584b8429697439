"""Daily generation quota accounting.

Consumption is counted per caller in a bucket keyed by plan, identity and
UTC date, so a new day starts with an empty bucket without any scheduled
reset. Buckets expire at the next UTC midnight.

Consumption is monotonic: a consume that lands past the limit is still
counted and is not refunded. The orchestrator reads the status before
consuming, so such over-limit increments only happen when requests from the
same caller race.
"""

from typing import Callable, Optional

from captiongate.app.core.config import settings
from captiongate.app.core.counter_store import CounterStore
from captiongate.app.core.logging import get_logger
from captiongate.app.core.utils import ms_until_next_utc_midnight, now_ms, utc_day_key
from captiongate.app.services.identity import CallerIdentity, UserIdentity

from .models import Plan, QuotaDecision, QuotaStatus
from .profiles import ProfileDirectory, StaticProfileDirectory

logger = get_logger(__name__)


def make_bucket_key(plan: Plan, identity: CallerIdentity, day: str) -> str:
    """Build the counter key of a caller's daily bucket.

    A guest at 1.2.3.4 on 2026-01-31 maps to
    ``quota:guest:ip:1.2.3.4:2026-01-31``.
    """
    return f"quota:{plan.value}:{identity.key}:{day}"


class QuotaAccountant:
    """Tiered daily quota over a shared counter store.

    Guests (IP or unknown callers) and users have daily limits; pro users
    are unlimited and never touch the counters.
    """

    PROFILE_CACHE_PREFIX = "quota:profile"

    def __init__(
        self,
        store: CounterStore,
        profiles: Optional[ProfileDirectory] = None,
        guest_limit: Optional[int] = None,
        user_limit: Optional[int] = None,
        profile_cache_ttl_seconds: Optional[int] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._store = store
        self._profiles = profiles or StaticProfileDirectory()
        self._limits = {
            Plan.GUEST: guest_limit if guest_limit is not None else settings.quota_guest_daily_limit,
            Plan.USER: user_limit if user_limit is not None else settings.quota_user_daily_limit,
        }
        self._profile_cache_ttl_ms = 1000 * (
            profile_cache_ttl_seconds if profile_cache_ttl_seconds is not None
            else settings.profile_cache_ttl_seconds
        )
        self._clock = clock

    def limit_for(self, plan: Plan) -> Optional[int]:
        """Daily limit of a plan; None means unlimited."""
        return self._limits.get(plan)

    async def resolve_plan(self, identity: CallerIdentity) -> Plan:
        """Look up the caller's plan, caching profile answers briefly."""
        if not isinstance(identity, UserIdentity):
            return Plan.GUEST

        cache_key = f"{self.PROFILE_CACHE_PREFIX}:{identity.id}"
        cached = await self._store.get(cache_key)
        if cached is not None:
            try:
                return Plan(cached)
            except ValueError:
                logger.warning(f"Ignoring malformed cached plan {cached!r} for {identity.key}")

        plan = await self._profiles.get_plan(identity.id)
        if plan == Plan.GUEST:
            # Authenticated callers are never guests.
            plan = Plan.USER
        await self._store.set(cache_key, plan.value, self._profile_cache_ttl_ms)
        return plan

    def _bucket_key(self, plan: Plan, identity: CallerIdentity) -> str:
        return make_bucket_key(plan, identity, utc_day_key(self._clock()))

    async def get_quota_status(self, identity: CallerIdentity) -> QuotaStatus:
        """Read the caller's quota without consuming anything."""
        plan = await self.resolve_plan(identity)
        limit = self.limit_for(plan)
        if limit is None:
            return QuotaStatus.unlimited()

        raw = await self._store.get(self._bucket_key(plan, identity))
        consumed = int(raw) if raw is not None else 0
        return QuotaStatus.metered(plan, limit, consumed)

    async def consume_quota(self, identity: CallerIdentity) -> QuotaDecision:
        """Atomically reserve one unit of today's quota.

        Returns:
            QuotaDecision; ``allowed`` is False once the post-increment count
            exceeds the limit. Callers must check it before proceeding.
        """
        plan = await self.resolve_plan(identity)
        limit = self.limit_for(plan)
        if limit is None:
            return QuotaDecision(allowed=True, status=QuotaStatus.unlimited())

        now = self._clock()
        key = make_bucket_key(plan, identity, utc_day_key(now))
        window = await self._store.increment(key, ms_until_next_utc_midnight(now))
        status = QuotaStatus.metered(plan, limit, window.count)
        allowed = window.count <= limit
        if not allowed:
            logger.info(
                f"Daily quota exhausted ({window.count}/{limit})",
                extra={"identity": identity.key, "plan": plan.value},
            )
        return QuotaDecision(allowed=allowed, status=status)
