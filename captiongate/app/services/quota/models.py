"""Data models for daily quota accounting."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Plan(str, Enum):
    """Quota tier of a caller."""
    GUEST = "guest"
    USER = "user"
    PRO = "pro"


@dataclass(frozen=True)
class QuotaStatus:
    """Caller-visible quota snapshot.

    Attributes:
        plan: The caller's tier
        limit: Daily allowance, None when unlimited (pro)
        remaining: Units left today, None when unlimited
        is_pro: Whether the caller has the privileged tier
    """
    plan: Plan
    limit: Optional[int]
    remaining: Optional[int]
    is_pro: bool

    @classmethod
    def unlimited(cls) -> "QuotaStatus":
        return cls(plan=Plan.PRO, limit=None, remaining=None, is_pro=True)

    @classmethod
    def metered(cls, plan: Plan, limit: int, consumed: int) -> "QuotaStatus":
        return cls(plan=plan, limit=limit, remaining=max(limit - consumed, 0), is_pro=False)

    @property
    def exhausted(self) -> bool:
        return self.remaining is not None and self.remaining <= 0

    def to_dict(self) -> dict:
        return {
            "plan": self.plan.value,
            "limit": self.limit,
            "remaining": self.remaining,
            "isPro": self.is_pro,
        }


@dataclass(frozen=True)
class QuotaDecision:
    """Outcome of an attempt to consume one unit of quota."""
    allowed: bool
    status: QuotaStatus
