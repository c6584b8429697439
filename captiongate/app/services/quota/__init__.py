"""Tiered daily quota accounting.

Buckets are keyed by plan, caller and UTC date and live in the shared
counter store.
"""

from .models import Plan, QuotaDecision, QuotaStatus
from .profiles import ProfileDirectory, StaticProfileDirectory
from .service import QuotaAccountant, make_bucket_key

__all__ = [
    "Plan",
    "QuotaDecision",
    "QuotaStatus",
    "ProfileDirectory",
    "StaticProfileDirectory",
    "QuotaAccountant",
    "make_bucket_key",
]
