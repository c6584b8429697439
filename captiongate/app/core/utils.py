"""Time and text helpers shared by the admission components and routes."""

import re
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

DAY_MS = 86_400_000

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def utc_day_key(at_ms: Optional[int] = None) -> str:
    """Return the UTC calendar day (YYYY-MM-DD) containing ``at_ms``.

    Examples:
        >>> utc_day_key(0)
        '1970-01-01'
        >>> utc_day_key(DAY_MS - 1)
        '1970-01-01'
        >>> utc_day_key(DAY_MS)
        '1970-01-02'
    """
    if at_ms is None:
        at_ms = now_ms()
    return datetime.fromtimestamp(at_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d")


def ms_until_next_utc_midnight(at_ms: Optional[int] = None) -> int:
    """Milliseconds from ``at_ms`` to the next UTC midnight (at least 1)."""
    if at_ms is None:
        at_ms = now_ms()
    current = datetime.fromtimestamp(at_ms / 1000, tz=timezone.utc)
    midnight = datetime(current.year, current.month, current.day, tzinfo=timezone.utc) + timedelta(days=1)
    return max(1, int(midnight.timestamp() * 1000) - at_ms)


def clean_text(value: Optional[str], max_length: int) -> Optional[str]:
    """Strip control characters and surrounding space, then truncate.

    Empty results become None.

    Examples:
        >>> clean_text(" #Gym\\x00Life ", 5)
        '#GymL'
        >>> clean_text("\\x07", 10) is None
        True
    """
    if value is None:
        return None
    cleaned = _CONTROL_CHARS.sub("", value).strip()[:max_length]
    return cleaned or None
