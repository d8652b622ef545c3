"""
Date/time helpers — framework-agnostic.

Mongo hands datetimes back naive unless the client is created with
``tz_aware=True``; everything in this service compares aware UTC values, so
stored values go through ``as_utc`` before comparison.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return *value* as an aware UTC datetime.

    Naive datetimes (no ``tzinfo``) are assumed to be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def seconds_until(deadline: datetime, now: datetime) -> int:
    """Whole seconds from *now* to *deadline*, rounded up, never negative."""
    delta = (as_utc(deadline) - as_utc(now)).total_seconds()
    if delta <= 0:
        return 0
    whole = int(delta)
    return whole if whole == delta else whole + 1
