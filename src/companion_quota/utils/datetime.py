"""Date-time helpers for reset window calculations."""

import math
from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime (storage convention)."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise aware timestamps to naive UTC; naive values are assumed UTC."""

    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def hours_until(target: Optional[datetime], now: datetime) -> Optional[int]:
    """Whole hours (rounded up) until ``target``; ``None`` when absent or past."""

    if target is None:
        return None
    remaining = target - now
    if remaining <= timedelta(0):
        return None
    return math.ceil(remaining / timedelta(hours=1))
