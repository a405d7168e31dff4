"""Epoch-millisecond helpers. Every expiry in the core is a UTC epoch millis integer."""

import time
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional

from ..constants import MILLIS_PER_SECOND

Clock = Callable[[], int]


def now_ms() -> int:
    """Current UTC time as epoch milliseconds."""
    return time.time_ns() // 1_000_000


def expires_at_from(expires_in: int, now: int) -> int:
    """Absolute expiry for a relative lifetime in seconds."""
    return now + int(expires_in) * MILLIS_PER_SECOND


def remaining_ms(expires_at: Optional[int], now: int) -> Optional[int]:
    """Milliseconds left until expires_at, negative once passed, None when unknown."""
    if expires_at is None:
        return None
    return expires_at - now


def to_utc(value: datetime) -> datetime:
    """Treat naive datetimes (SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_today(now: int) -> date:
    return datetime.fromtimestamp(now / MILLIS_PER_SECOND, tz=timezone.utc).date()


def add_days(day: date, days: int) -> date:
    return day + timedelta(days=days)
