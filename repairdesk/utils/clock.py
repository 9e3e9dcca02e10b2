from __future__ import annotations
from datetime import datetime, timezone, timedelta
from typing import Optional

# Smallest step used to keep last_updated strictly increasing
TICK = timedelta(microseconds=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def monotonic_after(previous: Optional[datetime], now: Optional[datetime] = None) -> datetime:
    """Return `now`, nudged forward if it does not sort strictly after `previous`."""
    now = ensure_utc(now) or utcnow()
    previous = ensure_utc(previous)
    if previous is not None and now <= previous:
        return previous + TICK
    return now


def isoformat(dt: Optional[datetime]) -> Optional[str]:
    dt = ensure_utc(dt)
    return dt.isoformat().replace('+00:00', 'Z') if dt else None
