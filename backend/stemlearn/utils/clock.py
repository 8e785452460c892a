"""Time helpers.

SQLite hands datetimes back without tzinfo; everything stored by the
application is UTC, so naive values are interpreted as UTC before any
arithmetic or comparison.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def today_utc() -> date:
    return utcnow().date()


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def time_ago(then: datetime, now: Optional[datetime] = None) -> str:
    """Humanize the distance between `then` and `now` for activity feeds."""
    now = now or utcnow()
    seconds = (as_utc(now) - as_utc(then)).total_seconds()
    days = int(seconds // 86400)
    hours = int(seconds // 3600)
    if days > 0:
        return f"{days} day{'s' if days > 1 else ''} ago"
    if hours > 0:
        return f"{hours} hour{'s' if hours > 1 else ''} ago"
    return "Just now"
