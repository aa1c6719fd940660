from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def ensure_utc(moment: Optional[datetime]) -> datetime:
    """Interpret naive datetimes as UTC and convert aware ones; None means now."""
    if moment is None:
        return utcnow()
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def days_between(earlier: datetime, later: datetime) -> float:
    """Elapsed days from `earlier` to `later`, never negative."""
    delta = ensure_utc(later) - ensure_utc(earlier)
    return max(0.0, delta.total_seconds() / 86400.0)
