"""Staleness policy for cached weather.

Cache entries never expire; whether one is stale is decided at read time
from its ``fetched_at``.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

# Data older than this is re-fetched
STALE_THRESHOLD = timedelta(seconds=600)

# Fraction of STALE_THRESHOLD after which a background refresh is scheduled
PREEMPTIVE_REFRESH_THRESHOLD = 0.8

# How often the dashboard updates itself when auto-update is on
AUTO_UPDATE_INTERVAL = timedelta(seconds=600)

# How often the auto-update loop checks for stale data
AUTO_REFRESH_CHECK_INTERVAL = timedelta(seconds=60)

def _now(now: Optional[datetime]) -> datetime:
    return now if now is not None else datetime.now(timezone.utc)


def _age(fetched_at: datetime, now: Optional[datetime]) -> timedelta:
    now = _now(now)
    # Stored timestamps are UTC; naive values on either side are taken as UTC
    if fetched_at.tzinfo is None:
        fetched_at = fetched_at.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now - fetched_at


def is_stale(fetched_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """Whether data fetched at ``fetched_at`` is older than STALE_THRESHOLD.

    Missing timestamps are always stale. Exactly 600 s old is not stale.
    """
    if fetched_at is None:
        return True
    return _age(fetched_at, now) > STALE_THRESHOLD


def should_refresh_preemptively(
    fetched_at: Optional[datetime], now: Optional[datetime] = None
) -> bool:
    """Whether data is old enough to refresh in the background while still shown."""
    if fetched_at is None:
        return True
    return _age(fetched_at, now) > STALE_THRESHOLD * PREEMPTIVE_REFRESH_THRESHOLD


def time_ago(fetched_at: datetime, now: Optional[datetime] = None) -> str:
    """Human-readable age of a fetch.

    Example:
        >>> t = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        >>> time_ago(t, t + timedelta(minutes=5))
        '5 minutes ago'
    """
    seconds = int(_age(fetched_at, now).total_seconds())
    minutes = seconds // 60
    hours = minutes // 60

    if seconds < 60:
        return "just now"
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    return fetched_at.strftime("%Y-%m-%d %H:%M")


def get_freshness(
    fetched_at: Optional[datetime], now: Optional[datetime] = None
) -> str:
    """Classify data age for display.

    Args:
        fetched_at: When the data was fetched, or None

    Returns:
        "Fresh", "Aging", "Stale" or "Unknown"
    """
    if fetched_at is None:
        return "Unknown"
    if is_stale(fetched_at, now):
        return "Stale"
    if should_refresh_preemptively(fetched_at, now):
        return "Aging"
    return "Fresh"
