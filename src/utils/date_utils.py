"""Date utility functions."""

import logging
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalise a datetime to timezone-aware UTC.

    SQLite hands back naive datetimes, which are stored as UTC throughout
    this codebase. Aware datetimes in another zone are converted.

    Args:
        value: Datetime to normalise (None passes through)

    Returns:
        Timezone-aware UTC datetime, or None
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_naive_utc(value: datetime) -> datetime:
    """Convert a datetime to naive UTC for storage in SQLite columns."""
    return ensure_utc(value).replace(tzinfo=None)


def format_hmrc_timestamp(value: datetime) -> str:
    """
    Format a timestamp the way the fraud prevention headers expect it.

    HMRC wants ISO 8601 UTC with millisecond precision and a literal ``Z``
    suffix, e.g. ``2025-09-21T14:30:05.123Z``.

    Args:
        value: Datetime to format

    Returns:
        Formatted timestamp string
    """
    value = ensure_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"
