"""Datetime utilities for consistent timezone handling across the application.

Processor timestamps are seconds since the epoch; the snapshot cache stores
milliseconds. Conversions between the two live here.
"""

from datetime import datetime, timezone
from typing import Optional

MS_PER_SECOND = 1000
MS_PER_DAY = 24 * 60 * 60 * MS_PER_SECOND


def utc_now() -> datetime:
    """Get current UTC time - standardized across the application.

    Returns:
        Current datetime in UTC timezone.
    """
    return datetime.now(timezone.utc)


def utc_now_naive() -> datetime:
    """Get current UTC time as naive datetime for database operations.

    Returns:
        Current datetime in UTC as naive datetime (no timezone info).
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utc_now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(utc_now().timestamp() * MS_PER_SECOND)


def seconds_to_ms(value: Optional[int]) -> Optional[int]:
    """Convert processor epoch seconds to epoch milliseconds, passing through None."""
    if value is None:
        return None
    return int(value) * MS_PER_SECOND


def ms_to_seconds(value: int) -> int:
    """Convert epoch milliseconds to whole epoch seconds."""
    return int(value // MS_PER_SECOND)


def ms_to_datetime(value: Optional[int]) -> Optional[datetime]:
    """Convert epoch milliseconds to an aware UTC datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(value / MS_PER_SECOND, tz=timezone.utc)
