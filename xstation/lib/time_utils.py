"""
Time utilities for xAPI requests.

The broker expresses every timestamp as milliseconds since the Unix epoch (UTC).
This module converts between those values and timezone-aware datetimes.
"""

from datetime import datetime, timezone
from typing import Union

TimestampLike = Union[int, float, datetime]


def utc_now() -> datetime:
    """
    Get current time in UTC.

    Returns:
        Current timezone-aware datetime in UTC
    """
    return datetime.now(timezone.utc)


def to_xapi_timestamp(value: TimestampLike) -> int:
    """
    Convert a datetime (or an existing epoch value) to xAPI milliseconds.

    Handles both naive and aware datetimes:
    - Naive datetimes are assumed to be UTC
    - Aware datetimes are converted to UTC

    Args:
        value: Datetime, or epoch milliseconds (returned unchanged as int)

    Returns:
        Milliseconds since the Unix epoch
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)
    return int(value)


def from_xapi_timestamp(ms: Union[int, float]) -> datetime:
    """
    Convert xAPI milliseconds to a UTC datetime.

    Args:
        ms: Milliseconds since the Unix epoch

    Returns:
        Timezone-aware datetime in UTC
    """
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
