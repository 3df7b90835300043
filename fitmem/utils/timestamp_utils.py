"""
Timestamp utilities for consistent time handling across the system.
"""

import re
import time
from datetime import date, datetime, time as dt_time
from typing import Any, Optional

DAY_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')


def to_seconds_str(timestamp: Optional[int] = None) -> str:
    """Convert timestamp to seconds string format.

    Args:
        timestamp: Unix timestamp in seconds (optional, uses current time if None)

    Returns:
        Seconds timestamp as string
    """
    if timestamp is None:
        timestamp = time.time()
    return str(int(timestamp))


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string, a YYYY-MM-DD date or epoch seconds.

    Returns None for empty or unparseable values.
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value)
    text = str(value).strip()
    if text.isdigit():
        return datetime.fromtimestamp(int(text))
    try:
        return datetime.fromisoformat(text.replace('Z', '+00:00'))
    except ValueError:
        return None


def parse_day(day: str) -> date:
    """Parse a strict YYYY-MM-DD day.

    Raises:
        ValueError: If `day` is not a valid calendar day in that exact format
    """
    if not isinstance(day, str) or not DAY_PATTERN.match(day):
        raise ValueError(f'Expected a YYYY-MM-DD day, got {day!r}')
    return date.fromisoformat(day)


def end_of_day(day: str) -> datetime:
    """Return the last second of a YYYY-MM-DD day."""
    return datetime.combine(parse_day(day), dt_time(23, 59, 59))


def checked_timestamp(timestamp: Any) -> datetime:
    """Convert epoch seconds to a datetime, rejecting non-numeric or out-of-range values.

    Raises:
        ValueError: If `timestamp` is not a usable epoch-seconds value
    """
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
        raise ValueError(f'Expected epoch seconds, got {timestamp!r}')
    try:
        return datetime.fromtimestamp(timestamp)
    except (OverflowError, OSError, ValueError) as e:
        raise ValueError(f'Timestamp {timestamp} is out of range: {e}')


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
