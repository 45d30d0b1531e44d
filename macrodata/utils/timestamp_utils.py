"""
Timestamp utilities for consistent time handling across the system.

All stored timestamps are ISO 8601 strings in UTC.
"""

import time
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(moment: Optional[datetime] = None) -> str:
    """Format a datetime as an ISO 8601 UTC string with millisecond precision.

    Args:
        moment: datetime to format (uses current time if None). Naive values are treated as UTC.

    Returns:
        ISO string such as ``2025-01-23T10:00:00.000Z``
    """
    if moment is None:
        moment = utc_now()
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime('%Y-%m-%dT%H:%M:%S.') + f'{moment.microsecond // 1000:03d}Z'


def parse_iso(value: str) -> datetime:
    """Parse an ISO 8601 string into an aware UTC datetime.

    Accepts a trailing ``Z``. Naive values are treated as UTC.

    Raises:
        ValueError: If the string is not a valid ISO datetime
    """
    if not value:
        raise ValueError('Empty timestamp')
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def epoch_millis() -> int:
    """Milliseconds since the Unix epoch."""
    return int(time.time() * 1000)
