"""
Datetime utility functions.
"""

from datetime import datetime
from typing import Optional
import pytz


def utcnow() -> datetime:
    """
    Get current UTC datetime using pytz.UTC.

    Returns:
        Current UTC datetime with pytz timezone information
    """
    return datetime.now(pytz.UTC)


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to a naive datetime.

    Some backends (SQLite) hand timezone-aware columns back without tzinfo;
    values are always stored as UTC, so naive means UTC here.
    """
    if value is None or value.tzinfo is not None:
        return value
    return pytz.UTC.localize(value)


def isoformat_or_none(value: Optional[datetime]) -> Optional[str]:
    value = ensure_aware(value)
    return value.isoformat() if value else None
