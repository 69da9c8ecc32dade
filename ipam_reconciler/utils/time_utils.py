"""Time utility functions for the IPAM reconciler"""

from datetime import datetime, timezone
from typing import Optional


def get_current_utc() -> datetime:
    """Get current UTC timestamp

    Returns:
        datetime: Current datetime in UTC timezone
    """
    return datetime.now(timezone.utc)


def to_db_datetime(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to the naive UTC value MySQL DATETIME columns hold"""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def from_db_datetime(value: Optional[datetime]) -> Optional[datetime]:
    """Mark a naive DATETIME read back from MySQL as UTC"""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
