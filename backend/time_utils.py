"""
Time utilities for the Task Manager application.

This module provides a single source of truth for time operations,
so token expiry and usage stamps are computed the same way everywhere.
"""

from datetime import datetime, timezone, timedelta
from typing import Optional


def utc_now() -> datetime:
    """
    Get current UTC time.
    Single source of truth for "now" throughout the application.

    Returns:
        timezone-aware datetime in UTC
    """
    return datetime.now(timezone.utc)


def expires_in(delta: timedelta) -> datetime:
    """Return the timezone-aware UTC moment `delta` from now."""
    return utc_now() + delta


def from_timestamp(timestamp: int) -> datetime:
    """Convert a POSIX timestamp (e.g. a JWT `exp` claim) to an aware UTC datetime."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def is_expired(moment: Optional[datetime]) -> bool:
    """
    Check whether a stored expiry moment has passed.

    SQLite hands back naive datetimes even for timezone-aware columns,
    so naive values are interpreted as UTC.

    Args:
        moment: Expiry datetime, or None for "never expires"

    Returns:
        True if the moment is in the past, False otherwise
    """
    if moment is None:
        return False
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment < utc_now()
