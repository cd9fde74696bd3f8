from datetime import datetime, timezone
from typing import Optional


def ensure_utc(dt: datetime) -> datetime:
    """Return an aware UTC datetime. SQLite hands back naive values, read as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_utc_datetime(dt: Optional[datetime]) -> Optional[str]:
    """
    Format a datetime as an ISO 8601 string with a 'Z' suffix.

    Args:
        dt: A datetime object or None

    Returns:
        ISO 8601 string in UTC, or None if the input is None.
    """
    if dt is None:
        return None
    return ensure_utc(dt).isoformat().replace("+00:00", "Z")
