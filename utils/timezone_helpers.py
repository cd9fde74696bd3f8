"""
Timezone utilities for the daily attendance boundary.

Shift state resets at local midnight of the configured timezone, while every
timestamp is stored in UTC.
"""

from datetime import datetime
from datetime import time as datetime_time
from datetime import timezone
from typing import Tuple
from zoneinfo import ZoneInfo


def from_utc_to_local(utc_dt: datetime, tz: str) -> datetime:
    """
    Convert UTC datetime to local datetime in the specified timezone.

    Args:
        utc_dt: UTC datetime (naive values are treated as UTC)
        tz: IANA timezone string (e.g., 'Asia/Manila', 'America/New_York')

    Returns:
        datetime: Local datetime in the specified timezone
    """
    if utc_dt.tzinfo is None:
        utc_dt = utc_dt.replace(tzinfo=timezone.utc)

    return utc_dt.astimezone(ZoneInfo(tz))


def local_day_bounds(utc_ref: datetime, tz: str) -> Tuple[datetime, datetime]:
    """
    Get the [start, end) UTC range of the local calendar day containing utc_ref.

    Args:
        utc_ref: Reference instant
        tz: IANA timezone string

    Returns:
        Tuple of (start of local day in UTC, start of next local day in UTC)
    """
    local_date = from_utc_to_local(utc_ref, tz).date()
    target_tz = ZoneInfo(tz)
    local_start = datetime.combine(local_date, datetime_time.min, tzinfo=target_tz)
    next_start = datetime.fromordinal(local_date.toordinal() + 1).replace(
        tzinfo=target_tz
    )
    return local_start.astimezone(timezone.utc), next_start.astimezone(timezone.utc)
