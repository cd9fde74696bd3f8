from datetime import datetime
from typing import Tuple

from core.settings import REGULAR_HOURS_PER_DAY
from utils.datetime_helpers import ensure_utc


def worked_minutes(clock_in: datetime, clock_out: datetime) -> int:
    """Whole minutes between clock-in and clock-out (floored, never negative).

    Args:
        clock_in: Start of the shift.
        clock_out: End of the shift.

    Returns:
        int: Minutes worked.
    """
    seconds = (ensure_utc(clock_out) - ensure_utc(clock_in)).total_seconds()
    return max(int(seconds // 60), 0)


def split_regular_overtime(
    total_minutes: int, regular_cap_hours: float = REGULAR_HOURS_PER_DAY
) -> Tuple[float, float]:
    """Split a day's worked minutes into (regular_hours, overtime_hours).

    Business rule: the first `regular_cap_hours` of the day are regular time,
    anything beyond is overtime.
    """
    total_hours = total_minutes / 60.0
    regular = min(total_hours, regular_cap_hours)
    overtime = max(0.0, total_hours - regular_cap_hours)
    return regular, overtime
