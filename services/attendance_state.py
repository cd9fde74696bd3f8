from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, Optional, Tuple

from core.settings import ATTENDANCE_TIMEZONE
from models.time_entry import EntryType, TimeEntry
from utils.datetime_helpers import ensure_utc
from utils.timezone_helpers import local_day_bounds


class ShiftState(str, Enum):
    NONE = "none"
    CLOCKED_IN = "clocked_in"
    ON_BREAK = "on_break"
    CLOCKED_OUT = "clocked_out"


# State reached after each entry type
STATE_AFTER: Dict[Optional[EntryType], ShiftState] = {
    None: ShiftState.NONE,
    EntryType.CLOCK_IN: ShiftState.CLOCKED_IN,
    EntryType.BREAK_END: ShiftState.CLOCKED_IN,
    EntryType.BREAK_START: ShiftState.ON_BREAK,
    EntryType.CLOCK_OUT: ShiftState.CLOCKED_OUT,
}

# Legal next actions; CLOCKED_OUT is terminal until local midnight
ALLOWED_ACTIONS: Dict[ShiftState, Tuple[EntryType, ...]] = {
    ShiftState.NONE: (EntryType.CLOCK_IN,),
    ShiftState.CLOCKED_IN: (EntryType.BREAK_START, EntryType.CLOCK_OUT),
    ShiftState.ON_BREAK: (EntryType.BREAK_END,),
    ShiftState.CLOCKED_OUT: (),
}


class InvalidTransitionError(Exception):
    def __init__(self, state: ShiftState, requested: EntryType):
        self.state = state
        self.requested = requested
        super().__init__(
            f"Cannot {requested.value.replace('_', ' ')} while {state.value.replace('_', ' ')}."
        )


class AttendanceStateMachine:
    """Derives the daily shift state from recorded entries; nothing is stored."""

    def __init__(self, tz: str = ATTENDANCE_TIMEZONE):
        self.tz = tz

    def day_bounds(self, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
        """UTC [start, end) of the local calendar day containing `now`."""
        return local_day_bounds(now or datetime.now(timezone.utc), self.tz)

    def state_after(self, last_entry_type: Optional[EntryType]) -> ShiftState:
        return STATE_AFTER[last_entry_type]

    def state_from_entries(
        self, entries: Iterable[TimeEntry], now: Optional[datetime] = None
    ) -> ShiftState:
        """State from the latest of today's entries; earlier days are ignored."""
        start, end = self.day_bounds(now)
        latest: Optional[TimeEntry] = None
        for entry in entries:
            ts = ensure_utc(entry.timestamp)
            if not (start <= ts < end):
                continue
            if latest is None or ts >= ensure_utc(latest.timestamp):
                latest = entry
        return self.state_after(latest.entry_type if latest else None)

    def allowed_actions(self, state: ShiftState) -> Tuple[EntryType, ...]:
        return ALLOWED_ACTIONS[state]

    def is_allowed(self, state: ShiftState, action: EntryType) -> bool:
        return action in ALLOWED_ACTIONS[state]

    def ensure_allowed(self, state: ShiftState, action: EntryType) -> None:
        if not self.is_allowed(state, action):
            raise InvalidTransitionError(state, action)
