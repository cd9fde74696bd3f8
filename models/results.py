from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

from models.face import ValidationResult
from models.time_entry import EntryType, TimeEntry


class GeofenceFailureReason(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    POSITION_UNAVAILABLE = "position_unavailable"
    TIMEOUT = "timeout"
    NOT_SUPPORTED = "not_supported"
    NO_LOCATIONS_CONFIGURED = "no_locations_configured"
    LOCATION_NOT_FOUND_OR_INACTIVE = "location_not_found_or_inactive"
    OUT_OF_RADIUS = "out_of_radius"
    LOCATION_FEED_UNAVAILABLE = "location_feed_unavailable"
    INVALID_POSITION = "invalid_position"


class GeofenceResult(BaseModel):
    success: bool
    reason: Optional[GeofenceFailureReason] = None
    message: Optional[str] = None
    matched_location_id: Optional[str] = None
    distance_meters: Optional[float] = None
    nearest_location_name: Optional[str] = None
    nearest_distance_meters: Optional[float] = None
    required_radius_meters: Optional[float] = None

    @classmethod
    def failed(cls, reason: GeofenceFailureReason, message: str, **kwargs):
        return cls(success=False, reason=reason, message=message, **kwargs)


# Where in the clock flow an attempt stopped
class ClockStage(str, Enum):
    STATE = "state"
    GEOFENCE = "geofence"
    FACE = "face"
    PERSISTENCE = "persistence"
    DONE = "done"


class ClockFailureReason(str, Enum):
    INVALID_TRANSITION = "invalid_transition"
    ACTION_IN_PROGRESS = "action_in_progress"
    NO_PENDING_ACTION = "no_pending_action"
    WRITE_FAILED = "write_failed"
    CANCELLED = "cancelled"


class ClockOutcome(BaseModel):
    """Result of one orchestrator step. Exactly one of the reason fields is set on failure."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    stage: ClockStage
    entry_type: Optional[EntryType] = None
    reason: Optional[ClockFailureReason] = None
    message: Optional[str] = None
    geofence: Optional[GeofenceResult] = None
    validation: Optional[ValidationResult] = None
    entry: Optional[TimeEntry] = None

    @property
    def error_code(self) -> Optional[str]:
        """Flat reason code across all stages, for display and HTTP mapping."""
        if self.success:
            return None
        if self.reason is not None:
            return self.reason.value
        if self.geofence is not None and self.geofence.reason is not None:
            return self.geofence.reason.value
        if self.validation is not None and self.validation.error_reason is not None:
            return self.validation.error_reason.value
        return None
