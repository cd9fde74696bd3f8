from .entity import (
    Employee,
    EmployeeLocationAssignment,
    EntityKind,
    EntityRef,
    Worker,
    WorkerLocationAssignment,
)
from .face import (
    FaceAnalysis,
    FaceRejection,
    FaceValidationThresholds,
    RegionStats,
    SkinDistribution,
    ValidationResult,
)
from .frame import CapturedFrame
from .geo import GeoPoint, WorkLocation
from .time_entry import EntryType, TimeEntry, TimeEntryRequest, WorkerTimesheet
