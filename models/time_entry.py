from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, field_serializer
from sqlmodel import Field, Index, SQLModel, UniqueConstraint

from models.entity import EntityKind, EntityRef
from utils.datetime_helpers import format_utc_datetime


# Enum Limiting Entry Type to the Four Shift Boundaries
class EntryType(str, Enum):
    CLOCK_IN = "clock_in"
    BREAK_START = "break_start"
    BREAK_END = "break_end"
    CLOCK_OUT = "clock_out"


# Defines a Table "time_entries"; append-only, one row per accepted punch
class TimeEntry(SQLModel, table=True):
    __tablename__ = "time_entries"

    __table_args__ = (
        # Most common query: one entity's entries for a day, newest first
        Index(
            "ix_time_entries_entity_timestamp", "entity_kind", "entity_id", "timestamp"
        ),
        Index("ix_time_entries_entry_type", "entry_type"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    entity_kind: EntityKind
    entity_id: str
    entry_type: EntryType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    photo_ref: Optional[str] = Field(default=None)
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_id: Optional[str] = Field(default=None, foreign_key="work_locations.id")

    @field_serializer("timestamp")
    def serialize_timestamp(self, dt: datetime) -> str:
        """Ensure timestamp is formatted as UTC with Z suffix"""
        result = format_utc_datetime(dt)
        return result if result is not None else dt.isoformat()


# Validated creation request handed to the persistence sink
class TimeEntryRequest(BaseModel):
    entity: EntityRef
    entry_type: EntryType
    timestamp: datetime
    photo_ref: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_id: Optional[str] = None


# Daily hours bookkeeping for worker-kind entities
class WorkerTimesheet(SQLModel, table=True):
    __tablename__ = "worker_timesheets"

    __table_args__ = (
        UniqueConstraint("worker_id", "work_date", name="uq_worker_timesheets_day"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    worker_id: str = Field(index=True)
    work_date: date
    clock_in_time: Optional[datetime] = None
    clock_out_time: Optional[datetime] = None
    total_work_minutes: Optional[int] = None
    regular_hours: Optional[float] = None
    overtime_hours: Optional[float] = None
    status: str = Field(default="pending")
