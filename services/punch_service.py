import asyncio
import logging
import threading
import weakref
from datetime import datetime
from typing import List, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from models.entity import EntityKind, EntityRef
from models.time_entry import EntryType, TimeEntry, TimeEntryRequest, WorkerTimesheet
from services.attendance_state import AttendanceStateMachine
from utils.datetime_helpers import ensure_utc
from utils.timesheet import split_regular_overtime, worked_minutes
from utils.timezone_helpers import from_utc_to_local

logger = logging.getLogger(__name__)


class PunchWriteError(Exception):
    """The sink could not persist the entry; nothing was written."""

    pass


class PunchStore(Protocol):
    async def latest_entry(
        self, entity: EntityRef, start: datetime, end: datetime
    ) -> Optional[TimeEntry]: ...

    async def record_entry(self, request: TimeEntryRequest) -> TimeEntry: ...


class PunchService:
    """SQLModel-backed persistence sink for accepted punches.

    Every write re-reads the entity's latest entry inside the same transaction
    and re-checks the transition, so two devices racing from the same state
    cannot both advance it.
    """

    # Entries drop out once no write holds the lock
    _locks: "weakref.WeakValueDictionary" = weakref.WeakValueDictionary()
    _locks_guard = threading.Lock()

    def __init__(self, engine, state_machine: Optional[AttendanceStateMachine] = None):
        self.engine = engine
        self.state_machine = state_machine or AttendanceStateMachine()

    @classmethod
    def _lock_for(cls, entity: EntityRef) -> threading.Lock:
        key = (entity.kind, entity.entity_id)
        with cls._locks_guard:
            lock = cls._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                cls._locks[key] = lock
            return lock

    async def latest_entry(
        self, entity: EntityRef, start: datetime, end: datetime
    ) -> Optional[TimeEntry]:
        def _query():
            with Session(self.engine) as session:
                return self._latest_in_session(session, entity, start, end)

        return await asyncio.to_thread(_query)

    async def entries_between(
        self, entity: EntityRef, start: datetime, end: datetime
    ) -> List[TimeEntry]:
        def _query():
            with Session(self.engine) as session:
                return list(
                    session.exec(
                        select(TimeEntry)
                        .where(TimeEntry.entity_kind == entity.kind)
                        .where(TimeEntry.entity_id == entity.entity_id)
                        .where(TimeEntry.timestamp >= start)
                        .where(TimeEntry.timestamp < end)
                        .order_by(TimeEntry.timestamp)
                    ).all()
                )

        return await asyncio.to_thread(_query)

    async def record_entry(self, request: TimeEntryRequest) -> TimeEntry:
        """Write the entry (and worker timesheet) or fail without partial writes.

        Raises:
            InvalidTransitionError: The latest state no longer allows the entry.
            PunchWriteError: The database rejected the write.
        """
        return await asyncio.to_thread(self._record_entry, request)

    @staticmethod
    def _latest_in_session(
        session: Session, entity: EntityRef, start: datetime, end: datetime
    ) -> Optional[TimeEntry]:
        # Fetch Most Recent Entry For Entity Within The Day
        return session.exec(
            select(TimeEntry)
            .where(TimeEntry.entity_kind == entity.kind)
            .where(TimeEntry.entity_id == entity.entity_id)
            .where(TimeEntry.timestamp >= start)
            .where(TimeEntry.timestamp < end)
            .order_by(TimeEntry.timestamp.desc(), TimeEntry.id.desc())
        ).first()

    def _record_entry(self, request: TimeEntryRequest) -> TimeEntry:
        entity = request.entity
        timestamp = ensure_utc(request.timestamp)
        start, end = self.state_machine.day_bounds(timestamp)

        with self._lock_for(entity), Session(self.engine) as session:
            try:
                last = self._latest_in_session(session, entity, start, end)
                state = self.state_machine.state_after(
                    last.entry_type if last else None
                )
                # Entry Order Validation against the freshest state
                self.state_machine.ensure_allowed(state, request.entry_type)

                entry = TimeEntry(
                    entity_kind=entity.kind,
                    entity_id=entity.entity_id,
                    entry_type=request.entry_type,
                    timestamp=timestamp,
                    photo_ref=request.photo_ref,
                    latitude=request.latitude,
                    longitude=request.longitude,
                    location_id=request.location_id,
                )
                session.add(entry)

                if entity.kind == EntityKind.WORKER:
                    self._update_timesheet(session, entity.entity_id, request.entry_type, timestamp)

                session.commit()
                session.refresh(entry)
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(
                    f"[PUNCH] Failed to record {request.entry_type.value} for "
                    f"{entity.kind.value} {entity.entity_id}: {e}"
                )
                raise PunchWriteError("Failed to record entry. Please try again.") from e

        logger.info(
            f"[PUNCH] Recorded {entry.entry_type.value} for {entity.kind.value} "
            f"{entity.entity_id} (id={entry.id})"
        )
        return entry

    def _update_timesheet(
        self, session: Session, worker_id: str, entry_type: EntryType, timestamp: datetime
    ) -> None:
        work_date = from_utc_to_local(timestamp, self.state_machine.tz).date()
        timesheet = session.exec(
            select(WorkerTimesheet)
            .where(WorkerTimesheet.worker_id == worker_id)
            .where(WorkerTimesheet.work_date == work_date)
        ).first()

        if entry_type == EntryType.CLOCK_IN:
            if timesheet is None:
                timesheet = WorkerTimesheet(worker_id=worker_id, work_date=work_date)
            timesheet.clock_in_time = timestamp
            timesheet.status = "pending"
            session.add(timesheet)
        elif entry_type == EntryType.CLOCK_OUT:
            if timesheet is None or timesheet.clock_in_time is None:
                logger.warning(
                    f"[PUNCH] No timesheet clock-in for worker {worker_id} on {work_date}"
                )
                return
            total_minutes = worked_minutes(timesheet.clock_in_time, timestamp)
            regular, overtime = split_regular_overtime(total_minutes)
            timesheet.clock_out_time = timestamp
            timesheet.total_work_minutes = total_minutes
            timesheet.regular_hours = regular
            timesheet.overtime_hours = overtime
            session.add(timesheet)
