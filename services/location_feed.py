import asyncio
import logging
from typing import List, Optional, Protocol, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from models.entity import (
    Employee,
    EmployeeLocationAssignment,
    EntityKind,
    EntityRef,
    Worker,
    WorkerLocationAssignment,
)
from models.geo import WorkLocation

logger = logging.getLogger(__name__)


class LocationFeedError(Exception):
    """Transient failure reaching location data (connectivity, driver errors)."""

    pass


class LocationFeed(Protocol):
    async def assigned_location_ids(self, entity: EntityRef) -> List[str]: ...

    async def legacy_location_id(self, entity: EntityRef) -> Optional[str]: ...

    async def active_locations(
        self, location_ids: Optional[Sequence[str]] = None
    ) -> List[WorkLocation]: ...


# Per-kind tables; the lookup logic is shared
_ENTITY_TABLES = {
    EntityKind.EMPLOYEE: (Employee, EmployeeLocationAssignment, "employee_id"),
    EntityKind.WORKER: (Worker, WorkerLocationAssignment, "worker_id"),
}


class SqlLocationFeed:
    """LocationFeed over the SQLModel tables. Blocking queries run off the event loop."""

    def __init__(self, engine):
        self.engine = engine

    async def assigned_location_ids(self, entity: EntityRef) -> List[str]:
        return await self._run(self._assigned_location_ids, entity)

    async def legacy_location_id(self, entity: EntityRef) -> Optional[str]:
        return await self._run(self._legacy_location_id, entity)

    async def active_locations(
        self, location_ids: Optional[Sequence[str]] = None
    ) -> List[WorkLocation]:
        return await self._run(self._active_locations, location_ids)

    async def _run(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except SQLAlchemyError as e:
            logger.error(f"[GEOFENCE] Location feed query failed: {e}")
            raise LocationFeedError("Could not load work locations") from e

    def _assigned_location_ids(self, entity: EntityRef) -> List[str]:
        _, assignment_table, owner_column = _ENTITY_TABLES[entity.kind]
        with Session(self.engine) as session:
            rows = session.exec(
                select(assignment_table.location_id)
                .where(getattr(assignment_table, owner_column) == entity.entity_id)
                .order_by(assignment_table.id)
            ).all()
        return list(rows)

    def _legacy_location_id(self, entity: EntityRef) -> Optional[str]:
        entity_table, _, _ = _ENTITY_TABLES[entity.kind]
        with Session(self.engine) as session:
            record = session.get(entity_table, entity.entity_id)
            return record.assigned_location_id if record else None

    def _active_locations(
        self, location_ids: Optional[Sequence[str]]
    ) -> List[WorkLocation]:
        query = select(WorkLocation).where(WorkLocation.is_active == True)  # noqa: E712
        if location_ids is not None:
            if not location_ids:
                return []
            query = query.where(WorkLocation.id.in_(list(location_ids)))
        with Session(self.engine) as session:
            locations = session.exec(query).all()
            if location_ids is not None:
                # Keep the assignment order so the first in-radius match is stable
                order = {loc_id: i for i, loc_id in enumerate(location_ids)}
                locations = sorted(locations, key=lambda loc: order[loc.id])
            return list(locations)
