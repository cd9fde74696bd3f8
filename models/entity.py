from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict
from sqlmodel import Field, Index, SQLModel


# The two kinds of people who punch; same flow, separate tables
class EntityKind(str, Enum):
    EMPLOYEE = "employee"
    WORKER = "worker"


class EntityRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: EntityKind
    entity_id: str


class Employee(SQLModel, table=True):
    __tablename__ = "employees"

    id: str = Field(primary_key=True)
    name: Optional[str] = Field(default=None)
    # Legacy single-site assignment, superseded by employee_location_assignments
    assigned_location_id: Optional[str] = Field(
        default=None, foreign_key="work_locations.id"
    )


class Worker(SQLModel, table=True):
    __tablename__ = "workers"

    id: str = Field(primary_key=True)
    name: Optional[str] = Field(default=None)
    # Legacy single-site assignment, superseded by worker_location_assignments
    assigned_location_id: Optional[str] = Field(
        default=None, foreign_key="work_locations.id"
    )


class EmployeeLocationAssignment(SQLModel, table=True):
    __tablename__ = "employee_location_assignments"

    __table_args__ = (
        Index("ix_employee_location_assignments_employee_id", "employee_id"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    employee_id: str = Field(foreign_key="employees.id")
    location_id: str = Field(foreign_key="work_locations.id")


class WorkerLocationAssignment(SQLModel, table=True):
    __tablename__ = "worker_location_assignments"

    __table_args__ = (
        Index("ix_worker_location_assignments_worker_id", "worker_id"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    worker_id: str = Field(foreign_key="workers.id")
    location_id: str = Field(foreign_key="work_locations.id")
