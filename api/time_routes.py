from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from pydantic import BaseModel

from core.settings import GEOLOCATION_TIMEOUT_SECONDS
from db.session import get_engine
from models.entity import EntityKind, EntityRef
from models.results import (
    ClockFailureReason,
    ClockOutcome,
    GeofenceFailureReason,
    GeofenceResult,
)
from models.time_entry import EntryType, TimeEntry
from services.attendance_state import AttendanceStateMachine, ShiftState
from services.camera import UploadedFrameSource
from services.clock_service import ClockActionOrchestrator
from services.geofence_service import GeofenceResolver, geolocation_failure
from services.geolocation import FixedPositionProvider, GeolocationError, acquire_position
from services.location_feed import SqlLocationFeed
from services.punch_service import PunchService

# --- Pydantic Models for Responses ---


class ShiftStatusResponse(BaseModel):
    entity_kind: EntityKind
    entity_id: str
    state: ShiftState
    last_entry_type: Optional[EntryType] = None
    allowed_actions: List[EntryType]


# Photo upload types accepted from the capture client
ALLOWED_PHOTO_TYPES = ["image/jpeg", "image/jpg", "image/png", "image/webp"]

# Defines API Endpoints
router = APIRouter()


def get_state_machine() -> AttendanceStateMachine:
    return AttendanceStateMachine()


def _entity(kind: EntityKind, entity_id: str) -> EntityRef:
    return EntityRef(kind=kind, entity_id=entity_id)


def _raise_for_outcome(outcome: ClockOutcome) -> None:
    detail = {
        "reason": outcome.error_code,
        "stage": outcome.stage.value,
        "message": outcome.message,
    }
    if outcome.geofence is not None and not outcome.geofence.success:
        detail["nearest_location_name"] = outcome.geofence.nearest_location_name
        detail["nearest_distance_meters"] = outcome.geofence.nearest_distance_meters
        detail["required_radius_meters"] = outcome.geofence.required_radius_meters

    if outcome.reason in (
        ClockFailureReason.INVALID_TRANSITION,
        ClockFailureReason.ACTION_IN_PROGRESS,
    ):
        code = status.HTTP_409_CONFLICT
    elif outcome.reason is ClockFailureReason.WRITE_FAILED:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    elif (
        outcome.geofence is not None
        and outcome.geofence.reason is GeofenceFailureReason.LOCATION_FEED_UNAVAILABLE
    ):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_400_BAD_REQUEST
    raise HTTPException(status_code=code, detail=detail)


# Current Shift State And Legal Next Actions
@router.get("/{kind}/{entity_id}/status", response_model=ShiftStatusResponse)
async def get_shift_status(
    kind: EntityKind,
    entity_id: str,
    engine=Depends(get_engine),
    machine: AttendanceStateMachine = Depends(get_state_machine),
):
    entity = _entity(kind, entity_id)
    start, end = machine.day_bounds()
    last = await PunchService(engine, machine).latest_entry(entity, start, end)
    state = machine.state_after(last.entry_type if last else None)
    return ShiftStatusResponse(
        entity_kind=kind,
        entity_id=entity_id,
        state=state,
        last_entry_type=last.entry_type if last else None,
        allowed_actions=list(machine.allowed_actions(state)),
    )


# Get Today's Entries
@router.get("/{kind}/{entity_id}/today")
async def get_todays_entries(
    kind: EntityKind,
    entity_id: str,
    engine=Depends(get_engine),
    machine: AttendanceStateMachine = Depends(get_state_machine),
):
    start, end = machine.day_bounds()
    entries: List[TimeEntry] = await PunchService(engine, machine).entries_between(
        _entity(kind, entity_id), start, end
    )
    return {"status": "success", "data": entries}


# Geofence Pre-Check (used by the client's "retry location")
@router.post("/{kind}/{entity_id}/geofence-check", response_model=GeofenceResult)
async def check_geofence(
    kind: EntityKind,
    entity_id: str,
    latitude: Annotated[Optional[float], Form()] = None,
    longitude: Annotated[Optional[float], Form()] = None,
    engine=Depends(get_engine),
):
    try:
        position = await acquire_position(
            FixedPositionProvider(latitude, longitude), GEOLOCATION_TIMEOUT_SECONDS
        )
    except GeolocationError as e:
        return geolocation_failure(e)
    return await GeofenceResolver(SqlLocationFeed(engine)).resolve(
        _entity(kind, entity_id), position
    )


# Punch Endpoint: geofence, then face check, then the entry write
@router.post("/{kind}/{entity_id}/punch")
async def punch(
    kind: EntityKind,
    entity_id: str,
    entry_type: Annotated[EntryType, Form()],
    photo: Annotated[UploadFile, File(description="Selfie captured for this punch")],
    latitude: Annotated[Optional[float], Form()] = None,
    longitude: Annotated[Optional[float], Form()] = None,
    photo_ref: Annotated[Optional[str], Form()] = None,
    engine=Depends(get_engine),
    machine: AttendanceStateMachine = Depends(get_state_machine),
):
    # Validate file type
    if photo.content_type not in ALLOWED_PHOTO_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid file type. Allowed types: {', '.join(ALLOWED_PHOTO_TYPES)}",
        )
    photo_bytes = await photo.read()

    orchestrator = ClockActionOrchestrator(
        _entity(kind, entity_id),
        resolver=GeofenceResolver(SqlLocationFeed(engine)),
        store=PunchService(engine, machine),
        geolocation=FixedPositionProvider(latitude, longitude),
        camera=UploadedFrameSource(photo_bytes, photo_ref or photo.filename),
        state_machine=machine,
    )
    outcome = await orchestrator.start(entry_type)
    if not outcome.success:
        _raise_for_outcome(outcome)

    # JSON Response back to Call
    return {"status": "success", "data": outcome.entry}
