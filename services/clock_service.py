"""Clock action flow for one entity session.

A clock action runs four steps in a fixed order:

1. the requested entry type must be legal from today's shift state;
2. the device position must pass the geofence;
3. one captured frame must pass the face validation pipeline;
4. the entry is handed to the persistence sink.

A geofence failure parks the flow until `retry_location()`, and a rejected
photo parks it until `retake()`. Nothing is written unless all steps pass.
`cancel()` abandons whatever is in flight: device results that arrive
afterwards are discarded and never reach the sink.
"""

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional

from core.settings import GEOLOCATION_TIMEOUT_SECONDS
from models.entity import EntityRef
from models.face import FaceRejection, ValidationResult
from models.frame import CapturedFrame, FrameDecodingError
from models.geo import GeoPoint
from models.results import (
    ClockFailureReason,
    ClockOutcome,
    ClockStage,
    GeofenceResult,
)
from models.time_entry import EntryType, TimeEntryRequest
from services.attendance_state import AttendanceStateMachine, InvalidTransitionError
from services.camera import FrameSource
from services.face_validation import FaceValidationPipeline
from services.geofence_service import GeofenceResolver, geolocation_failure
from services.geolocation import GeolocationError, GeolocationProvider, acquire_position
from services.punch_service import PunchStore, PunchWriteError

logger = logging.getLogger(__name__)


class _Phase(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    AWAITING_LOCATION_RETRY = "awaiting_location_retry"
    AWAITING_RETAKE = "awaiting_retake"
    WRITING = "writing"


class _Cancelled(Exception):
    pass


class ClockActionOrchestrator:
    def __init__(
        self,
        entity: EntityRef,
        *,
        resolver: GeofenceResolver,
        store: PunchStore,
        geolocation: Optional[GeolocationProvider],
        camera: FrameSource,
        pipeline: Optional[FaceValidationPipeline] = None,
        state_machine: Optional[AttendanceStateMachine] = None,
        geolocation_timeout: float = GEOLOCATION_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.entity = entity
        self.resolver = resolver
        self.store = store
        self.geolocation = geolocation
        self.camera = camera
        self.pipeline = pipeline or FaceValidationPipeline()
        self.state_machine = state_machine or AttendanceStateMachine()
        self.geolocation_timeout = geolocation_timeout
        self.clock = clock

        self.pending_action: Optional[EntryType] = None
        self.phase = _Phase.IDLE
        self._generation = 0
        self._inflight: Optional[asyncio.Future] = None
        self._position: Optional[GeoPoint] = None
        self._geofence: Optional[GeofenceResult] = None

    @property
    def busy(self) -> bool:
        return self.phase in (_Phase.RUNNING, _Phase.WRITING)

    # --- Entrypoints ---

    async def start(self, entry_type: EntryType) -> ClockOutcome:
        if self.busy:
            return self._refused(entry_type, ClockFailureReason.ACTION_IN_PROGRESS)

        self._generation += 1
        token = self._generation
        self._reset()
        self.pending_action = entry_type
        self.phase = _Phase.RUNNING
        logger.info(
            f"[CLOCK] {self.entity.kind.value} {self.entity.entity_id} requested {entry_type.value}"
        )
        return await self._run(token, self._from_start(token))

    async def retry_location(self) -> ClockOutcome:
        """Re-run the geofence step only, then continue with capture."""
        if self.busy:
            return self._refused(self.pending_action, ClockFailureReason.ACTION_IN_PROGRESS)
        if self.phase is not _Phase.AWAITING_LOCATION_RETRY:
            return self._refused(self.pending_action, ClockFailureReason.NO_PENDING_ACTION)

        token = self._generation
        self.phase = _Phase.RUNNING
        return await self._run(token, self._from_geofence(token))

    async def retake(self) -> ClockOutcome:
        """Discard the rejected frame and capture a new one."""
        if self.busy:
            return self._refused(self.pending_action, ClockFailureReason.ACTION_IN_PROGRESS)
        if self.phase is not _Phase.AWAITING_RETAKE:
            return self._refused(self.pending_action, ClockFailureReason.NO_PENDING_ACTION)

        token = self._generation
        self.phase = _Phase.RUNNING
        return await self._run(token, self._from_capture(token))

    def cancel(self) -> bool:
        """Abandon the current action; late device results are ignored.

        Returns False while an entry write is in flight: the write cannot be
        recalled, so the session stays busy until it settles.
        """
        if self.phase is _Phase.WRITING:
            logger.info(
                f"[CLOCK] {self.entity.kind.value} {self.entity.entity_id} "
                "write already in flight; not cancelled"
            )
            return False
        self._generation += 1
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        self._inflight = None
        self._reset()
        logger.info(f"[CLOCK] {self.entity.kind.value} {self.entity.entity_id} cancelled")
        return True

    async def _run(self, token: int, flow: Awaitable[ClockOutcome]) -> ClockOutcome:
        try:
            return await flow
        except _Cancelled:
            return self._cancelled_outcome()
        except BaseException:
            # Unexpected errors must not leave the session stuck as busy
            if token == self._generation:
                self._reset()
            raise

    # --- Steps ---

    async def _from_start(self, token: int) -> ClockOutcome:
        start, end = self.state_machine.day_bounds(self.clock())
        last = await self._guard(token, self.store.latest_entry(self.entity, start, end))
        state = self.state_machine.state_after(last.entry_type if last else None)
        try:
            self.state_machine.ensure_allowed(state, self.pending_action)
        except InvalidTransitionError as e:
            return self._finish(
                token,
                ClockOutcome(
                    success=False,
                    stage=ClockStage.STATE,
                    entry_type=self.pending_action,
                    reason=ClockFailureReason.INVALID_TRANSITION,
                    message=str(e),
                )
            )
        return await self._from_geofence(token)

    async def _from_geofence(self, token: int) -> ClockOutcome:
        try:
            position = await self._guard(
                token, acquire_position(self.geolocation, self.geolocation_timeout)
            )
        except GeolocationError as e:
            result = geolocation_failure(e)
        else:
            result = await self._guard(token, self.resolver.resolve(self.entity, position))
            self._position = position

        if not result.success:
            self.phase = _Phase.AWAITING_LOCATION_RETRY
            return ClockOutcome(
                success=False,
                stage=ClockStage.GEOFENCE,
                entry_type=self.pending_action,
                message=result.message,
                geofence=result,
            )

        self._geofence = result
        return await self._from_capture(token)

    async def _from_capture(self, token: int) -> ClockOutcome:
        try:
            frame: CapturedFrame = await self._guard(token, self.camera.capture_frame())
        except FrameDecodingError as e:
            logger.warning(f"[CLOCK] Captured frame unreadable: {e}")
            validation = ValidationResult.rejected(FaceRejection.VALIDATION_ERROR)
        else:
            validation = self.pipeline.validate_frame(frame)

        if not validation.valid:
            self.phase = _Phase.AWAITING_RETAKE
            return ClockOutcome(
                success=False,
                stage=ClockStage.FACE,
                entry_type=self.pending_action,
                message=validation.message,
                geofence=self._geofence,
                validation=validation,
            )

        return await self._emit(token, frame, validation)

    async def _emit(
        self, token: int, frame: CapturedFrame, validation: ValidationResult
    ) -> ClockOutcome:
        self._ensure_live(token)
        request = TimeEntryRequest(
            entity=self.entity,
            entry_type=self.pending_action,
            timestamp=self.clock(),
            photo_ref=frame.source_ref,
            latitude=self._position.latitude if self._position else None,
            longitude=self._position.longitude if self._position else None,
            location_id=self._geofence.matched_location_id if self._geofence else None,
        )
        # The write runs to completion once started; cancel() refuses until it settles
        self.phase = _Phase.WRITING
        try:
            entry = await self.store.record_entry(request)
        except InvalidTransitionError as e:
            # Another device advanced the shift since step 1
            return self._finish(
                token,
                ClockOutcome(
                    success=False,
                    stage=ClockStage.STATE,
                    entry_type=request.entry_type,
                    reason=ClockFailureReason.INVALID_TRANSITION,
                    message=str(e),
                )
            )
        except PunchWriteError as e:
            return self._finish(
                token,
                ClockOutcome(
                    success=False,
                    stage=ClockStage.PERSISTENCE,
                    entry_type=request.entry_type,
                    reason=ClockFailureReason.WRITE_FAILED,
                    message=str(e),
                    geofence=self._geofence,
                    validation=validation,
                )
            )

        return self._finish(
            token,
            ClockOutcome(
                success=True,
                stage=ClockStage.DONE,
                entry_type=request.entry_type,
                geofence=self._geofence,
                validation=validation,
                entry=entry,
            )
        )

    # --- Helpers ---

    async def _guard(self, token: int, awaitable: Awaitable):
        """Await a device or store call that `cancel()` can abandon."""
        self._ensure_live(token)
        future = asyncio.ensure_future(awaitable)
        self._inflight = future
        try:
            result = await future
        except asyncio.CancelledError:
            if token != self._generation:
                raise _Cancelled()
            raise
        finally:
            if self._inflight is future:
                self._inflight = None
        self._ensure_live(token)
        return result

    def _ensure_live(self, token: int) -> None:
        if token != self._generation:
            raise _Cancelled()

    def _reset(self) -> None:
        self.phase = _Phase.IDLE
        self.pending_action = None
        self._position = None
        self._geofence = None

    def _finish(self, token: int, outcome: ClockOutcome) -> ClockOutcome:
        if token == self._generation:
            self._reset()
        if outcome.success:
            logger.info(
                f"[CLOCK] {self.entity.kind.value} {self.entity.entity_id} "
                f"{outcome.entry_type.value} recorded"
            )
        return outcome

    def _refused(
        self, entry_type: Optional[EntryType], reason: ClockFailureReason
    ) -> ClockOutcome:
        return ClockOutcome(
            success=False,
            stage=ClockStage.STATE,
            entry_type=entry_type,
            reason=reason,
            message=(
                "Another clock action is already in progress."
                if reason is ClockFailureReason.ACTION_IN_PROGRESS
                else "There is no pending clock action to resume."
            ),
        )

    def _cancelled_outcome(self) -> ClockOutcome:
        return ClockOutcome(
            success=False,
            stage=ClockStage.STATE,
            reason=ClockFailureReason.CANCELLED,
            message="Clock action cancelled.",
        )
