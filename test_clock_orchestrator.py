#!/usr/bin/env python3
"""
Tests for the clock action flow: state check, geofence, face check, write.

Device adapters and the store are in-memory fakes; the face check runs the
real pipeline on synthetic frames.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from conftest import make_striped_pixels, make_uniform_pixels
from models.entity import EntityKind, EntityRef
from models.frame import CapturedFrame, FrameDecodingError
from models.geo import GeoPoint, WorkLocation
from models.results import ClockFailureReason, ClockStage
from models.time_entry import EntryType, TimeEntry
from services.attendance_state import AttendanceStateMachine, InvalidTransitionError, ShiftState
from services.clock_service import ClockActionOrchestrator
from services.geofence_service import GeofenceResolver
from services.geolocation import FixedPositionProvider, GeolocationError, GeolocationErrorCode
from services.punch_service import PunchWriteError

NOW = datetime(2025, 6, 7, 9, 0, tzinfo=timezone.utc)
WORKER = EntityRef(kind=EntityKind.WORKER, entity_id="W1")
HQ = WorkLocation(id="HQ", name="Office", latitude=14.5995, longitude=120.9842, radius_meters=50)
INSIDE = (14.5995, 120.9843)
OUTSIDE = (14.6013, 120.9842)


def _striped():
    return CapturedFrame(pixels=make_striped_pixels(), source_ref="photos/ok.png")


def _uniform():
    return CapturedFrame(pixels=make_uniform_pixels(), source_ref="photos/blur.png")


class ActiveLocationsFeed:
    def __init__(self, locations):
        self.locations = locations

    async def assigned_location_ids(self, entity):
        return []

    async def legacy_location_id(self, entity):
        return None

    async def active_locations(self, location_ids=None):
        return list(self.locations)


class MemoryStore:
    def __init__(self, entries=None, error=None):
        self.entries = list(entries or [])
        self.error = error

    async def latest_entry(self, entity, start, end):
        return self.entries[-1] if self.entries else None

    async def record_entry(self, request):
        if self.error is not None:
            raise self.error
        entry = TimeEntry(
            id=len(self.entries) + 1,
            entity_kind=request.entity.kind,
            entity_id=request.entity.entity_id,
            entry_type=request.entry_type,
            timestamp=request.timestamp,
            photo_ref=request.photo_ref,
            latitude=request.latitude,
            longitude=request.longitude,
            location_id=request.location_id,
        )
        self.entries.append(entry)
        return entry


class ScriptedCamera:
    def __init__(self, *frames):
        self.frames = list(frames)
        self.captures = 0

    async def capture_frame(self):
        self.captures += 1
        frame = self.frames.pop(0)
        if isinstance(frame, Exception):
            raise frame
        return frame


class GatedCamera:
    """Capture blocks until released; must be built inside the running loop."""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def capture_frame(self):
        self.started.set()
        await self.release.wait()
        return _striped()


class DeniedProvider:
    supported = True

    async def get_current_position(self):
        raise GeolocationError(GeolocationErrorCode.PERMISSION_DENIED)


class SlowProvider:
    supported = True

    async def get_current_position(self):
        await asyncio.sleep(1)
        return GeoPoint(latitude=INSIDE[0], longitude=INSIDE[1])


def _orchestrator(store=None, geolocation=None, camera=None, **kwargs):
    return ClockActionOrchestrator(
        WORKER,
        resolver=GeofenceResolver(ActiveLocationsFeed([HQ])),
        store=store if store is not None else MemoryStore(),
        geolocation=geolocation if geolocation is not None else FixedPositionProvider(*INSIDE),
        camera=camera if camera is not None else ScriptedCamera(_striped()),
        state_machine=AttendanceStateMachine("UTC"),
        clock=lambda: NOW,
        **kwargs,
    )


def test_successful_clock_in_writes_one_entry():
    store = MemoryStore()
    orchestrator = _orchestrator(store=store)

    outcome = asyncio.run(orchestrator.start(EntryType.CLOCK_IN))

    assert outcome.success
    assert outcome.stage is ClockStage.DONE
    assert outcome.error_code is None
    assert outcome.geofence.matched_location_id == "HQ"
    assert outcome.validation.valid
    assert len(store.entries) == 1

    entry = store.entries[0]
    assert entry.entry_type is EntryType.CLOCK_IN
    assert entry.photo_ref == "photos/ok.png"
    assert entry.location_id == "HQ"
    assert (entry.latitude, entry.longitude) == INSIDE
    assert entry.timestamp == NOW
    assert not orchestrator.busy
    assert orchestrator.pending_action is None


def test_illegal_action_stops_before_any_device_call():
    done = TimeEntry(
        entity_kind=EntityKind.WORKER, entity_id="W1", entry_type=EntryType.CLOCK_OUT, timestamp=NOW
    )
    store = MemoryStore(entries=[done])
    camera = ScriptedCamera(_striped())
    orchestrator = _orchestrator(store=store, camera=camera)

    outcome = asyncio.run(orchestrator.start(EntryType.CLOCK_IN))

    assert outcome.reason is ClockFailureReason.INVALID_TRANSITION
    assert outcome.stage is ClockStage.STATE
    assert outcome.geofence is None
    assert camera.captures == 0
    assert len(store.entries) == 1


def test_geofence_failure_waits_for_location_retry():
    store = MemoryStore()
    provider = FixedPositionProvider(*OUTSIDE)
    camera = ScriptedCamera(_striped())
    orchestrator = _orchestrator(store=store, geolocation=provider, camera=camera)

    async def scenario():
        first = await orchestrator.start(EntryType.CLOCK_IN)
        captures_before_retry = camera.captures
        provider.latitude, provider.longitude = INSIDE
        second = await orchestrator.retry_location()
        return first, captures_before_retry, second

    first, captures_before_retry, second = asyncio.run(scenario())

    assert first.stage is ClockStage.GEOFENCE
    assert first.error_code == "out_of_radius"
    assert first.geofence.required_radius_meters == 50
    # Capture never starts before the geofence passes
    assert captures_before_retry == 0
    assert camera.captures == 1
    assert second.success
    assert len(store.entries) == 1


def test_rejected_photo_waits_for_retake():
    store = MemoryStore()
    camera = ScriptedCamera(_uniform(), _striped())
    orchestrator = _orchestrator(store=store, camera=camera)

    async def scenario():
        first = await orchestrator.start(EntryType.CLOCK_IN)
        second = await orchestrator.retake()
        return first, second

    first, second = asyncio.run(scenario())

    assert first.stage is ClockStage.FACE
    assert first.error_code == "blurred"
    assert first.message == first.validation.message
    assert store.entries[-1].photo_ref == "photos/ok.png"
    assert second.success
    assert camera.captures == 2
    assert len(store.entries) == 1


def test_unreadable_photo_is_a_validation_error():
    orchestrator = _orchestrator(camera=ScriptedCamera(FrameDecodingError("truncated")))

    outcome = asyncio.run(orchestrator.start(EntryType.CLOCK_IN))

    assert outcome.stage is ClockStage.FACE
    assert outcome.error_code == "validation_error"


def test_slow_position_fix_is_a_timeout_not_a_denial():
    slow = _orchestrator(geolocation=SlowProvider(), geolocation_timeout=0.01)
    denied = _orchestrator(geolocation=DeniedProvider())

    assert asyncio.run(slow.start(EntryType.CLOCK_IN)).error_code == "timeout"
    assert asyncio.run(denied.start(EntryType.CLOCK_IN)).error_code == "permission_denied"


def test_missing_geolocation_is_not_supported():
    orchestrator = ClockActionOrchestrator(
        WORKER,
        resolver=GeofenceResolver(ActiveLocationsFeed([HQ])),
        store=MemoryStore(),
        geolocation=None,
        camera=ScriptedCamera(_striped()),
        state_machine=AttendanceStateMachine("UTC"),
        clock=lambda: NOW,
    )

    assert asyncio.run(orchestrator.start(EntryType.CLOCK_IN)).error_code == "not_supported"


def test_cancel_discards_a_late_capture():
    store = MemoryStore()

    async def scenario():
        camera = GatedCamera()
        orchestrator = _orchestrator(store=store, camera=camera)
        task = asyncio.create_task(orchestrator.start(EntryType.CLOCK_IN))

        # Geofence passed; the capture is in flight
        await camera.started.wait()
        assert orchestrator.cancel()
        camera.release.set()
        cancelled = await task

        # The session is usable again afterwards
        retried = await orchestrator.start(EntryType.CLOCK_IN)
        return cancelled, retried, orchestrator

    cancelled, retried, orchestrator = asyncio.run(scenario())

    assert cancelled.reason is ClockFailureReason.CANCELLED
    assert retried.success
    assert len(store.entries) == 1
    assert not orchestrator.busy


def test_cancel_landing_as_capture_returns():
    store = MemoryStore()

    class CancellingCamera:
        orchestrator = None

        async def capture_frame(self):
            # The result arrives after cancel() was requested
            self.orchestrator.cancel()
            return _striped()

    camera = CancellingCamera()
    orchestrator = _orchestrator(store=store, camera=camera)
    camera.orchestrator = orchestrator

    outcome = asyncio.run(orchestrator.start(EntryType.CLOCK_IN))

    assert outcome.reason is ClockFailureReason.CANCELLED
    assert store.entries == []


def test_cancel_during_write_keeps_the_session_busy():
    class BlockingStore(MemoryStore):
        """Write blocks until released; must be built inside the running loop."""

        def __init__(self):
            super().__init__()
            self.writing = asyncio.Event()
            self.release = asyncio.Event()

        async def record_entry(self, request):
            self.writing.set()
            await self.release.wait()
            return await super().record_entry(request)

    async def scenario():
        store = BlockingStore()
        orchestrator = _orchestrator(store=store, camera=ScriptedCamera(_striped(), _striped()))
        task = asyncio.create_task(orchestrator.start(EntryType.CLOCK_IN))
        await store.writing.wait()

        cancelled = orchestrator.cancel()
        busy_during_write = orchestrator.busy
        refused = await orchestrator.start(EntryType.CLOCK_IN)

        store.release.set()
        written = await task
        busy_after_write = orchestrator.busy
        following = await orchestrator.start(EntryType.BREAK_START)
        return store, cancelled, busy_during_write, refused, written, busy_after_write, following

    store, cancelled, busy_during_write, refused, written, busy_after_write, following = asyncio.run(
        scenario()
    )

    assert cancelled is False
    assert busy_during_write
    assert refused.reason is ClockFailureReason.ACTION_IN_PROGRESS
    assert written.success
    assert written.entry.entry_type is EntryType.CLOCK_IN
    assert not busy_after_write
    assert following.success
    assert [e.entry_type for e in store.entries] == [EntryType.CLOCK_IN, EntryType.BREAK_START]


def test_second_start_while_busy_is_refused():
    store = MemoryStore()

    async def scenario():
        camera = GatedCamera()
        orchestrator = _orchestrator(store=store, camera=camera)
        task = asyncio.create_task(orchestrator.start(EntryType.CLOCK_IN))
        await camera.started.wait()

        refused = await orchestrator.start(EntryType.CLOCK_IN)
        camera.release.set()
        return refused, await task

    refused, completed = asyncio.run(scenario())

    assert refused.reason is ClockFailureReason.ACTION_IN_PROGRESS
    assert completed.success
    assert len(store.entries) == 1


def test_resume_without_pending_action():
    orchestrator = _orchestrator()

    assert asyncio.run(orchestrator.retry_location()).reason is ClockFailureReason.NO_PENDING_ACTION
    assert asyncio.run(orchestrator.retake()).reason is ClockFailureReason.NO_PENDING_ACTION


def test_write_failure_is_reported_and_nothing_advances():
    store = MemoryStore(error=PunchWriteError("disk full"))
    orchestrator = _orchestrator(store=store)

    outcome = asyncio.run(orchestrator.start(EntryType.CLOCK_IN))

    assert outcome.reason is ClockFailureReason.WRITE_FAILED
    assert outcome.stage is ClockStage.PERSISTENCE
    assert store.entries == []
    assert not orchestrator.busy


def test_sink_side_transition_race_is_reported():
    store = MemoryStore(error=InvalidTransitionError(ShiftState.CLOCKED_IN, EntryType.CLOCK_IN))
    outcome = asyncio.run(_orchestrator(store=store).start(EntryType.CLOCK_IN))

    assert outcome.reason is ClockFailureReason.INVALID_TRANSITION


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
