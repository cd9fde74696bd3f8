#!/usr/bin/env python3
"""
Tests for haversine distance and the three-tier geofence resolution.

Runs against an in-memory feed and against the SQL feed over SQLite.
"""

import asyncio
import math

import pytest
from sqlmodel import Session

from db.session import build_engine
from models.entity import (
    Employee,
    EmployeeLocationAssignment,
    EntityKind,
    EntityRef,
    Worker,
    WorkerLocationAssignment,
)
from models.geo import GeoPoint, WorkLocation
from models.results import GeofenceFailureReason
from services.geofence_service import GeofenceResolver, LocationTier, geolocation_failure
from services.geolocation import GeolocationError, GeolocationErrorCode
from services.location_feed import LocationFeedError, SqlLocationFeed
from utils.geofence import distance_meters, haversine_dist, is_within_radius

MANILA = GeoPoint(latitude=14.5995, longitude=120.9842)


class InMemoryFeed:
    """LocationFeed over plain dicts, keyed by entity id."""

    def __init__(self, locations=(), assignments=None, legacy=None, fail=False):
        self.locations = list(locations)
        self.assignments = assignments or {}
        self.legacy = legacy or {}
        self.fail = fail

    async def assigned_location_ids(self, entity):
        if self.fail:
            raise LocationFeedError("connection refused")
        return list(self.assignments.get(entity.entity_id, []))

    async def legacy_location_id(self, entity):
        return self.legacy.get(entity.entity_id)

    async def active_locations(self, location_ids=None):
        active = [loc for loc in self.locations if loc.is_active]
        if location_ids is None:
            return active
        by_id = {loc.id: loc for loc in active}
        return [by_id[i] for i in location_ids if i in by_id]


def _location(loc_id, lat, lng, radius=50.0, active=True, name=None):
    return WorkLocation(
        id=loc_id,
        name=name or loc_id,
        latitude=lat,
        longitude=lng,
        radius_meters=radius,
        is_active=active,
    )


def _resolve(feed, position, kind=EntityKind.EMPLOYEE, entity_id="E1"):
    resolver = GeofenceResolver(feed)
    return asyncio.run(resolver.resolve(EntityRef(kind=kind, entity_id=entity_id), position))


# --- Distance ---


def test_distance_is_zero_for_identical_points():
    for point in (MANILA, GeoPoint(latitude=0, longitude=0), GeoPoint(latitude=-89.9, longitude=179.9)):
        assert distance_meters(point, point) == 0


def test_distance_is_symmetric():
    a = MANILA
    b = GeoPoint(latitude=38.9931538759034, longitude=-76.9428334513501)
    assert distance_meters(a, b) == pytest.approx(distance_meters(b, a))


def test_distance_grows_with_separation():
    near = GeoPoint(latitude=14.6, longitude=120.9842)
    far = GeoPoint(latitude=14.7, longitude=120.9842)
    assert distance_meters(MANILA, near) < distance_meters(MANILA, far)


def test_one_degree_of_latitude_is_about_111km():
    assert haversine_dist(0, 0, 1, 0) == pytest.approx(111195, rel=1e-3)


def test_nan_propagates():
    assert math.isnan(haversine_dist(float("nan"), 0, 0, 0))


def test_within_radius_is_inclusive():
    d = haversine_dist(14.5995, 120.9843, 14.5995, 120.9842)
    assert is_within_radius(d, d)
    assert not is_within_radius(d, d - 0.01)
    assert not is_within_radius(float("nan"), 50)


# --- Resolver ---


def test_scenario_device_eleven_meters_away_passes():
    feed = InMemoryFeed(locations=[_location("HQ", 14.5995, 120.9842)])
    result = _resolve(feed, GeoPoint(latitude=14.5995, longitude=120.9843))

    assert result.success
    assert result.matched_location_id == "HQ"
    assert result.distance_meters == pytest.approx(10.8, abs=0.5)


def test_scenario_device_two_hundred_meters_away_fails():
    feed = InMemoryFeed(locations=[_location("HQ", 14.5995, 120.9842, name="Office")])
    result = _resolve(feed, GeoPoint(latitude=14.6013, longitude=120.9842))

    assert not result.success
    assert result.reason is GeofenceFailureReason.OUT_OF_RADIUS
    assert result.nearest_location_name == "Office"
    assert result.nearest_distance_meters == pytest.approx(200, abs=1)
    assert result.required_radius_meters == 50
    assert result.message == "You are 200m away from Office. Must be within 50m."


def test_boundary_distance_counts_as_inside():
    position = GeoPoint(latitude=14.5995, longitude=120.9843)
    exact = distance_meters(position, MANILA)
    feed = InMemoryFeed(locations=[_location("HQ", MANILA.latitude, MANILA.longitude, radius=exact)])

    assert _resolve(feed, position).success


def test_first_in_radius_candidate_wins():
    feed = InMemoryFeed(
        locations=[
            _location("A", 14.5995, 120.9842, radius=500),
            _location("B", 14.5995, 120.9843, radius=500),
        ]
    )
    result = _resolve(feed, GeoPoint(latitude=14.5995, longitude=120.9843))

    assert result.success
    assert result.matched_location_id == "A"


def test_nearest_candidate_is_reported_on_failure():
    feed = InMemoryFeed(
        locations=[
            _location("FAR", 14.70, 120.9842),
            _location("NEAR", 14.61, 120.9842),
        ]
    )
    result = _resolve(feed, MANILA)

    assert result.reason is GeofenceFailureReason.OUT_OF_RADIUS
    assert result.nearest_location_name == "NEAR"


def test_assignments_take_precedence_over_legacy_location():
    feed = InMemoryFeed(
        locations=[
            _location("ASSIGNED", 14.70, 120.9842),
            _location("LEGACY", 14.5995, 120.9842),
        ],
        assignments={"E1": ["ASSIGNED"]},
        legacy={"E1": "LEGACY"},
    )
    result = _resolve(feed, MANILA)

    # Standing on the legacy site does not help; only the assignment counts
    assert not result.success
    assert result.reason is GeofenceFailureReason.OUT_OF_RADIUS
    assert result.nearest_location_name == "ASSIGNED"


def test_inactive_assignment_does_not_fall_back_to_active_locations():
    feed = InMemoryFeed(
        locations=[
            _location("CLOSED", 14.5995, 120.9842, active=False),
            _location("OPEN", 14.5995, 120.9842),
        ],
        assignments={"E1": ["CLOSED"]},
    )
    result = _resolve(feed, MANILA)

    assert result.reason is GeofenceFailureReason.LOCATION_NOT_FOUND_OR_INACTIVE
    assert result.message == "Assigned work locations not found or inactive."


def test_missing_legacy_location_does_not_fall_back():
    feed = InMemoryFeed(
        locations=[_location("OPEN", 14.5995, 120.9842)],
        legacy={"E1": "DELETED"},
    )
    result = _resolve(feed, MANILA)

    assert result.reason is GeofenceFailureReason.LOCATION_NOT_FOUND_OR_INACTIVE
    assert result.message == "Assigned work location not found or inactive."


def test_legacy_location_is_used_without_assignments():
    feed = InMemoryFeed(
        locations=[
            _location("OTHER", 14.5995, 120.9842),
            _location("LEGACY", 14.70, 120.9842),
        ],
        legacy={"E1": "LEGACY"},
    )
    result = _resolve(feed, MANILA)

    assert result.nearest_location_name == "LEGACY"


def test_no_active_locations_configured():
    feed = InMemoryFeed(locations=[_location("CLOSED", 14.5995, 120.9842, active=False)])
    result = _resolve(feed, MANILA)

    assert result.reason is GeofenceFailureReason.NO_LOCATIONS_CONFIGURED


def test_feed_outage_is_not_reported_as_missing_configuration():
    result = _resolve(InMemoryFeed(fail=True), MANILA)

    assert result.reason is GeofenceFailureReason.LOCATION_FEED_UNAVAILABLE


def test_non_finite_position_is_rejected():
    feed = InMemoryFeed(locations=[_location("HQ", 14.5995, 120.9842)])
    result = _resolve(feed, GeoPoint(latitude=float("nan"), longitude=120.9842))

    assert result.reason is GeofenceFailureReason.INVALID_POSITION


def test_both_entity_kinds_resolve_identically():
    feed = InMemoryFeed(
        locations=[_location("HQ", 14.5995, 120.9842)],
        assignments={"X1": ["HQ"]},
    )
    position = GeoPoint(latitude=14.5995, longitude=120.9843)
    employee = _resolve(feed, position, EntityKind.EMPLOYEE, "X1")
    worker = _resolve(feed, position, EntityKind.WORKER, "X1")

    assert employee == worker


def test_geolocation_errors_map_one_to_one():
    for code in GeolocationErrorCode:
        result = geolocation_failure(GeolocationError(code))
        assert not result.success
        assert result.reason.value == code.value


# --- SQL feed ---


def _seed(engine):
    with Session(engine) as session:
        session.add(_location("HQ", 14.5995, 120.9842, name="Head Office"))
        session.add(_location("YARD", 14.60, 120.99, radius=100, name="Yard"))
        session.add(_location("OLD", 14.61, 120.99, active=False, name="Old Site"))
        session.add(Employee(id="E1", name="Ana", assigned_location_id="HQ"))
        session.add(Worker(id="W1", name="Ben", assigned_location_id="HQ"))
        session.add(Worker(id="W2", name="Cy"))
        session.add(WorkerLocationAssignment(worker_id="W1", location_id="YARD"))
        session.add(WorkerLocationAssignment(worker_id="W1", location_id="OLD"))
        session.add(WorkerLocationAssignment(worker_id="W1", location_id="HQ"))
        session.add(EmployeeLocationAssignment(employee_id="E9", location_id="YARD"))
        session.commit()


def test_sql_feed_tiers(engine):
    _seed(engine)
    resolver = GeofenceResolver(SqlLocationFeed(engine))

    tier, locations = asyncio.run(
        resolver.candidates(EntityRef(kind=EntityKind.WORKER, entity_id="W1"))
    )
    assert tier is LocationTier.ASSIGNMENTS
    assert [loc.id for loc in locations] == ["YARD", "HQ"]

    tier, locations = asyncio.run(
        resolver.candidates(EntityRef(kind=EntityKind.EMPLOYEE, entity_id="E1"))
    )
    assert tier is LocationTier.LEGACY
    assert [loc.id for loc in locations] == ["HQ"]

    tier, locations = asyncio.run(
        resolver.candidates(EntityRef(kind=EntityKind.WORKER, entity_id="W2"))
    )
    assert tier is LocationTier.ANY_ACTIVE
    assert sorted(loc.id for loc in locations) == ["HQ", "YARD"]


def test_sql_feed_keeps_assignment_tables_separate(engine):
    _seed(engine)
    feed = SqlLocationFeed(engine)

    # E9 only has an employee assignment; a worker with that id has none
    assert asyncio.run(
        feed.assigned_location_ids(EntityRef(kind=EntityKind.EMPLOYEE, entity_id="E9"))
    ) == ["YARD"]
    assert asyncio.run(
        feed.assigned_location_ids(EntityRef(kind=EntityKind.WORKER, entity_id="E9"))
    ) == []


def test_sql_feed_resolves_scenario(engine):
    _seed(engine)
    resolver = GeofenceResolver(SqlLocationFeed(engine))
    result = asyncio.run(
        resolver.resolve(
            EntityRef(kind=EntityKind.EMPLOYEE, entity_id="E1"),
            GeoPoint(latitude=14.5995, longitude=120.9843),
        )
    )

    assert result.success
    assert result.matched_location_id == "HQ"


def test_sql_feed_errors_surface_as_feed_unavailable():
    # No tables created: every query fails at the driver
    bare_engine = build_engine("sqlite://")
    resolver = GeofenceResolver(SqlLocationFeed(bare_engine))
    result = asyncio.run(
        resolver.resolve(EntityRef(kind=EntityKind.WORKER, entity_id="W1"), MANILA)
    )

    assert result.reason is GeofenceFailureReason.LOCATION_FEED_UNAVAILABLE


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
