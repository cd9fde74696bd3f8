"""Geofence resolution for clock actions.

Candidate sites come from exactly one of three tiers, checked in order:

1. the entity's many-to-many location assignments, if any exist;
2. otherwise the legacy single `assigned_location_id`, if set;
3. otherwise every active work location.

Once a tier is selected it is final: assigned sites that are missing or
inactive fail the check instead of falling through to the next tier. The
first candidate whose radius contains the position wins; otherwise the
nearest candidate is reported back.
"""

import logging
import math
from enum import Enum
from typing import List, Optional, Tuple

from models.entity import EntityRef
from models.geo import GeoPoint, WorkLocation
from models.results import GeofenceFailureReason, GeofenceResult
from services.geolocation import GeolocationError
from services.location_feed import LocationFeed, LocationFeedError
from utils.geofence import distance_meters, is_within_radius

logger = logging.getLogger(__name__)


class LocationTier(str, Enum):
    ASSIGNMENTS = "assignments"
    LEGACY = "legacy"
    ANY_ACTIVE = "any_active"


class GeofenceResolver:
    def __init__(self, feed: LocationFeed):
        self.feed = feed

    async def candidates(self, entity: EntityRef) -> Tuple[LocationTier, List[WorkLocation]]:
        """Select the single tier that applies and return its active sites.

        Raises:
            LocationFeedError: The feed could not be reached.
        """
        assigned_ids = await self.feed.assigned_location_ids(entity)
        if assigned_ids:
            return LocationTier.ASSIGNMENTS, await self.feed.active_locations(assigned_ids)

        legacy_id = await self.feed.legacy_location_id(entity)
        if legacy_id:
            return LocationTier.LEGACY, await self.feed.active_locations([legacy_id])

        return LocationTier.ANY_ACTIVE, await self.feed.active_locations()

    async def resolve(self, entity: EntityRef, position: GeoPoint) -> GeofenceResult:
        if not position.is_finite:
            return GeofenceResult.failed(
                GeofenceFailureReason.INVALID_POSITION,
                "Device reported an invalid position. Please try again.",
            )

        try:
            tier, locations = await self.candidates(entity)
        except LocationFeedError:
            return GeofenceResult.failed(
                GeofenceFailureReason.LOCATION_FEED_UNAVAILABLE,
                "Could not load work locations. Check your connection and try again.",
            )

        if not locations:
            if tier is LocationTier.ANY_ACTIVE:
                failure = GeofenceResult.failed(
                    GeofenceFailureReason.NO_LOCATIONS_CONFIGURED,
                    "No work locations configured. Please contact your administrator.",
                )
            else:
                failure = GeofenceResult.failed(
                    GeofenceFailureReason.LOCATION_NOT_FOUND_OR_INACTIVE,
                    "Assigned work locations not found or inactive."
                    if tier is LocationTier.ASSIGNMENTS
                    else "Assigned work location not found or inactive.",
                )
            logger.info(
                f"[GEOFENCE] {entity.kind.value} {entity.entity_id} ({tier.value}): "
                f"{failure.reason.value}"
            )
            return failure

        return self.check(position, locations)

    @staticmethod
    def check(position: GeoPoint, candidates: List[WorkLocation]) -> GeofenceResult:
        """Scan candidates in order; the first in-radius site wins."""
        nearest: Optional[WorkLocation] = None
        nearest_distance = math.inf

        for loc in candidates:
            distance = distance_meters(position, loc.center)
            if math.isnan(distance):
                return GeofenceResult.failed(
                    GeofenceFailureReason.INVALID_POSITION,
                    f"Could not compute distance to {loc.name}.",
                )
            if distance < nearest_distance:
                nearest_distance = distance
                nearest = loc
            if is_within_radius(distance, loc.radius_meters):
                return GeofenceResult(
                    success=True, matched_location_id=loc.id, distance_meters=distance
                )

        return GeofenceResult.failed(
            GeofenceFailureReason.OUT_OF_RADIUS,
            f"You are {round(nearest_distance)}m away from {nearest.name}. "
            f"Must be within {nearest.radius_meters:g}m.",
            nearest_location_name=nearest.name,
            nearest_distance_meters=nearest_distance,
            required_radius_meters=nearest.radius_meters,
        )


def geolocation_failure(error: GeolocationError) -> GeofenceResult:
    """Map a device position failure onto the geofence taxonomy (1:1)."""
    return GeofenceResult.failed(GeofenceFailureReason(error.code.value), str(error))
