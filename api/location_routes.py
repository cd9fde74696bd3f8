from typing import List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from db.session import get_engine
from models.entity import EntityKind, EntityRef
from models.geo import WorkLocation
from services.geofence_service import GeofenceResolver, LocationTier
from services.location_feed import LocationFeedError, SqlLocationFeed

router = APIRouter()

# --- Pydantic Models for Response ---


class LocationGeofenceResponse(BaseModel):
    location_id: str
    name: str
    latitude: float
    longitude: float
    radius_meters: float


class EntityLocationsResponse(BaseModel):
    entity_kind: EntityKind
    entity_id: str
    tier: LocationTier
    locations: List[LocationGeofenceResponse]


def _to_response(loc: WorkLocation) -> LocationGeofenceResponse:
    return LocationGeofenceResponse(
        location_id=loc.id,
        name=loc.name,
        latitude=loc.latitude,
        longitude=loc.longitude,
        radius_meters=loc.radius_meters,
    )


# --- API Endpoints ---


@router.get("/active", response_model=List[LocationGeofenceResponse])
async def get_active_locations(engine=Depends(get_engine)):
    """
    Retrieve the geofence (center and radius) of every active work location.
    """
    try:
        locations = await SqlLocationFeed(engine).active_locations()
    except LocationFeedError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return [_to_response(loc) for loc in locations]


@router.get("/{kind}/{entity_id}", response_model=EntityLocationsResponse)
async def get_entity_locations(
    kind: EntityKind, entity_id: str, engine=Depends(get_engine)
):
    """
    Show which locations an entity may clock at, and which assignment tier they came from.
    """
    resolver = GeofenceResolver(SqlLocationFeed(engine))
    try:
        tier, locations = await resolver.candidates(
            EntityRef(kind=kind, entity_id=entity_id)
        )
    except LocationFeedError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return EntityLocationsResponse(
        entity_kind=kind,
        entity_id=entity_id,
        tier=tier,
        locations=[_to_response(loc) for loc in locations],
    )
