# utils/geofence.py

from math import atan2, cos, radians, sin, sqrt

from models.geo import GeoPoint

EARTH_RADIUS_METERS = 6371000


def haversine_dist(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    R = EARTH_RADIUS_METERS
    φ1, φ2 = radians(lat1), radians(lat2)
    Δφ = radians(lat2 - lat1)
    Δλ = radians(lng2 - lng1)

    a = sin(Δφ / 2) ** 2 + cos(φ1) * cos(φ2) * sin(Δλ / 2) ** 2
    c = 2 * atan2(sqrt(a), sqrt(1 - a))
    return R * c


def distance_meters(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance between two points. NaN coordinates yield NaN."""
    return haversine_dist(a.latitude, a.longitude, b.latitude, b.longitude)


def is_within_radius(distance_m: float, radius_m: float) -> bool:
    """Whether a measured distance falls inside a geofence radius. NaN is never inside."""
    # Boundary is inclusive
    return distance_m <= radius_m
