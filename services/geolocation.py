"""Device position adapter.

The device reports a single-shot position fix or one of four failures, and
the clock flow maps each failure one-to-one onto a geofence reason. A fix
that does not arrive within the timeout is reported as `timeout`, never as a
denied permission.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional, Protocol

from models.geo import GeoPoint

logger = logging.getLogger(__name__)


class GeolocationErrorCode(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    POSITION_UNAVAILABLE = "position_unavailable"
    TIMEOUT = "timeout"
    NOT_SUPPORTED = "not_supported"


GEOLOCATION_MESSAGES = {
    GeolocationErrorCode.PERMISSION_DENIED: (
        "Location access denied. Please enable location permissions to clock in/out."
    ),
    GeolocationErrorCode.POSITION_UNAVAILABLE: (
        "Location unavailable. Please ensure GPS is enabled."
    ),
    GeolocationErrorCode.TIMEOUT: "Location request timed out. Please try again.",
    GeolocationErrorCode.NOT_SUPPORTED: "Geolocation is not supported by this device.",
}


class GeolocationError(Exception):
    def __init__(self, code: GeolocationErrorCode, message: Optional[str] = None):
        self.code = code
        super().__init__(message or GEOLOCATION_MESSAGES[code])


class GeolocationProvider(Protocol):
    supported: bool

    async def get_current_position(self) -> GeoPoint:
        """Return one fix or raise GeolocationError."""
        ...


class FixedPositionProvider:
    """Provider for a position the client already resolved (e.g. submitted with a request)."""

    supported = True

    def __init__(self, latitude: Optional[float], longitude: Optional[float]):
        self.latitude = latitude
        self.longitude = longitude

    async def get_current_position(self) -> GeoPoint:
        if self.latitude is None or self.longitude is None:
            raise GeolocationError(GeolocationErrorCode.POSITION_UNAVAILABLE)
        return GeoPoint(latitude=self.latitude, longitude=self.longitude)


async def acquire_position(
    provider: Optional[GeolocationProvider], timeout_seconds: float
) -> GeoPoint:
    """Await one position fix, bounded by `timeout_seconds`.

    Raises:
        GeolocationError: With the provider's code, `timeout` when the fix does
            not arrive in time, or `not_supported` when there is no provider.
    """
    if provider is None or not getattr(provider, "supported", True):
        raise GeolocationError(GeolocationErrorCode.NOT_SUPPORTED)

    try:
        return await asyncio.wait_for(
            provider.get_current_position(), timeout=timeout_seconds
        )
    except asyncio.TimeoutError:
        logger.warning(f"[GEOFENCE] Position fix timed out after {timeout_seconds}s")
        raise GeolocationError(GeolocationErrorCode.TIMEOUT)
