import math
from typing import Optional

from pydantic import BaseModel, ConfigDict
from sqlmodel import Field, SQLModel


# Immutable device / site coordinate (degrees, WGS-84)
class GeoPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float

    @property
    def is_finite(self) -> bool:
        return math.isfinite(self.latitude) and math.isfinite(self.longitude)


# Work Site w/ Circular Geofence
class WorkLocation(SQLModel, table=True):
    __tablename__ = "work_locations"

    id: str = Field(primary_key=True, description="Unique location identifier")
    name: str = Field(..., description="Human-friendly location name")
    latitude: float = Field(..., description="Latitude of location center")
    longitude: float = Field(..., description="Longitude of location center")
    radius_meters: float = Field(..., description="Allowed clock radius in meters")
    is_active: bool = Field(default=True, index=True)
    address: Optional[str] = Field(default=None)

    @property
    def center(self) -> GeoPoint:
        return GeoPoint(latitude=self.latitude, longitude=self.longitude)
