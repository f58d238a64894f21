"""
Incident Pydantic Schemas

Wire payloads use camelCase (dashboards and the mobile app send
firstName, phoneNumber, ...); Python code uses snake_case attributes.
Coordinates arrive in two shapes, {lat, lng} or {latitude, longitude},
and are converted to one canonical form on receipt.
"""

import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from errors import ValidationError

logger = logging.getLogger(__name__)


# Fallback point used when an event carries no coordinates (Manila)
DEFAULT_LATITUDE = 14.5995
DEFAULT_LONGITUDE = 120.9842

# Largest id a 32-bit INTEGER primary key can hold, plus one
MAX_ROW_ID = 2 ** 31


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# COORDINATES
# =============================================================================

class Coordinates(BaseModel):
    """Canonical coordinate pair"""
    latitude: float
    longitude: float

    @model_validator(mode="before")
    @classmethod
    def _accept_short_keys(cls, data):
        if isinstance(data, dict):
            data = dict(data)
            if data.get("latitude") is None and data.get("lat") is not None:
                data["latitude"] = data.pop("lat")
            if data.get("longitude") is None and data.get("lng") is not None:
                data["longitude"] = data.pop("lng")
        return data

    @classmethod
    def fallback(cls) -> "Coordinates":
        return cls(latitude=DEFAULT_LATITUDE, longitude=DEFAULT_LONGITUDE)


def normalize_coordinates(value) -> Coordinates:
    """
    Accept either coordinate shape. Absent, partial or unreadable values
    fall back to the default point.
    """
    if value is None:
        return Coordinates.fallback()
    if isinstance(value, Coordinates):
        return value
    if not isinstance(value, dict):
        logger.warning(f"Unsupported coordinates value {value!r}, using fallback point")
        return Coordinates.fallback()

    lat = value.get("lat", value.get("latitude"))
    lng = value.get("lng", value.get("longitude"))
    if lat is None or lng is None:
        return Coordinates.fallback()
    try:
        return Coordinates(latitude=float(lat), longitude=float(lng))
    except (TypeError, ValueError):
        logger.warning(f"Non-numeric coordinates {value!r}, using fallback point")
        return Coordinates.fallback()


# =============================================================================
# HTTP REQUEST BODIES
# =============================================================================

class IncidentReport(CamelModel):
    """POST /create-incident body. Required fields are checked by require_fields()."""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    location: Optional[str] = None
    incident_type: Optional[str] = None
    alarm_level: Optional[str] = None
    narrative: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def require_fields(self):
        if (
            not self.phone_number
            or self.latitude is None
            or self.longitude is None
            or not self.alarm_level
        ):
            raise ValidationError("Phone number, coordinates, and alarm level are required")


class AlarmLevelUpdate(CamelModel):
    new_alarm_level: Optional[str] = None


class EndUserAlarmCreate(CamelModel):
    """POST /enduser/create-alarm body (mobile app)"""
    end_user_id: Optional[int] = None
    phone_number: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    incident_type: Optional[str] = None
    alarm_level: Optional[str] = None
    location: Optional[str] = None
    narrative: Optional[str] = None
    force_station_id: Optional[int] = None

    def require_fields(self):
        if self.latitude is None or self.longitude is None:
            raise ValidationError("Coordinates (latitude and longitude) are required")


class LoginRequest(CamelModel):
    id_number: Optional[str] = None
    password: Optional[str] = None


class StationCreate(CamelModel):
    """POST /firestations body (admin)"""
    station_name: Optional[str] = None
    province: Optional[str] = None
    city: Optional[str] = None
    contact_number: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    station_type: Optional[str] = None

    def require_fields(self):
        if not self.station_name or self.latitude is None or self.longitude is None or not self.station_type:
            raise ValidationError("Missing required fields: stationName, latitude, longitude, stationType")


class StationUpdate(CamelModel):
    """PUT /firestations/{id} body; only the fields sent are changed"""
    station_name: Optional[str] = None
    province: Optional[str] = None
    city: Optional[str] = None
    contact_number: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    station_type: Optional[str] = None

    def changes(self) -> dict:
        fields = self.model_dump(exclude_unset=True, exclude={"latitude", "longitude"})
        # Coordinates only move as a pair
        if self.latitude is not None and self.longitude is not None:
            fields["latitude"] = self.latitude
            fields["longitude"] = self.longitude
        if not fields:
            raise ValidationError("No fields provided to update")
        return fields


class ReadinessSubmit(CamelModel):
    """POST /station-readiness body"""
    status: Optional[str] = None
    readiness_percentage: Optional[int] = Field(default=None, ge=0, le=100)
    equipment_checklist: Optional[Dict[str, Any]] = None

    def require_fields(self):
        if not self.status or self.readiness_percentage is None:
            raise ValidationError("Status and readiness percentage are required")


# =============================================================================
# REALTIME EVENT
# =============================================================================

class IncidentEvent(CamelModel):
    """
    Normalized realtime incident payload.

    Exists only on the wire; alarm_id doubles as the originating
    identifier receiving clients use to key their call records.
    """
    alarm_id: Optional[int] = Field(default=None, ge=1, lt=MAX_ROW_ID)
    caller_id: Optional[int] = Field(default=None, ge=1, lt=MAX_ROW_ID)
    phone_number: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    incident_type: Optional[str] = None
    alarm_level: Optional[str] = None
    location: Optional[str] = None
    narrative: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    status: Optional[str] = None
    dispatched_station_id: Optional[int] = None

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
