"""
SQLAlchemy models for the BFP dispatch API

Callers, station admins and officers all live in `users`; callers are
rows with role 'end_user' created lazily from incident reports.
"""

from sqlalchemy import Column, Integer, String, Boolean, Text, ForeignKey, Float, DateTime, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


# =============================================================================
# CONSTANTS
# =============================================================================

STATUS_PENDING_DISPATCH = "Pending Dispatch"
STATUS_DISPATCHED = "Dispatched"
STATUS_RESOLVED = "Resolved"

ROLE_END_USER = "end_user"
ROLE_ADMIN = "admin"
ROLE_STATION_ADMIN = "station_admin"


# =============================================================================
# STATIONS & USERS
# =============================================================================

class FireStation(Base):
    """Physical fire station, target of station-scoped routing"""
    __tablename__ = "fire_stations"

    station_id = Column(Integer, primary_key=True)
    station_name = Column(String(100), nullable=False)
    city = Column(String(100))
    province = Column(String(100))
    contact_number = Column(String(30))
    latitude = Column(Float)
    longitude = Column(Float)
    station_type = Column(String(30))         # "main" or "substation"
    is_ready = Column(Boolean, default=False)
    last_status_update = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=func.current_timestamp())

    def to_dict(self) -> dict:
        return {
            "station_id": self.station_id,
            "station_name": self.station_name,
            "city": self.city,
            "province": self.province,
            "contact_number": self.contact_number,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "station_type": self.station_type,
            "is_ready": bool(self.is_ready),
            "last_status_update": _iso(self.last_status_update),
        }


class User(Base):
    """Callers (end users), station admins and officers"""
    __tablename__ = "users"

    user_id = Column(Integer, primary_key=True)
    id_number = Column(String(50))            # Officer badge / login ID
    first_name = Column(String(50))
    last_name = Column(String(50))
    full_name = Column(String(120))
    phone_number = Column(String(30), index=True)  # Caller natural key, not unique
    email = Column(String(255))
    password_hash = Column(String(255))
    role = Column(String(20), default=ROLE_END_USER)
    assigned_station_id = Column(Integer, ForeignKey("fire_stations.station_id"))
    created_at = Column(DateTime(timezone=True), default=func.current_timestamp())

    assigned_station = relationship("FireStation")

    @property
    def display_name(self):
        return self.full_name or f"{self.first_name or ''} {self.last_name or ''}".strip()


# =============================================================================
# ALARMS
# =============================================================================

class Alarm(Base):
    """A reported fire/medical emergency"""
    __tablename__ = "alarms"

    alarm_id = Column(Integer, primary_key=True)
    end_user_id = Column(Integer, ForeignKey("users.user_id"), nullable=False)
    user_latitude = Column(Float, nullable=False)
    user_longitude = Column(Float, nullable=False)
    initial_alarm_level = Column(String(20), nullable=False)   # Alarm 1 .. Alarm 5
    current_alarm_level = Column(String(20), nullable=False)
    status = Column(String(30), nullable=False, default=STATUS_PENDING_DISPATCH)
    dispatched_station_id = Column(Integer, ForeignKey("fire_stations.station_id"))
    call_time = Column(DateTime(timezone=True), default=func.current_timestamp())
    dispatch_time = Column(DateTime(timezone=True))
    resolve_time = Column(DateTime(timezone=True))

    caller = relationship("User")
    dispatched_station = relationship("FireStation")

    def to_dict(self) -> dict:
        caller = self.caller
        return {
            "alarm_id": self.alarm_id,
            "end_user_id": self.end_user_id,
            "full_name": caller.full_name if caller else None,
            "phone_number": caller.phone_number if caller else None,
            "user_latitude": self.user_latitude,
            "user_longitude": self.user_longitude,
            "initial_alarm_level": self.initial_alarm_level,
            "current_alarm_level": self.current_alarm_level,
            "status": self.status,
            "dispatched_station_id": self.dispatched_station_id,
            "station_name": self.dispatched_station.station_name if self.dispatched_station else None,
            "call_time": _iso(self.call_time),
            "dispatch_time": _iso(self.dispatch_time),
            "resolve_time": _iso(self.resolve_time),
        }


class AlarmResponseLog(Base):
    """Append-only action trail for an alarm"""
    __tablename__ = "alarm_response_log"

    log_id = Column(Integer, primary_key=True)
    alarm_id = Column(Integer, ForeignKey("alarms.alarm_id"), nullable=False, index=True)
    action_timestamp = Column(DateTime(timezone=True), default=func.current_timestamp())
    action_type = Column(String(50), nullable=False)   # Initial Dispatch, Alarm Level Change, ...
    details = Column(Text)
    performed_by_user_id = Column(Integer, ForeignKey("users.user_id"))

    def to_dict(self) -> dict:
        return {
            "log_id": self.log_id,
            "action_timestamp": _iso(self.action_timestamp),
            "action_type": self.action_type,
            "details": self.details,
            "performed_by_user_id": self.performed_by_user_id,
        }


def _iso(value):
    return value.isoformat() if value else None


# =============================================================================
# STATION READINESS
# =============================================================================

READINESS_READY = "READY"


class StationReadiness(Base):
    """Readiness report submitted by an officer; the newest one drives fire_stations.is_ready"""
    __tablename__ = "station_readiness"

    readiness_id = Column(Integer, primary_key=True)
    station_id = Column(Integer, ForeignKey("fire_stations.station_id"), nullable=False, index=True)
    submitted_by_user_id = Column(Integer, ForeignKey("users.user_id"))
    status = Column(String(20), nullable=False)          # READY / NOT_READY / ...
    readiness_percentage = Column(Integer, nullable=False)
    equipment_checklist = Column(JSON)
    submitted_at = Column(DateTime(timezone=True), default=func.current_timestamp())

    station = relationship("FireStation")
    submitted_by = relationship("User")

    def to_dict(self) -> dict:
        return {
            "readinessId": self.readiness_id,
            "stationId": self.station_id,
            "stationName": self.station.station_name if self.station else None,
            "status": self.status,
            "readinessPercentage": self.readiness_percentage,
            "equipmentChecklist": self.equipment_checklist or {},
            "submittedBy": self.submitted_by.display_name if self.submitted_by else "",
            "submittedAt": _iso(self.submitted_at),
        }
