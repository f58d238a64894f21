"""
Incident Store Adapter

Thin data-access layer over the alarms, users and alarm_response_log
tables. Every write is one round trip and one commit; nothing is cached
and nothing is retried (creates are not idempotent).
"""

import logging
import time
from datetime import datetime, timezone
from functools import wraps
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from errors import NotFoundError, PersistenceError
from models import (
    Alarm, AlarmResponseLog, FireStation, StationReadiness, User,
    READINESS_READY, ROLE_END_USER,
)

logger = logging.getLogger(__name__)


def _store_call(func):
    """Roll back and convert driver errors into PersistenceError."""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Store error in {func.__name__}: {e}")
            raise PersistenceError("Persistence failure", error=str(e)) from e

    return wrapper


class IncidentStore:
    """Data access for incidents, callers and their response logs."""

    def __init__(self, db: Session):
        self.db = db

    # -------------------------------------------------------------------------
    # Callers
    # -------------------------------------------------------------------------

    @_store_call
    def find_caller_by_phone(self, phone: str) -> Optional[User]:
        return (
            self.db.query(User)
            .filter(User.phone_number == phone)
            .order_by(User.user_id)
            .first()
        )

    @_store_call
    def find_user(self, user_id: int) -> Optional[User]:
        return self.db.get(User, user_id)

    @_store_call
    def find_user_by_id_number(self, id_number: str) -> Optional[User]:
        return (
            self.db.query(User)
            .filter((User.id_number == id_number) | (User.email == id_number))
            .first()
        )

    @_store_call
    def create_caller(self, first_name: str, last_name: str, phone: Optional[str]) -> User:
        # Callers never log in; the placeholder credentials keep NOT NULL
        # constraints on deployments that enforce them happy.
        stamp = int(time.time() * 1000)
        caller = User(
            first_name=first_name,
            last_name=last_name,
            full_name=f"{first_name} {last_name}",
            phone_number=phone,
            password_hash=f"temp_{stamp}",
            role=ROLE_END_USER,
            email=f"caller_{stamp}@bfp.gov",
        )
        self.db.add(caller)
        self.db.commit()
        self.db.refresh(caller)
        return caller

    # -------------------------------------------------------------------------
    # Alarms
    # -------------------------------------------------------------------------

    @_store_call
    def create_incident(
        self,
        caller_id: int,
        lat: float,
        lng: float,
        alarm_level: str,
        status: str,
        station_id: Optional[int] = None,
    ) -> Alarm:
        alarm = Alarm(
            end_user_id=caller_id,
            user_latitude=lat,
            user_longitude=lng,
            initial_alarm_level=alarm_level,
            current_alarm_level=alarm_level,
            status=status,
            dispatched_station_id=station_id,
        )
        self.db.add(alarm)
        self.db.commit()
        self.db.refresh(alarm)
        return alarm

    @_store_call
    def append_log(
        self,
        alarm_id: int,
        action_type: str,
        details: str,
        performed_by: Optional[int],
    ) -> AlarmResponseLog:
        entry = AlarmResponseLog(
            alarm_id=alarm_id,
            action_type=action_type,
            details=details,
            performed_by_user_id=performed_by,
        )
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        return entry

    @_store_call
    def update_alarm_level(self, alarm_id: int, new_level: str) -> Alarm:
        alarm = self.db.get(Alarm, alarm_id)
        if not alarm:
            raise NotFoundError("Incident not found")
        alarm.current_alarm_level = new_level
        self.db.commit()
        self.db.refresh(alarm)
        return alarm

    @_store_call
    def get_incident(self, alarm_id: int) -> Optional[Alarm]:
        return self.db.get(Alarm, alarm_id)

    @_store_call
    def list_incidents(self, limit: int = 50) -> List[Alarm]:
        return (
            self.db.query(Alarm)
            .order_by(Alarm.call_time.desc(), Alarm.alarm_id.desc())
            .limit(limit)
            .all()
        )

    @_store_call
    def get_timeline(self, alarm_id: int) -> List[AlarmResponseLog]:
        return (
            self.db.query(AlarmResponseLog)
            .filter(AlarmResponseLog.alarm_id == alarm_id)
            .order_by(AlarmResponseLog.action_timestamp.desc(), AlarmResponseLog.log_id.desc())
            .all()
        )

    # -------------------------------------------------------------------------
    # Stations
    # -------------------------------------------------------------------------

    @_store_call
    def list_stations(self) -> List[FireStation]:
        return self.db.query(FireStation).order_by(FireStation.station_id).all()

    @_store_call
    def list_ready_stations(self) -> List[FireStation]:
        return (
            self.db.query(FireStation)
            .filter(FireStation.is_ready.is_(True))
            .order_by(FireStation.station_id)
            .all()
        )

    @_store_call
    def get_station(self, station_id: int) -> Optional[FireStation]:
        return self.db.get(FireStation, station_id)

    @_store_call
    def create_station(self, **fields) -> FireStation:
        station = FireStation(**fields)
        self.db.add(station)
        self.db.commit()
        self.db.refresh(station)
        return station

    @_store_call
    def update_station(self, station_id: int, **fields) -> FireStation:
        station = self.db.get(FireStation, station_id)
        if not station:
            raise NotFoundError("Station not found")
        for name, value in fields.items():
            setattr(station, name, value)
        self.db.commit()
        self.db.refresh(station)
        return station

    @_store_call
    def delete_station(self, station_id: int):
        station = self.db.get(FireStation, station_id)
        if not station:
            raise NotFoundError("Station not found")
        self.db.query(StationReadiness).filter(StationReadiness.station_id == station_id).delete()
        self.db.delete(station)
        self.db.commit()

    # -------------------------------------------------------------------------
    # Readiness
    # -------------------------------------------------------------------------

    @_store_call
    def record_readiness(
        self,
        station_id: int,
        status: str,
        readiness_percentage: int,
        equipment_checklist: Optional[dict],
        submitted_by: Optional[int],
    ) -> StationReadiness:
        """Insert a readiness report and flip fire_stations.is_ready in the same commit."""
        station = self.db.get(FireStation, station_id)
        if not station:
            raise NotFoundError("Station not found")

        report = StationReadiness(
            station_id=station_id,
            submitted_by_user_id=submitted_by,
            status=status,
            readiness_percentage=readiness_percentage,
            equipment_checklist=equipment_checklist or {},
        )
        station.is_ready = status == READINESS_READY
        station.last_status_update = datetime.now(timezone.utc)
        self.db.add(report)
        self.db.commit()
        self.db.refresh(report)
        return report

    @_store_call
    def latest_readiness(self, station_id: int) -> Optional[StationReadiness]:
        return (
            self.db.query(StationReadiness)
            .filter(StationReadiness.station_id == station_id)
            .order_by(StationReadiness.submitted_at.desc(), StationReadiness.readiness_id.desc())
            .first()
        )
