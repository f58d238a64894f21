"""
Incident Helper Functions

Contains:
- Alarm level normalization and caller name splitting
- record_incident: the caller-resolve + alarm-insert + log sequence shared
  by the HTTP intake, the end-user intake and the realtime relay
- submit_incident / create_enduser_alarm: intake flows ending in a broadcast
- Nearest ready station selection
"""

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Tuple

from errors import ValidationError, NoStationAvailableError
from incident_store import IncidentStore
from models import Alarm, FireStation, User, STATUS_PENDING_DISPATCH
from schemas_incidents import IncidentReport, EndUserAlarmCreate, IncidentEvent

logger = logging.getLogger(__name__)

DEFAULT_ALARM_LEVEL = "Alarm 1"

# Log action types
ACTION_INITIAL_DISPATCH = "Initial Dispatch"
ACTION_RECEIVED_FROM_STATION = "Received from Station"
ACTION_ALARM_LEVEL_CHANGE = "Alarm Level Change"

# Realtime event names
EVENT_NEW_INCIDENT = "new-incident"
EVENT_INCOMING_INCIDENT = "incoming-incident"
EVENT_INCIDENT_CREATED = "incident-created"

EARTH_RADIUS_KM = 6371
MAX_COVERAGE_RADIUS_KM = 50

_ORDINAL_RE = re.compile(r"(\d+)\s*(?:st|nd|rd|th)\b", re.IGNORECASE)
_NUMBER_RE = re.compile(r"\d+")


# =============================================================================
# NORMALIZATION
# =============================================================================

def normalize_alarm_level(alarm_level: Optional[str]) -> str:
    """
    Map a human-readable alarm level onto the stored 'Alarm N' form.

    "2nd Alarm" -> "Alarm 2". Anything without the word "Alarm", or without
    a tier number ("General Alarm", "Task Force Alpha"), collapses to
    "Alarm 1".
    """
    if not alarm_level or "Alarm" not in alarm_level:
        return DEFAULT_ALARM_LEVEL

    stripped = _ORDINAL_RE.sub(r"\1", alarm_level).strip()
    match = _NUMBER_RE.search(stripped)
    if not match:
        return DEFAULT_ALARM_LEVEL
    return f"Alarm {int(match.group())}"


def split_caller_name(first_name: Optional[str], last_name: Optional[str]) -> Tuple[str, str]:
    """
    Split a combined display name into (first, last).

    Only the first two whitespace-delimited tokens survive; defaults are
    "Unknown" / "Caller".
    """
    names = f"{first_name or ''} {last_name or ''}".strip().split(" ")
    fname = names[0] if names and names[0] else "Unknown"
    lname = names[1] if len(names) > 1 and names[1] else "Caller"
    return fname, lname


def format_incident_details(incident_type: Optional[str], location: Optional[str], narrative: Optional[str]) -> str:
    return (
        f"Incident: {incident_type or 'Not specified'} | "
        f"Location: {location or ''} | "
        f"Narrative: {narrative or 'No details'}"
    )


# =============================================================================
# SHARED RECORD OPERATION
# =============================================================================

@dataclass
class RecordedIncident:
    """Result of record_incident"""
    alarm: Alarm
    caller: User
    alarm_level: str
    log_id: Optional[int] = None

    @property
    def alarm_id(self) -> int:
        return self.alarm.alarm_id

    @property
    def caller_id(self) -> int:
        return self.caller.user_id


def resolve_caller(
    store: IncidentStore,
    phone_number: Optional[str],
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
) -> User:
    """Look up the caller by phone before inserting; create one when unseen."""
    caller = store.find_caller_by_phone(phone_number) if phone_number else None
    if caller:
        return caller

    fname, lname = split_caller_name(first_name, last_name)
    caller = store.create_caller(fname, lname, phone_number)
    logger.info(f"Created caller {caller.user_id} for phone {phone_number}")
    return caller


def record_incident(
    store: IncidentStore,
    *,
    phone_number: Optional[str],
    latitude: float,
    longitude: float,
    alarm_level: Optional[str],
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    incident_type: Optional[str] = None,
    location: Optional[str] = None,
    narrative: Optional[str] = None,
    action_type: str = ACTION_INITIAL_DISPATCH,
    performed_by: Optional[int] = None,
    caller: Optional[User] = None,
    station_id: Optional[int] = None,
    details: Optional[str] = None,
) -> RecordedIncident:
    """
    Caller upsert, alarm insert, log insert, in that order.

    A failure at any step propagates and the later steps do not run.
    An alarm whose log insert fails is left in place.
    """
    if caller is None:
        caller = resolve_caller(store, phone_number, first_name, last_name)

    level = normalize_alarm_level(alarm_level)
    alarm = store.create_incident(
        caller.user_id,
        latitude,
        longitude,
        level,
        STATUS_PENDING_DISPATCH,
        station_id=station_id,
    )

    if details is None:
        details = format_incident_details(incident_type, location, narrative)
    entry = store.append_log(alarm.alarm_id, action_type, details, performed_by)

    logger.info(
        f"Recorded alarm {alarm.alarm_id} ({level}) for caller {caller.user_id} [{action_type}]"
    )
    return RecordedIncident(alarm=alarm, caller=caller, alarm_level=level, log_id=entry.log_id)


# =============================================================================
# INTAKE FLOWS
# =============================================================================

async def submit_incident(store: IncidentStore, hub, report: IncidentReport, performed_by: Optional[int]) -> dict:
    """
    Station intake: validate, record, then publish new-incident to every
    connected dashboard.

    Returns {alarmId, callerId, status, coordinates}.
    """
    report.require_fields()

    recorded = record_incident(
        store,
        phone_number=report.phone_number,
        latitude=report.latitude,
        longitude=report.longitude,
        alarm_level=report.alarm_level,
        first_name=report.first_name,
        last_name=report.last_name,
        incident_type=report.incident_type,
        location=report.location,
        narrative=report.narrative,
        action_type=ACTION_INITIAL_DISPATCH,
        performed_by=performed_by,
    )

    coordinates = {"latitude": report.latitude, "longitude": report.longitude}
    event = {
        "alarmId": recorded.alarm_id,
        "callerId": recorded.caller_id,
        "firstName": report.first_name or None,
        "lastName": report.last_name or None,
        "phoneNumber": report.phone_number or None,
        "incidentType": report.incident_type or None,
        "alarmLevel": report.alarm_level or None,
        "location": report.location or None,
        "narrative": report.narrative or None,
        "coordinates": coordinates,
        "status": STATUS_PENDING_DISPATCH,
    }
    await hub.publish(EVENT_NEW_INCIDENT, event)

    return {
        "alarmId": recorded.alarm_id,
        "callerId": recorded.caller_id,
        "status": STATUS_PENDING_DISPATCH,
        "coordinates": coordinates,
    }


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


@dataclass
class StationChoice:
    station_id: int
    distance_km: float
    distances: List[dict] = field(default_factory=list)


def choose_station(
    stations: List[FireStation],
    latitude: float,
    longitude: float,
) -> StationChoice:
    """Pick the nearest station from a list of ready stations."""
    if not stations:
        raise NoStationAvailableError("No ready stations available")

    distances = []
    best = None
    best_distance = math.inf
    for station in stations:
        dist = haversine_km(latitude, longitude, float(station.latitude), float(station.longitude))
        distances.append({"stationId": station.station_id, "distanceKm": dist})
        if dist < best_distance:
            best_distance = dist
            best = station

    logger.info(f"Nearest ready station {best.station_id} at {best_distance:.2f} km")
    return StationChoice(station_id=best.station_id, distance_km=best_distance, distances=distances)


async def create_enduser_alarm(store: IncidentStore, hub, body: EndUserAlarmCreate) -> dict:
    """
    End-user intake: resolve the caller, dispatch to the nearest ready
    station (or a forced one), record the alarm and notify that station only.
    """
    body.require_fields()

    caller = store.find_user(body.end_user_id) if body.end_user_id else None
    if caller is None and body.phone_number:
        caller = resolve_caller(store, body.phone_number)
    if caller is None:
        raise ValidationError("Either endUserId or phoneNumber is required")

    if body.force_station_id:
        station = store.get_station(body.force_station_id)
        if not station or not station.is_ready:
            raise ValidationError("Forced station is not ready or does not exist")
        choice = choose_station([station], body.latitude, body.longitude)
    else:
        choice = choose_station(store.list_ready_stations(), body.latitude, body.longitude)

    within_radius = choice.distance_km <= MAX_COVERAGE_RADIUS_KM

    recorded = record_incident(
        store,
        phone_number=body.phone_number,
        latitude=body.latitude,
        longitude=body.longitude,
        alarm_level=body.alarm_level,
        caller=caller,
        station_id=choice.station_id,
        action_type=ACTION_INITIAL_DISPATCH,
        details=(
            f"End-user alarm: {body.incident_type or 'Not specified'} | "
            f"Location: {body.location or ''} | {body.narrative or ''}"
        ),
    )

    coordinates = {"latitude": body.latitude, "longitude": body.longitude}
    await hub.route_to_station(choice.station_id, EVENT_INCOMING_INCIDENT, {
        "alarmId": recorded.alarm_id,
        "callerId": recorded.caller_id,
        "phoneNumber": body.phone_number or None,
        "incidentType": body.incident_type or None,
        "alarmLevel": recorded.alarm_level,
        "location": body.location or None,
        "narrative": body.narrative or None,
        "coordinates": coordinates,
        "dispatchedStationId": choice.station_id,
        "status": STATUS_PENDING_DISPATCH,
    })

    return {
        "message": "Alarm created and dispatched",
        "alarmId": recorded.alarm_id,
        "dispatchedStationId": choice.station_id,
        "callerId": recorded.caller_id,
        "coordinates": coordinates,
        "status": STATUS_PENDING_DISPATCH,
        "distances": choice.distances,
        "chosenDistanceKm": choice.distance_km,
        "withinRadius": within_radius,
        "maxRadiusKm": MAX_COVERAGE_RADIUS_KM,
    }


def change_alarm_level(store: IncidentStore, alarm_id: int, new_alarm_level: Optional[str], performed_by: Optional[int]) -> Alarm:
    """Set current_alarm_level verbatim and append an 'Alarm Level Change' entry."""
    if not new_alarm_level:
        raise ValidationError("New alarm level is required")

    alarm = store.update_alarm_level(alarm_id, new_alarm_level)
    store.append_log(alarm_id, ACTION_ALARM_LEVEL_CHANGE, f"Changed to {new_alarm_level}", performed_by)
    logger.info(f"Alarm {alarm_id} level changed to {new_alarm_level}")
    return alarm


# =============================================================================
# REALTIME RELAY
# =============================================================================

def record_relayed_incident(store: IncidentStore, event: IncidentEvent) -> Tuple[RecordedIncident, dict]:
    """
    Persist a socket-originated new-incident the same way the HTTP intake
    does. Returns the record and the incident-created confirmation payload.
    """
    if not event.phone_number:
        raise ValidationError("Realtime incident is missing phoneNumber")

    coords = event.coordinates
    recorded = record_incident(
        store,
        phone_number=event.phone_number,
        latitude=coords.latitude if coords else 0,
        longitude=coords.longitude if coords else 0,
        alarm_level=event.alarm_level,
        first_name=event.first_name,
        last_name=event.last_name,
        incident_type=event.incident_type,
        location=event.location,
        narrative=event.narrative,
        action_type=ACTION_RECEIVED_FROM_STATION,
        performed_by=None,  # No authenticated user on socket events
    )

    confirmation = {
        "alarmId": recorded.alarm_id,
        "callerId": recorded.caller_id,
        "phoneNumber": event.phone_number,
        "coordinates": (
            {"latitude": coords.latitude, "longitude": coords.longitude} if coords else None
        ),
        "alarmLevel": recorded.alarm_level,
        "status": STATUS_PENDING_DISPATCH,
        "createdAt": datetime.now(timezone.utc).isoformat(),
    }
    return recorded, confirmation
