"""
Incidents router - intake, listing and alarm level changes

POST  /create-incident                         station intake (auth)
GET   /incidents                               newest 50 alarms (auth)
GET   /incidents/{alarm_id}                    alarm + response timeline (auth)
PATCH /incidents/{alarm_id}/update-alarm-level escalate/de-escalate (auth)
POST  /enduser/create-alarm                    mobile intake, nearest-station dispatch
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
import logging

from broadcast_hub import BroadcastHub
from database import get_db
from errors import NotFoundError
from incident_helpers import submit_incident, create_enduser_alarm, change_alarm_level
from incident_store import IncidentStore
from jwt_auth import TokenClaims, get_current_user
from routers.websocket import get_hub
from schemas_incidents import IncidentReport, AlarmLevelUpdate, EndUserAlarmCreate

logger = logging.getLogger(__name__)
router = APIRouter()


def get_store(db: Session = Depends(get_db)) -> IncidentStore:
    return IncidentStore(db)


# =============================================================================
# STATION INTAKE
# =============================================================================

@router.post("/create-incident", status_code=201)
async def create_incident(
    report: IncidentReport,
    store: IncidentStore = Depends(get_store),
    hub: BroadcastHub = Depends(get_hub),
    user: TokenClaims = Depends(get_current_user),
):
    """Create an alarm from a station report and broadcast it to every dashboard"""
    logger.info(f"[CreateIncident] user={user.user_id} phone={report.phone_number} level={report.alarm_level}")

    result = await submit_incident(store, hub, report, performed_by=user.user_id)

    return {"message": "Incident created successfully", **result}


# =============================================================================
# READS
# =============================================================================

@router.get("/incidents")
async def list_incidents(
    limit: int = 50,
    store: IncidentStore = Depends(get_store),
    user: TokenClaims = Depends(get_current_user),
):
    """Newest alarms first"""
    alarms = store.list_incidents(limit=limit)
    return {
        "incidents": [a.to_dict() for a in alarms],
        "total": len(alarms),
    }


@router.get("/incidents/{alarm_id}")
async def get_incident(
    alarm_id: int,
    store: IncidentStore = Depends(get_store),
    user: TokenClaims = Depends(get_current_user),
):
    """Alarm details with its response log, newest entry first"""
    alarm = store.get_incident(alarm_id)
    if not alarm:
        raise NotFoundError("Incident not found")

    return {
        "incident": alarm.to_dict(),
        "timeline": [entry.to_dict() for entry in store.get_timeline(alarm_id)],
    }


# =============================================================================
# ALARM LEVEL
# =============================================================================

@router.patch("/incidents/{alarm_id}/update-alarm-level")
async def update_alarm_level(
    alarm_id: int,
    data: AlarmLevelUpdate,
    store: IncidentStore = Depends(get_store),
    user: TokenClaims = Depends(get_current_user),
):
    change_alarm_level(store, alarm_id, data.new_alarm_level, performed_by=user.user_id)

    return {
        "message": "Alarm level updated",
        "alarmId": alarm_id,
        "newAlarmLevel": data.new_alarm_level,
    }


# =============================================================================
# END-USER INTAKE
# =============================================================================

@router.post("/enduser/create-alarm")
async def enduser_create_alarm(
    body: EndUserAlarmCreate,
    store: IncidentStore = Depends(get_store),
    hub: BroadcastHub = Depends(get_hub),
):
    """
    End-user alarm from the mobile app.

    Dispatched to the nearest ready station (or forceStationId) and routed
    as incoming-incident to that station's group only.
    """
    result = await create_enduser_alarm(store, hub, body)
    return JSONResponse(status_code=201, content=result)
