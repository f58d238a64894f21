"""
Fire stations router - station lookup, admin station management and
officer readiness reports.

GET    /firestations                      list (public)
GET    /firestations/{id}                 detail (public)
POST   /firestations                      create (admin)
PUT    /firestations/{id}                 partial update (admin)
DELETE /firestations/{id}                 delete (admin)
POST   /station-readiness                 readiness report for the caller's station
GET    /station-readiness/{station_id}    latest report for a station
GET    /stations-readiness-overview       every station with its latest report

A READY report sets fire_stations.is_ready, which decides whether the
station is eligible for end-user alarm dispatch.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
import logging

from database import get_db
from errors import AuthError, NotFoundError
from incident_store import IncidentStore
from jwt_auth import TokenClaims, get_current_user, require_role
from models import ROLE_ADMIN
from schemas_incidents import StationCreate, StationUpdate, ReadinessSubmit

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# STATIONS
# =============================================================================

@router.get("/firestations")
async def list_stations(ready_only: bool = False, db: Session = Depends(get_db)):
    store = IncidentStore(db)
    stations = store.list_ready_stations() if ready_only else store.list_stations()
    return {"stations": [s.to_dict() for s in stations]}


@router.get("/firestations/{station_id}")
async def get_station(station_id: int, db: Session = Depends(get_db)):
    station = IncidentStore(db).get_station(station_id)
    if not station:
        raise NotFoundError("Station not found")
    return {"station": station.to_dict()}


@router.post("/firestations", status_code=201)
async def create_station(
    data: StationCreate,
    db: Session = Depends(get_db),
    admin: TokenClaims = Depends(require_role(ROLE_ADMIN)),
):
    data.require_fields()
    station = IncidentStore(db).create_station(**data.model_dump())
    logger.info(f"Station {station.station_id} ({station.station_name}) created by user {admin.user_id}")
    return {"message": "Station created", "stationId": station.station_id}


@router.put("/firestations/{station_id}")
async def update_station(
    station_id: int,
    data: StationUpdate,
    db: Session = Depends(get_db),
    admin: TokenClaims = Depends(require_role(ROLE_ADMIN)),
):
    IncidentStore(db).update_station(station_id, **data.changes())
    logger.info(f"Station {station_id} updated by user {admin.user_id}")
    return {"message": "Station updated", "stationId": station_id}


@router.delete("/firestations/{station_id}")
async def delete_station(
    station_id: int,
    db: Session = Depends(get_db),
    admin: TokenClaims = Depends(require_role(ROLE_ADMIN)),
):
    IncidentStore(db).delete_station(station_id)
    logger.info(f"Station {station_id} deleted by user {admin.user_id}")
    return {"message": "Station deleted"}


# =============================================================================
# READINESS
# =============================================================================

@router.post("/station-readiness", status_code=201)
async def submit_readiness(
    data: ReadinessSubmit,
    db: Session = Depends(get_db),
    user: TokenClaims = Depends(get_current_user),
):
    """Readiness report for the station the officer is assigned to"""
    data.require_fields()
    if not user.assigned_station_id:
        raise AuthError("You are not assigned to any station", status_code=403)

    report = IncidentStore(db).record_readiness(
        user.assigned_station_id,
        data.status,
        data.readiness_percentage,
        data.equipment_checklist,
        submitted_by=user.user_id,
    )
    logger.info(f"Station {report.station_id} readiness {report.status} ({report.readiness_percentage}%)")

    return {
        "message": "Station readiness submitted successfully",
        "readinessId": report.readiness_id,
        "stationId": report.station_id,
        "status": report.status,
        "readinessPercentage": report.readiness_percentage,
    }


@router.get("/station-readiness/{station_id}")
async def get_readiness(
    station_id: int,
    db: Session = Depends(get_db),
    user: TokenClaims = Depends(get_current_user),
):
    report = IncidentStore(db).latest_readiness(station_id)
    if not report:
        raise NotFoundError("No readiness record found for this station")
    return report.to_dict()


@router.get("/stations-readiness-overview")
async def readiness_overview(
    db: Session = Depends(get_db),
    user: TokenClaims = Depends(get_current_user),
):
    store = IncidentStore(db)
    overview = []
    for station in store.list_stations():
        latest = store.latest_readiness(station.station_id)
        overview.append({
            "stationId": station.station_id,
            "stationName": station.station_name,
            "isReady": bool(station.is_ready),
            "readinessStatus": latest.status if latest else "UNKNOWN",
            "readinessPercentage": latest.readiness_percentage if latest else 0,
            "lastSubmittedBy": latest.submitted_by.display_name if latest and latest.submitted_by else "N/A",
            "lastReadinessUpdate": latest.to_dict()["submittedAt"] if latest else None,
            "lastStatusUpdate": station.to_dict()["last_status_update"],
        })
    return {"overview": overview}
