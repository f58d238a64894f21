"""
Auth router - station admin login
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
import logging

from database import get_db
from errors import AuthError, ValidationError
from incident_store import IncidentStore
from jwt_auth import TokenClaims, create_access_token, get_current_user, verify_password
from schemas_incidents import LoginRequest

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/login")
async def login(data: LoginRequest, db: Session = Depends(get_db)):
    """Verify ID number + password and issue an access token"""
    if not data.id_number or not data.password:
        raise ValidationError("ID Number and password are required")

    user = IncidentStore(db).find_user_by_id_number(data.id_number)
    if not user or not user.password_hash or not verify_password(data.password, user.password_hash):
        logger.info(f"Failed login for {data.id_number}")
        raise AuthError("Invalid ID Number or password")

    token = create_access_token(
        user_id=user.user_id,
        role=user.role,
        id_number=user.id_number or user.email,
        name=user.display_name,
        assigned_station_id=user.assigned_station_id,
    )

    station = user.assigned_station
    return {
        "token": token,
        "user": {
            "id": user.user_id,
            "idNumber": user.id_number or user.email,
            "name": user.display_name,
            "firstName": user.first_name or "",
            "lastName": user.last_name or "",
            "assignedStationId": user.assigned_station_id,
            "stationInfo": station.to_dict() if station else None,
            "role": user.role,
            "assigned": user.assigned_station_id is not None,
        },
    }


@router.get("/me")
async def me(user: TokenClaims = Depends(get_current_user)):
    return {
        "id": user.user_id,
        "role": user.role,
        "idNumber": user.id_number,
        "name": user.name,
        "assignedStationId": user.assigned_station_id,
    }
