"""
JWT Authentication Module for the BFP dispatch API

Station admins log in with their ID number and password and receive a
signed access token. Every protected endpoint validates that token by
signature only (CPU, no DB hit).

Delivery:
- HTTP: Authorization: Bearer <token> header (dashboards, mobile)
- Browser fallback: "bfp_jwt" cookie
- WebSocket: ?token=<jwt> query parameter during handshake

DEPENDENCIES: PyJWT, bcrypt
"""

import os
import secrets
import logging
from datetime import datetime, timezone, timedelta
from typing import Optional

import bcrypt
import jwt  # PyJWT
from fastapi import Request

from errors import AuthError

logger = logging.getLogger(__name__)

# =============================================================================
# CONFIGURATION
# =============================================================================

# JWT signing key. MUST be set in production via environment variable.
# If not set, generates a random key (tokens invalidated on restart, fine for dev).
_default_secret = secrets.token_urlsafe(64)
JWT_SECRET = os.environ.get("BFP_JWT_SECRET", _default_secret)
if JWT_SECRET == _default_secret:
    logger.warning(
        "JWT_SECRET not set in environment, using random key. "
        "Tokens will be invalidated on restart. "
        "Set BFP_JWT_SECRET for persistent tokens."
    )

JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_LIFETIME = timedelta(hours=24)

ACCESS_COOKIE = "bfp_jwt"

# =============================================================================
# PASSWORDS
# =============================================================================


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password against bcrypt hash"""
    try:
        return bcrypt.checkpw(plain_password.encode('utf-8'), hashed_password.encode('utf-8'))
    except ValueError:
        return False


def hash_password(password: str) -> str:
    """Hash a password"""
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')


# =============================================================================
# TOKEN CREATION
# =============================================================================


def create_access_token(
    user_id: int,
    role: str,
    id_number: Optional[str] = None,
    name: Optional[str] = None,
    assigned_station_id: Optional[int] = None,
) -> str:
    """
    Create a signed JWT access token.

    Args:
        user_id: users.user_id of the authenticated admin
        role: "admin", "station_admin", ...
        id_number: Login ID (badge number or email)
        name: Display name
        assigned_station_id: Station the user belongs to, if any

    Returns:
        Encoded JWT string
    """
    now = datetime.now(timezone.utc)

    payload = {
        "id": user_id,
        "role": role,
        "idNumber": id_number,
        "name": name,
        "assignedStationId": assigned_station_id,
        "iat": now,
        "exp": now + ACCESS_TOKEN_LIFETIME,
    }

    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


# =============================================================================
# TOKEN VALIDATION
# =============================================================================


class TokenClaims:
    """Parsed and validated JWT claims."""

    __slots__ = (
        "user_id",
        "role",
        "id_number",
        "name",
        "assigned_station_id",
        "exp",
    )

    def __init__(self, payload: dict):
        self.user_id = payload["id"]
        self.role = payload.get("role", "end_user")
        self.id_number = payload.get("idNumber")
        self.name = payload.get("name")
        self.assigned_station_id = payload.get("assignedStationId")
        self.exp = payload.get("exp")

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def decode_access_token(token: str) -> TokenClaims:
    """
    Validate a JWT access token by checking its signature and expiration.

    Raises:
        AuthError: 401 when expired, 403 when malformed or badly signed.
    """
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthError("Token has expired", status_code=401)
    except jwt.InvalidTokenError as e:
        logger.warning(f"Invalid JWT: {e}")
        raise AuthError("Invalid or malformed token", status_code=403)

    try:
        return TokenClaims(payload)
    except KeyError:
        raise AuthError("Invalid or malformed token", status_code=403)


def validate_access_token(token: str) -> Optional[TokenClaims]:
    """Like decode_access_token, but returns None instead of raising."""
    try:
        return decode_access_token(token)
    except AuthError:
        return None


# =============================================================================
# TOKEN EXTRACTION (multi-transport)
# =============================================================================


def extract_token_from_request(request) -> Optional[str]:
    """
    Extract JWT access token from request.

    Priority order:
    1. Authorization: Bearer <token> header
    2. bfp_jwt cookie (browser)
    """
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]

    token = request.cookies.get(ACCESS_COOKIE)
    if token:
        return token

    return None


def extract_token_from_websocket_params(websocket) -> Optional[str]:
    """
    Extract JWT from WebSocket query parameters, falling back to the cookie.

    Cookies are not reliably sent on WebSocket upgrade requests across all
    browsers/devices, so ?token=<jwt> is preferred.
    """
    token = websocket.query_params.get("token")
    if token:
        return token

    token = websocket.cookies.get(ACCESS_COOKIE)
    if token:
        return token

    return None


# =============================================================================
# FASTAPI DEPENDENCIES
# =============================================================================


def get_current_user(request: Request) -> TokenClaims:
    """Dependency for protected endpoints."""
    token = extract_token_from_request(request)
    if not token:
        raise AuthError("Access token is missing", status_code=401)
    return decode_access_token(token)


def require_role(role: str):
    """Dependency factory restricting an endpoint to one role."""

    def _check(request: Request) -> TokenClaims:
        claims = get_current_user(request)
        if claims.role != role:
            raise AuthError("Forbidden: insufficient role", status_code=403)
        return claims

    return _check
