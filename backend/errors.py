"""
Error taxonomy for the incident intake and relay paths.

Each error carries the HTTP status it maps to; main.py renders them as
{"message": ..., "error": ...} JSON bodies.
"""

from typing import Optional


class IncidentError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str, error: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.error = error

    def to_dict(self) -> dict:
        body = {"message": self.message}
        if self.error:
            body["error"] = self.error
        return body


class ValidationError(IncidentError):
    """Missing or malformed required field."""

    status_code = 400


class AuthError(IncidentError):
    """Missing, expired or invalid bearer credential."""

    status_code = 401

    def __init__(self, message: str, status_code: int = 401):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(IncidentError):
    """Referenced incident or station does not exist."""

    status_code = 404


class NoStationAvailableError(IncidentError):
    status_code = 503


class PersistenceError(IncidentError):
    """External store failure. The underlying message is passed through."""

    status_code = 500
