"""
Dashboard Incident Consumer

Station-dashboard side of the realtime channel. Turns new-incident /
incoming-incident frames into call records, raises a notification and a
sticky toast for each, and keeps the pending list the incident-review
form is pre-filled from.

Receiving the same incident twice (generic broadcast plus a direct relay)
yields two call records; nothing is de-duplicated.
"""

import json
import logging
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import AsyncIterable, Awaitable, Callable, List, Optional, Union

from schemas_incidents import Coordinates, normalize_coordinates

logger = logging.getLogger(__name__)

REVIEW_FORM_ROUTE = "/incident-report"


@dataclass
class CallRecord:
    """Normalized in-memory call built from one incident event"""
    id: Union[int, str]
    number: str
    phone_number: str
    first_name: str = ""
    last_name: str = ""
    location: str = ""
    incident_type: str = ""
    narrative: str = ""
    alarm_level: str = ""
    coordinates: Coordinates = field(default_factory=Coordinates.fallback)
    source: str = "new-incident"
    status: str = "Incoming"
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class Notification:
    title: str
    message: str
    type: str = "incident"
    payload: Optional[CallRecord] = None
    read: bool = False


@dataclass
class Toast:
    message: str
    level: str = "info"
    sticky: bool = False
    action_label: Optional[str] = None
    action_route: Optional[str] = None


def build_call_record(data: dict, source: str = "new-incident") -> CallRecord:
    """Construct a CallRecord, accepting both coordinate shapes."""
    phone = data.get("phoneNumber") or ""
    return CallRecord(
        id=data.get("alarmId") or int(time.time() * 1000),
        number=phone or "Unknown",
        phone_number=phone,
        first_name=data.get("firstName") or "",
        last_name=data.get("lastName") or "",
        location=data.get("location") or "",
        incident_type=data.get("incidentType") or "",
        narrative=data.get("narrative") or "",
        alarm_level=data.get("alarmLevel") or "",
        coordinates=normalize_coordinates(data.get("coordinates")),
        source=source,
    )


class DashboardConsumer:
    """
    Client-side handler for realtime incident frames.

    Args:
        send: coroutine used to emit frames back to the server (the raw
            JSON text); required when echo_to_server is on
        echo_to_server: re-emit every received new-incident back to the
            server, as the station dashboards historically did
        on_navigate: called with the review-form route when a toast
            action is taken
    """

    def __init__(
        self,
        send: Optional[Callable[[str], Awaitable[None]]] = None,
        echo_to_server: bool = False,
        on_navigate: Optional[Callable[[str], None]] = None,
    ):
        self.send = send
        self.echo_to_server = echo_to_server
        self.on_navigate = on_navigate
        self.incoming_calls: List[CallRecord] = []
        self.ongoing_calls: List[CallRecord] = []
        self.notifications: List[Notification] = []
        self.toasts: List[Toast] = []
        self.confirmations: List[dict] = []

    # -------------------------------------------------------------------------
    # Frame dispatch
    # -------------------------------------------------------------------------

    async def handle_message(self, message: Union[str, dict]) -> Optional[CallRecord]:
        if isinstance(message, str):
            try:
                message = json.loads(message)
            except json.JSONDecodeError as e:
                logger.warning(f"Ignoring non-JSON frame: {e}")
                return None
        if not isinstance(message, dict):
            return None

        msg_type = message.get("type")
        data = message.get("data")
        if data is None:
            data = {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring {msg_type} frame with non-object data")
            return None

        if msg_type == "new-incident":
            if self.echo_to_server and self.send:
                await self.send(json.dumps({"type": "new-incident", "data": data}))
            return self.on_new_incident(data)
        if msg_type == "incoming-incident":
            return self.on_incoming_incident(data)
        if msg_type == "incident-created":
            self.confirmations.append(data)
            logger.info(f"Incident {data.get('alarmId')} recorded by server")
            return None
        return None

    async def run(self, messages: AsyncIterable[str]):
        """Consume raw frames until the stream ends."""
        async for raw in messages:
            await self.handle_message(raw)

    # -------------------------------------------------------------------------
    # Event handlers
    # -------------------------------------------------------------------------

    def on_new_incident(self, data: dict) -> CallRecord:
        """Incident broadcast by another station"""
        call = build_call_record(data, source="new-incident")
        self._register(
            call,
            notification_message=data.get("location") or "Another station",
            toast_message=(
                f"New incident: {data.get('incidentType') or 'Unknown'} "
                f"at {data.get('location') or 'unknown location'}"
            ),
        )
        return call

    def on_incoming_incident(self, data: dict) -> CallRecord:
        """End-user incident dispatched to this station"""
        call = build_call_record(data, source="incoming-incident")
        self._register(
            call,
            notification_message=data.get("location") or "From end-user",
            toast_message=(
                f"New incident from end-user: {data.get('incidentType') or 'Unknown'} "
                f"at {data.get('location') or 'unknown location'}"
            ),
        )
        return call

    def _register(self, call: CallRecord, notification_message: str, toast_message: str):
        self.incoming_calls.append(call)
        self.notifications.append(Notification(
            title=f"New Incident – {call.incident_type or 'Unknown type'}",
            message=notification_message,
            payload=call,
        ))
        self.toasts.append(Toast(
            message=toast_message,
            sticky=True,
            action_label="View Incident",
            action_route=REVIEW_FORM_ROUTE,
        ))

    # -------------------------------------------------------------------------
    # Call handling
    # -------------------------------------------------------------------------

    def take_toast_action(self, toast: Toast):
        if toast.action_route and self.on_navigate:
            self.on_navigate(toast.action_route)

    def accept_call(self, call_id) -> Optional[CallRecord]:
        call = self._pop_incoming(call_id)
        if call:
            call.status = "Ongoing"
            self.ongoing_calls.append(call)
            if self.on_navigate:
                self.on_navigate(REVIEW_FORM_ROUTE)
        return call

    def reject_call(self, call_id) -> Optional[CallRecord]:
        return self._pop_incoming(call_id)

    def end_call(self, call_id) -> Optional[CallRecord]:
        for i, call in enumerate(self.ongoing_calls):
            if call.id == call_id:
                return self.ongoing_calls.pop(i)
        return None

    def _pop_incoming(self, call_id) -> Optional[CallRecord]:
        for i, call in enumerate(self.incoming_calls):
            if call.id == call_id:
                return self.incoming_calls.pop(i)
        return None

    def review_form_prefill(self, call_id=None) -> Optional[dict]:
        """
        Fields the incident-review form is populated with. Defaults to the
        most recent pending call.
        """
        candidates = self.incoming_calls + self.ongoing_calls
        if call_id is None:
            call = self.incoming_calls[-1] if self.incoming_calls else None
        else:
            call = next((c for c in candidates if c.id == call_id), None)
        if call is None:
            return None

        return {
            "firstName": call.first_name,
            "lastName": call.last_name,
            "phoneNumber": call.phone_number,
            "location": call.location,
            "incidentType": call.incident_type,
            "alarmLevel": call.alarm_level,
            "narrative": call.narrative,
            "latitude": call.coordinates.latitude,
            "longitude": call.coordinates.longitude,
        }

    def unread_count(self) -> int:
        return sum(1 for n in self.notifications if not n.read)

    def snapshot(self) -> dict:
        return {
            "incoming": [asdict(c) for c in self.incoming_calls],
            "ongoing": [asdict(c) for c in self.ongoing_calls],
            "unread": self.unread_count(),
        }
