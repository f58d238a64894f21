"""
Realtime Broadcast Hub

In-memory publish/subscribe relay over WebSocket connections. One hub is
created per application (app.state.hub) and handed to whoever needs to
publish; nothing here is module-level state.

Groups:
    station  - one per fire station, joined via join-station; targeted by
               route_to_station() for incidents dispatched to one station
    incident - one per alarm, joined via subscribe-to-alarm; membership only

Frames are JSON text: {"type": <event name>, "data": {...}}.

Delivery is best effort: a send that fails drops the connection, and a
disconnected client misses everything until it reconnects.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from pydantic import ValidationError as PydanticValidationError

from errors import ValidationError
from incident_helpers import (
    EVENT_NEW_INCIDENT, EVENT_INCIDENT_CREATED,
    record_relayed_incident,
)
from incident_store import IncidentStore
from schemas_incidents import IncidentEvent

logger = logging.getLogger(__name__)


@dataclass
class Connection:
    """Tracked WebSocket connection and its group memberships."""
    websocket: Any
    connection_id: str
    user_id: Optional[int] = None
    station_id: Optional[str] = None
    incident_ids: Set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def state(self) -> str:
        return "station_joined" if self.station_id else "connected"


def _group_key(value) -> str:
    # stationId / alarmId arrive as ints from some clients and strings from others
    return str(value).strip()


def encode_frame(event_name: str, payload: dict) -> str:
    return json.dumps({"type": event_name, "data": payload}, default=str)


class BroadcastHub:
    """Connection registry plus fan-out operations."""

    def __init__(self):
        self._connections: Dict[str, Connection] = {}
        self._lock = asyncio.Lock()

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def connect(self, websocket, user_id: Optional[int] = None) -> str:
        connection_id = uuid.uuid4().hex[:8]
        async with self._lock:
            self._connections[connection_id] = Connection(
                websocket=websocket,
                connection_id=connection_id,
                user_id=user_id,
            )
            count = len(self._connections)
        logger.info(f"WebSocket connected [{connection_id}] (total: {count})")
        return connection_id

    async def disconnect(self, connection_id: str):
        async with self._lock:
            removed = self._connections.pop(connection_id, None)
            count = len(self._connections)
        if removed:
            logger.info(f"WebSocket disconnected [{connection_id}] (total: {count})")

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    # =========================================================================
    # Group membership
    # =========================================================================

    async def join_station_channel(self, connection_id: str, station_id) -> bool:
        if station_id is None or _group_key(station_id) == "":
            return False
        async with self._lock:
            conn = self._connections.get(connection_id)
            if not conn:
                return False
            conn.station_id = _group_key(station_id)
        logger.info(f"Connection [{connection_id}] joined station-{conn.station_id}")
        return True

    async def subscribe_to_incident(self, connection_id: str, alarm_id) -> bool:
        async with self._lock:
            conn = self._connections.get(connection_id)
            if not conn:
                return False
            conn.incident_ids.add(_group_key(alarm_id))
        logger.info(f"Connection [{connection_id}] subscribed to alarm {alarm_id}")
        return True

    async def unsubscribe_from_incident(self, connection_id: str, alarm_id) -> bool:
        async with self._lock:
            conn = self._connections.get(connection_id)
            if not conn:
                return False
            conn.incident_ids.discard(_group_key(alarm_id))
        logger.info(f"Connection [{connection_id}] unsubscribed from alarm {alarm_id}")
        return True

    # =========================================================================
    # Fan-out
    # =========================================================================

    async def _send_all(self, targets: List[Connection], event_name: str, payload: dict) -> int:
        if not targets:
            return 0

        # Serialize once
        message_json = encode_frame(event_name, payload)

        delivered = 0
        failed = []
        for conn in targets:
            try:
                await conn.websocket.send_text(message_json)
                delivered += 1
            except Exception as e:
                logger.warning(f"Failed to send {event_name} to [{conn.connection_id}]: {e}")
                failed.append(conn.connection_id)

        if failed:
            async with self._lock:
                for connection_id in failed:
                    self._connections.pop(connection_id, None)

        return delivered

    async def _snapshot(self, predicate=None) -> List[Connection]:
        async with self._lock:
            conns = list(self._connections.values())
        if predicate is None:
            return conns
        return [c for c in conns if predicate(c)]

    async def publish(self, event_name: str, payload: dict, exclude: Optional[str] = None) -> int:
        """Deliver to every connected client except `exclude`. Returns the delivery count."""
        targets = await self._snapshot(lambda c: c.connection_id != exclude)
        delivered = await self._send_all(targets, event_name, payload)
        logger.debug(f"Published {event_name} to {delivered} client(s)")
        return delivered

    async def route_to_station(self, station_id, event_name: str, payload: dict) -> int:
        """Deliver only to connections that joined the station's group."""
        key = _group_key(station_id)
        targets = await self._snapshot(lambda c: c.station_id == key)
        delivered = await self._send_all(targets, event_name, payload)
        logger.info(f"Routed {event_name} to station-{key} ({delivered} client(s))")
        return delivered

    async def send_to_incident(self, alarm_id, event_name: str, payload: dict) -> int:
        key = _group_key(alarm_id)
        targets = await self._snapshot(lambda c: key in c.incident_ids)
        return await self._send_all(targets, event_name, payload)

    async def send_to(self, connection_id: str, event_name: str, payload: dict) -> bool:
        conn = self._connections.get(connection_id)
        if not conn:
            return False
        return await self._send_all([conn], event_name, payload) == 1

    # =========================================================================
    # Socket-originated incidents
    # =========================================================================

    async def relay_incident(self, store: IncidentStore, payload: dict, origin: Optional[str] = None) -> Optional[dict]:
        """
        Handle a new-incident frame sent by a station client.

        The incident is recorded with the same operation the HTTP intake uses,
        relayed as new-incident to every other client, and confirmed with
        incident-created to everyone (the originator included).

        Frames that carry the alarmId of an already-recorded alarm (dashboards
        echoing an HTTP-created incident) are not recorded again.

        Raises:
            ValidationError: malformed payload; nothing is stored or sent.
        """
        try:
            event = IncidentEvent.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError("Malformed new-incident payload", error=str(e)) from e

        if event.alarm_id is not None and store.get_incident(event.alarm_id):
            logger.info(f"new-incident for existing alarm {event.alarm_id} from [{origin}], not re-recorded")
            return None

        recorded, confirmation = record_relayed_incident(store, event)

        relayed = event.model_copy(update={
            "alarm_id": recorded.alarm_id,
            "caller_id": recorded.caller_id,
            "status": confirmation["status"],
        })
        await self.publish(EVENT_NEW_INCIDENT, relayed.to_wire(), exclude=origin)
        await self.publish(EVENT_INCIDENT_CREATED, confirmation)
        return confirmation

    # =========================================================================
    # Monitoring
    # =========================================================================

    def status(self) -> dict:
        stations: Dict[str, int] = {}
        incidents: Dict[str, int] = {}
        for conn in self._connections.values():
            if conn.station_id:
                stations[conn.station_id] = stations.get(conn.station_id, 0) + 1
            for alarm_id in conn.incident_ids:
                incidents[alarm_id] = incidents.get(alarm_id, 0) + 1
        return {
            "connections": len(self._connections),
            "stations": stations,
            "incidents": incidents,
        }
