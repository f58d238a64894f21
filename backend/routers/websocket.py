"""
WebSocket endpoint for the realtime incident channel.

/ws - bidirectional incident events between station dashboards

Client -> server frames ({"type": ..., "data": {...}}):
    - join-station {stationId}: join the station's routing group
    - new-incident {...}: record a station-originated incident and relay it
    - subscribe-to-alarm {alarmId} / unsubscribe-from-alarm {alarmId}
    - ping: answered with pong

Server -> client frames:
    - connected: sent once after accept, carries connection_id
    - new-incident: incident reported by a station (HTTP or socket)
    - incoming-incident: end-user alarm dispatched to this station
    - incident-created: confirmation of a socket-recorded incident
    - ping: keepalive

Malformed frames are logged and dropped; the connection stays open.
"""

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect
import json
import logging
import asyncio
import os

from broadcast_hub import BroadcastHub
from database import SessionLocal
from errors import IncidentError
from incident_store import IncidentStore
from jwt_auth import extract_token_from_websocket_params, validate_access_token

logger = logging.getLogger(__name__)

router = APIRouter()

# Server-side ping interval (seconds) - keep under common proxy idle timeouts
SERVER_PING_INTERVAL = int(os.environ.get("WS_PING_INTERVAL", "30"))

# Close codes
CLOSE_INVALID_TOKEN = 4001


def get_hub(request: Request) -> BroadcastHub:
    """Dependency returning the application's hub."""
    return request.app.state.hub


# =============================================================================
# Frame handling
# =============================================================================

def _unwrap(message: dict) -> dict:
    data = message.get("data")
    if data is None:
        # Tolerate flat frames: {"type": "join-station", "stationId": 3}
        data = {k: v for k, v in message.items() if k != "type"}
    return data


async def handle_client_message(hub: BroadcastHub, connection_id: str, message: dict, session_factory=SessionLocal):
    """Dispatch one decoded client frame."""
    msg_type = message.get("type")
    data = _unwrap(message)

    if msg_type == "ping":
        await hub.send_to(connection_id, "pong", {})

    elif msg_type == "pong":
        # Client responded to our ping - connection is alive
        pass

    elif msg_type == "join-station":
        station_id = data.get("stationId") if isinstance(data, dict) else data
        if not await hub.join_station_channel(connection_id, station_id):
            logger.warning(f"join-station without stationId from [{connection_id}]")

    elif msg_type == "subscribe-to-alarm":
        alarm_id = data.get("alarmId") if isinstance(data, dict) else data
        if alarm_id is not None:
            await hub.subscribe_to_incident(connection_id, alarm_id)

    elif msg_type == "unsubscribe-from-alarm":
        alarm_id = data.get("alarmId") if isinstance(data, dict) else data
        if alarm_id is not None:
            await hub.unsubscribe_from_incident(connection_id, alarm_id)

    elif msg_type == "new-incident":
        if not isinstance(data, dict):
            logger.warning(f"Dropping new-incident with non-object payload from [{connection_id}]")
            return
        db = session_factory()
        try:
            await hub.relay_incident(IncidentStore(db), data, origin=connection_id)
        except IncidentError as e:
            logger.warning(f"Dropping new-incident from [{connection_id}]: {e.message} {e.error or ''}")
        except Exception as e:
            logger.error(f"Failed to relay new-incident from [{connection_id}]: {e}")
        finally:
            db.close()

    else:
        logger.warning(f"Unknown message type from [{connection_id}]: {msg_type}")


# =============================================================================
# Shared ping/receive loops
# =============================================================================

async def _server_ping_loop(websocket: WebSocket, stop_event: asyncio.Event):
    """Send periodic pings from server to keep connection alive through proxies"""
    try:
        while not stop_event.is_set():
            await asyncio.sleep(SERVER_PING_INTERVAL)
            if stop_event.is_set():
                break
            try:
                await websocket.send_json({"type": "ping"})
            except Exception:
                break
    except asyncio.CancelledError:
        pass


async def _receive_loop(websocket: WebSocket, stop_event: asyncio.Event, hub: BroadcastHub, connection_id: str, session_factory=SessionLocal):
    """Handle incoming messages from client."""
    try:
        while not stop_event.is_set():
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError as e:
                logger.warning(f"Invalid JSON received from [{connection_id}]: {e}")
                continue
            if not isinstance(message, dict):
                logger.warning(f"Dropping non-object frame from [{connection_id}]")
                continue
            await handle_client_message(hub, connection_id, message, session_factory)
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"Receive loop error [{connection_id}]: {e}")
    finally:
        stop_event.set()


# =============================================================================
# WebSocket endpoint
# =============================================================================

@router.websocket("/ws")
async def websocket_incidents(websocket: WebSocket):
    """
    Realtime incident channel.

    A token (query param or cookie) is optional; when present it must be
    valid, and a token carrying an assigned station joins that station's
    group right away.
    """
    hub: BroadcastHub = websocket.app.state.hub

    claims = None
    token = extract_token_from_websocket_params(websocket)
    if token:
        claims = validate_access_token(token)
        if not claims:
            await websocket.close(code=CLOSE_INVALID_TOKEN, reason="Invalid or expired token")
            return

    await websocket.accept()

    connection_id = await hub.connect(websocket, user_id=claims.user_id if claims else None)
    if claims and claims.assigned_station_id:
        await hub.join_station_channel(connection_id, claims.assigned_station_id)

    try:
        await websocket.send_json({
            "type": "connected",
            "connection_id": connection_id,
            "message": "Connected to incident stream",
        })
    except Exception as e:
        logger.error(f"Failed to send connection confirmation: {e}")
        await hub.disconnect(connection_id)
        return

    # Use stop event to coordinate shutdown
    stop_event = asyncio.Event()

    ping_task = asyncio.create_task(_server_ping_loop(websocket, stop_event))
    session_factory = getattr(websocket.app.state, "session_factory", SessionLocal)
    receive_task = asyncio.create_task(_receive_loop(websocket, stop_event, hub, connection_id, session_factory))

    try:
        # Wait for either task to complete (indicates disconnect)
        done, pending = await asyncio.wait(
            [ping_task, receive_task],
            return_when=asyncio.FIRST_COMPLETED
        )

        for task in pending:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        stop_event.set()
        ping_task.cancel()
        receive_task.cancel()
        await hub.disconnect(connection_id)


@router.get("/ws/status")
async def websocket_status(request: Request):
    """Get WebSocket connection status (for monitoring)"""
    return get_hub(request).status()
