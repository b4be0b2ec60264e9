"""Event room router providing the WebSocket and HTTP endpoints.

This module provides:
    - GET /api/events: Live rooms with their participant counts
    - GET /api/debug: Point-in-time dump of rooms, participants and sessions
    - WebSocket /ws: Named-event connection for joining and chatting in rooms

Frames in both directions are JSON objects: {"event": <name>, "data": <payload>}

Client Events:
    - checkSession {eventId, username, sessionId}: Resume after refresh/reconnect
    - joinEvent {eventId, username}: Join (and create if needed) a room
    - sendMessage "<text>": Chat message to the joined room
    - leaveEvent: Leave the joined room for good

Server Events:
    - sessionEstablished {sessionId}
    - sessionError {message}
    - eventHistory {messages, participants}
    - newMessage <message>
    - participantUpdate {type, participant, participants}
    - error {message}: Malformed frame, unknown event or invalid payload
"""
import json
import logging
from typing import Any, List

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from eventroom.config import get_config

from .channels import WebSocketChannel
from .coordinator import EventCoordinator, get_coordinator
from .schemas import (
    CheckSessionPayload,
    DebugSnapshot,
    InboundEvent,
    JoinEventPayload,
    OutboundEvent,
    RoomSummary,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/api/events", response_model=List[RoomSummary])
async def list_events() -> List[RoomSummary]:
    """List live rooms.

    Returns:
        One entry per room with its key and current participant count.
    """
    return get_coordinator().list_summaries()


@router.get("/api/debug", response_model=DebugSnapshot)
async def debug_state() -> DebugSnapshot:
    """Dump rooms, participants and session counts.

    Disabled (404) when ``debug.endpoint_enabled`` is false.
    """
    if not get_config().debug.endpoint_enabled:
        raise HTTPException(status_code=404, detail="Not Found")
    return get_coordinator().debug_snapshot()


@router.websocket("/ws")
async def websocket_event_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for one client connection.

    The connection is given a fresh connection ID on accept. When it closes,
    the coordinator keeps its participant entry for the grace period so that
    a page refresh can resume with ``checkSession``.
    """
    coordinator = get_coordinator()
    await websocket.accept()

    channel = WebSocketChannel(websocket)
    coordinator.connect(channel)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                _send_error(coordinator, channel, "Invalid frame: not JSON")
                continue
            await _dispatch(coordinator, channel, frame)
    except WebSocketDisconnect:
        logger.debug("[WS] Connection %s closed by client", channel.connection_id)
    finally:
        await coordinator.disconnect(channel.connection_id)


async def _dispatch(coordinator: EventCoordinator, channel: WebSocketChannel, frame: Any) -> None:
    if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
        _send_error(coordinator, channel, "Invalid frame: expected {\"event\": ..., \"data\": ...}")
        return

    connection_id = channel.connection_id
    data = frame.get("data")
    try:
        event = InboundEvent(frame["event"])
    except ValueError:
        _send_error(coordinator, channel, f"Unknown event: {frame['event']}")
        return

    logger.debug("[WS] %s received: event=%s", connection_id, event.value)

    try:
        if event is InboundEvent.CHECK_SESSION:
            resume = CheckSessionPayload.model_validate(data or {})
            await coordinator.check_session(
                connection_id, resume.eventId, resume.username, resume.sessionId
            )
        elif event is InboundEvent.JOIN_EVENT:
            join = JoinEventPayload.model_validate(data or {})
            await coordinator.join_event(connection_id, join.eventId, join.username)
        elif event is InboundEvent.SEND_MESSAGE:
            if not isinstance(data, str):
                _send_error(coordinator, channel, "Invalid sendMessage payload: expected text")
                return
            await coordinator.send_message(connection_id, data)
        elif event is InboundEvent.LEAVE_EVENT:
            await coordinator.leave_event(connection_id)
    except ValidationError as exc:
        logger.info("[WS] Invalid %s payload from %s: %s", event.value, connection_id, exc)
        _send_error(coordinator, channel, f"Invalid {event.value} payload")


def _send_error(coordinator: EventCoordinator, channel: WebSocketChannel, message: str) -> None:
    coordinator.hub.send(channel.connection_id, OutboundEvent.ERROR.value, {"message": message})
