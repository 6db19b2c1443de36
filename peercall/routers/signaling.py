"""WebSocket endpoint terminating participant signaling channels."""
from __future__ import annotations

import logging
from uuid import uuid4

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from ..schemas.signaling import ServerEvent, UserRef, parse_client_message, server_message
from ..services.signaling import DuplicateParticipantError, SignalingConnection, SignalingRelay

router = APIRouter()

logger = logging.getLogger(__name__)


@router.websocket("/signaling")
async def signaling_endpoint(websocket: WebSocket) -> None:
    """Relay room membership events and SDP/ICE payloads between two peers."""

    relay: SignalingRelay = websocket.app.state.relay
    participant_id = websocket.query_params.get("participant_id") or uuid4().hex
    await websocket.accept()

    connection = SignalingConnection(connection_id=participant_id, send=websocket.send_json)
    try:
        await relay.connect(connection)
    except DuplicateParticipantError:
        logger.warning("Refusing duplicate participant id %s", participant_id)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="participant id in use")
        return

    try:
        await websocket.send_json(server_message(ServerEvent.CONNECTED, UserRef(user_id=participant_id)))
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))
            raw = frame.get("text") or frame.get("bytes")
            if raw is None:
                continue
            try:
                message = parse_client_message(raw)
            except ValueError as exc:
                logger.debug("Dropping malformed frame from %s: %s", participant_id, exc)
                continue
            await relay.dispatch(participant_id, message)
    except WebSocketDisconnect:
        pass
    finally:
        await relay.disconnect(participant_id)
