"""Data contracts for the signaling relay wire protocol.

Every frame is a JSON object ``{"event": <name>, "data": <payload>}``. The
negotiation blobs carried by ``offer``, ``answer`` and ``ice-candidate`` are
opaque: they are typed as ``Any`` and never inspected by the relay.
"""
from __future__ import annotations

import enum
import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


class ClientEvent(str, enum.Enum):
    JOIN_ROOM = "join-room"
    LEAVE_ROOM = "leave-room"
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"


class ServerEvent(str, enum.Enum):
    CONNECTED = "connected"
    USER_JOINED = "user-joined"
    USER_LEFT = "user-left"
    ROOM_INFO = "room-info"
    ROOM_FULL = "room-full"
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"


SIGNAL_EVENTS = frozenset({ClientEvent.OFFER, ClientEvent.ANSWER, ClientEvent.ICE_CANDIDATE})

# Payload key used for the opaque blob of each negotiation event.
SIGNAL_PAYLOAD_KEYS: dict[str, str] = {
    "offer": "offer",
    "answer": "answer",
    "ice-candidate": "candidate",
}


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RoomRef(_CamelModel):
    room_id: str = Field(..., alias="roomId", min_length=1)


class OfferPayload(RoomRef):
    offer: Any = Field(..., description="Opaque session description")


class AnswerPayload(RoomRef):
    answer: Any = Field(..., description="Opaque session description")


class IceCandidatePayload(RoomRef):
    candidate: Any = Field(..., description="Opaque transport candidate")


class UserRef(_CamelModel):
    user_id: str = Field(..., alias="userId")


class RoomInfo(_CamelModel):
    num_users: int = Field(..., alias="numUsers", ge=0)


class RoomFull(_CamelModel):
    message: str


class ClientMessage(BaseModel):
    """A validated client→relay frame."""

    event: ClientEvent
    room_id: str
    payload: Any = None


class _RawFrame(BaseModel):
    event: ClientEvent
    data: Any = None


_ROOM_ID = TypeAdapter(str)
_PAYLOAD_MODELS: dict[ClientEvent, type[RoomRef]] = {
    ClientEvent.OFFER: OfferPayload,
    ClientEvent.ANSWER: AnswerPayload,
    ClientEvent.ICE_CANDIDATE: IceCandidatePayload,
}


def parse_client_message(raw: str | bytes | dict) -> ClientMessage:
    """Validate a client frame; raise ``ValueError`` for anything malformed."""

    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ValueError("frame is not valid JSON") from exc

    try:
        frame = _RawFrame.model_validate(raw)
        if frame.event in (ClientEvent.JOIN_ROOM, ClientEvent.LEAVE_ROOM):
            if isinstance(frame.data, dict):
                room_id = RoomRef.model_validate(frame.data).room_id
            else:
                room_id = _ROOM_ID.validate_python(frame.data, strict=True)
            if not room_id:
                raise ValueError("room id must not be empty")
            return ClientMessage(event=frame.event, room_id=room_id)

        model = _PAYLOAD_MODELS[frame.event].model_validate(frame.data)
        blob = getattr(model, SIGNAL_PAYLOAD_KEYS[frame.event.value])
        return ClientMessage(event=frame.event, room_id=model.room_id, payload=blob)
    except ValidationError as exc:
        raise ValueError(str(exc)) from exc


def server_message(event: ServerEvent, data: BaseModel | dict[str, Any]) -> dict[str, Any]:
    """Build a relay→client frame."""

    if isinstance(data, BaseModel):
        data = data.model_dump(by_alias=True)
    return {"event": event.value, "data": data}


def client_message(event: ClientEvent, data: Any) -> dict[str, Any]:
    """Build a client→relay frame."""

    if isinstance(data, BaseModel):
        data = data.model_dump(by_alias=True)
    return {"event": event.value, "data": data}


def forwarded_signal(event: ClientEvent, payload: Any, sender_id: str) -> dict[str, Any]:
    """Build the sender-tagged envelope delivered to the other room member."""

    key = SIGNAL_PAYLOAD_KEYS[event.value]
    return server_message(ServerEvent(event.value), {key: payload, "from": sender_id})


class RoomStatusResponse(BaseModel):
    room_id: str
    num_users: int = Field(..., ge=0)
    capacity: int = Field(..., ge=1)
    full: bool


class IceServer(BaseModel):
    urls: list[str]


class IceServersResponse(BaseModel):
    ice_servers: list[IceServer] = Field(..., serialization_alias="iceServers")
