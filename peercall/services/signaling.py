"""In-memory WebRTC signaling relay."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ..schemas.signaling import (
    SIGNAL_EVENTS,
    ClientEvent,
    ClientMessage,
    RoomFull,
    RoomInfo,
    ServerEvent,
    UserRef,
    forwarded_signal,
    server_message,
)
from .registry import LeaveResult, RoomFullError, RoomRegistry

SendCallable = Callable[[dict], Awaitable[None]]
Delivery = Tuple[str, dict]

ROOM_FULL_MESSAGE = "Room is full. Only two participants can join a call."

logger = logging.getLogger(__name__)


class DuplicateParticipantError(RuntimeError):
    """Raised when a participant id is already connected to the relay."""


@dataclass(slots=True)
class SignalingConnection:
    """Connection wrapper for signaling participants."""

    connection_id: str
    send: SendCallable


@dataclass(slots=True)
class _Batch:
    """Messages for one recipient, sent after every batch reserved before it."""

    connection: SignalingConnection
    messages: List[dict]
    previous: Optional[asyncio.Future]
    done: asyncio.Future


class SignalingRelay:
    """Route room notifications and negotiation envelopes between participants.

    Registry mutations run under a single lock. Each operation reserves its
    place in every recipient's outbound order while holding the lock and
    sends after releasing it, so every member sees notifications in the
    order the operations took effect.
    """

    def __init__(self, registry: RoomRegistry) -> None:
        self._registry = registry
        self._connections: Dict[str, SignalingConnection] = {}
        self._tails: Dict[str, asyncio.Future] = {}
        self._lock = asyncio.Lock()

    @property
    def registry(self) -> RoomRegistry:
        return self._registry

    async def connect(self, connection: SignalingConnection) -> None:
        """Register a transport connection for a participant."""

        async with self._lock:
            if connection.connection_id in self._connections:
                raise DuplicateParticipantError(connection.connection_id)
            self._connections[connection.connection_id] = connection
        logger.info("Participant %s connected", connection.connection_id)

    async def join(self, participant_id: str, room_id: str) -> None:
        """Add a participant to a room and notify the room."""

        deliveries: List[Delivery] = []
        async with self._lock:
            try:
                result = self._registry.join(participant_id, room_id)
            except RoomFullError:
                logger.info("Participant %s rejected from full room %s", participant_id, room_id)
                deliveries.append(
                    (participant_id, server_message(ServerEvent.ROOM_FULL, RoomFull(message=ROOM_FULL_MESSAGE)))
                )
            else:
                if result.previous is not None:
                    deliveries.extend(self._departure_notices(result.previous))
                if not result.already_member:
                    joined = server_message(ServerEvent.USER_JOINED, UserRef(user_id=participant_id))
                    deliveries.extend((member, joined) for member in result.others)
                deliveries.append(
                    (participant_id, server_message(ServerEvent.ROOM_INFO, RoomInfo(num_users=result.occupancy)))
                )
                logger.info(
                    "Participant %s joined room %s (%d/%d)",
                    participant_id,
                    room_id,
                    result.occupancy,
                    self._registry.capacity,
                )
            batches = self._reserve(deliveries)

        await self._deliver(batches)

    async def leave(self, participant_id: str, room_id: str) -> None:
        """Remove a participant from a room; leaving twice has no further effect."""

        async with self._lock:
            result = self._registry.leave(participant_id, room_id)
            deliveries = self._departure_notices(result) if result is not None else []
            batches = self._reserve(deliveries)

        if result is not None:
            logger.info("Participant %s left room %s", participant_id, room_id)
        await self._deliver(batches)

    async def relay(self, kind: ClientEvent, room_id: str, sender_id: str, payload: Any) -> None:
        """Forward an opaque negotiation payload to the other members of a room."""

        if kind not in SIGNAL_EVENTS:
            raise ValueError(f"{kind!r} is not a negotiation event")

        async with self._lock:
            if not self._registry.is_member(sender_id, room_id):
                recipients: List[str] = []
            else:
                recipients = [member for member in self._registry.members(room_id) if member != sender_id]
            envelope = forwarded_signal(kind, payload, sender_id)
            batches = self._reserve([(recipient, envelope) for recipient in recipients])

        if not recipients:
            logger.debug("Dropping %s from %s: no peers in room %s", kind.value, sender_id, room_id)
            return

        logger.debug("Relaying %s from %s to room %s", kind.value, sender_id, room_id)
        await self._deliver(batches)

    async def disconnect(self, participant_id: str) -> None:
        """Leave the current room, if any, and forget the participant."""

        async with self._lock:
            result = self._registry.discard(participant_id)
            deliveries = self._departure_notices(result) if result is not None else []
            known = self._connections.pop(participant_id, None) is not None
            self._tails.pop(participant_id, None)
            batches = self._reserve(deliveries)

        if known:
            logger.info("Participant %s disconnected", participant_id)
        await self._deliver(batches)

    async def dispatch(self, participant_id: str, message: ClientMessage) -> None:
        """Apply one validated client frame."""

        if message.event is ClientEvent.JOIN_ROOM:
            await self.join(participant_id, message.room_id)
        elif message.event is ClientEvent.LEAVE_ROOM:
            await self.leave(participant_id, message.room_id)
        else:
            await self.relay(message.event, message.room_id, participant_id, message.payload)

    async def occupancy(self, room_id: str) -> int:
        async with self._lock:
            return self._registry.occupancy(room_id)

    def _departure_notices(self, result: LeaveResult) -> List[Delivery]:
        left = server_message(ServerEvent.USER_LEFT, UserRef(user_id=result.participant_id))
        info = server_message(ServerEvent.ROOM_INFO, RoomInfo(num_users=len(result.remaining)))
        deliveries: List[Delivery] = []
        for member in result.remaining:
            deliveries.append((member, left))
            deliveries.append((member, info))
        return deliveries

    def _reserve(self, deliveries: List[Delivery]) -> List[_Batch]:
        """Queue messages behind earlier batches for the same recipients; call with the lock held."""

        outbox: Dict[str, List[dict]] = {}
        for recipient, message in deliveries:
            outbox.setdefault(recipient, []).append(message)

        loop = asyncio.get_running_loop()
        batches: List[_Batch] = []
        for recipient, messages in outbox.items():
            connection = self._connections.get(recipient)
            if connection is None:
                continue
            done = loop.create_future()
            batches.append(_Batch(connection, messages, self._tails.get(recipient), done))
            self._tails[recipient] = done
        return batches

    async def _deliver(self, batches: List[_Batch]) -> None:
        """Send reserved batches, sequential per recipient and concurrent across recipients."""

        if batches:
            await asyncio.gather(*(self._send_batch(batch) for batch in batches))

    async def _send_batch(self, batch: _Batch) -> None:
        recipient = batch.connection.connection_id
        try:
            if batch.previous is not None and not batch.previous.done():
                await asyncio.wait([batch.previous])
            await self._send_all(batch.connection, batch.messages)
        finally:
            if not batch.done.done():
                batch.done.set_result(None)
            if self._tails.get(recipient) is batch.done:
                del self._tails[recipient]

    async def _send_all(self, connection: SignalingConnection, messages: List[dict]) -> None:
        for message in messages:
            try:
                await connection.send(message)
            except Exception:  # noqa: BLE001 - one broken socket must not affect others
                logger.warning(
                    "Failed to deliver %s to %s", message.get("event"), connection.connection_id, exc_info=True
                )
                return
