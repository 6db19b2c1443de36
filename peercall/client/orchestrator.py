"""Client-side connection orchestrator for one two-party call."""
from __future__ import annotations

import asyncio
import inspect
import json
import logging
import secrets
import string
from contextlib import suppress
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

from ..core.config import settings
from .negotiation import (
    AcceptAnswer,
    AcceptOffer,
    AddCandidate,
    CallState,
    CreateOffer,
    Effect,
    NegotiationMachine,
    Notify,
    ResetSession,
    ScheduleOffer,
    SendMessage,
    Signal,
    TieBreak,
)
from .peer import AiortcPeerSession, LocalMedia, PeerSession, SessionFactory

logger = logging.getLogger(__name__)

Callback = Callable[..., Any]
Connector = Callable[[str], Awaitable[ClientConnection]]
Event = Tuple[Any, ...]

ROOM_ID_ALPHABET = string.ascii_uppercase + string.digits


def generate_room_id(length: int = 6) -> str:
    """Return a short, human-shareable room code such as ``K3P9ZQ``."""

    return "".join(secrets.choice(ROOM_ID_ALPHABET) for _ in range(length))


class ConnectionOrchestrator:
    """Drive one participant's negotiation and media lifecycle.

    Relay frames, offer timer firings and peer session callbacks are queued and
    handled one at a time by a worker task, so a slow description operation
    never stalls the socket reader and nothing that arrives meanwhile is lost.
    """

    def __init__(
        self,
        room_id: str,
        *,
        relay_url: str | None = None,
        ice_servers: Sequence[str] | None = None,
        tie_break: TieBreak | None = None,
        offer_delay: float | None = None,
        on_remote_track: Callback | None = None,
        on_state_change: Callback | None = None,
        on_user_joined: Callback | None = None,
        on_user_left: Callback | None = None,
        on_room_info: Callback | None = None,
        on_room_full: Callback | None = None,
        on_connection_lost: Callback | None = None,
        connector: Connector | None = None,
        session_factory: SessionFactory | None = None,
    ) -> None:
        self.room_id = room_id
        self.relay_url = relay_url or settings.relay_url
        self._ice_servers = list(ice_servers if ice_servers is not None else settings.ice_servers)
        self._machine = NegotiationMachine(
            tie_break=tie_break or settings.tie_break,
            offer_delay=settings.offer_delay_seconds if offer_delay is None else offer_delay,
        )
        self._callbacks: Dict[Signal, Callback | None] = {
            Signal.STATE_CHANGED: on_state_change,
            Signal.USER_JOINED: on_user_joined,
            Signal.USER_LEFT: on_user_left,
            Signal.ROOM_INFO: on_room_info,
            Signal.ROOM_FULL: on_room_full,
            Signal.CONNECTION_LOST: on_connection_lost,
        }
        self._on_remote_track = on_remote_track
        self._connector: Connector = connector or connect
        self._session_factory: SessionFactory = session_factory or AiortcPeerSession

        self._ws: Optional[ClientConnection] = None
        self._session: Optional[PeerSession] = None
        self._media: Optional[LocalMedia] = None
        self._events: asyncio.Queue[Event] = asyncio.Queue()
        self._lock = asyncio.Lock()
        self._reader: Optional[asyncio.Task[None]] = None
        self._worker: Optional[asyncio.Task[None]] = None
        self._timer: Optional[asyncio.Task[None]] = None
        self._generation = 0
        self._closing = False

    async def __aenter__(self) -> "ConnectionOrchestrator":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.leave_room()
        await self.cleanup()

    @property
    def state(self) -> CallState:
        return self._machine.state

    @property
    def participant_id(self) -> Optional[str]:
        return self._machine.self_id

    @property
    def remote_users(self) -> List[str]:
        return list(self._machine.peers)

    @property
    def is_connected(self) -> bool:
        return self._machine.state is CallState.CONNECTED

    # -- public commands ----------------------------------------------------

    async def start_call(self, media: LocalMedia) -> None:
        """Attach local media, join the room and begin negotiating."""

        async with self._lock:
            effects = self._machine.start_call(self.room_id)
            self._media = media
            self._ensure_worker()
            await self._run(effects)

        logger.info("Starting call in room %s with %d local tracks", self.room_id, len(media.tracks))
        try:
            await self._open_relay()
        except Exception:
            logger.exception("Could not reach signaling relay at %s", self.relay_url)
            await self._apply(self._machine.transport_lost)
            raise

        async with self._lock:
            self._session = self._new_session()
            await self._run(self._machine.media_attached())

    async def leave_room(self) -> None:
        """Tell the relay we are leaving; harmless if we never joined."""

        await self._apply(self._machine.leave_room)

    async def cleanup(self) -> None:
        """Release media, peer session and relay channel, then reset to idle."""

        self._closing = True
        current = asyncio.current_task()
        for task in (self._timer, self._reader, self._worker):
            if task is None or task is current or task.done():
                continue
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._timer = None
        self._reader = None

        if self._media is not None:
            self._media.stop()
            self._media = None

        if self._session is not None:
            session, self._session = self._session, None
            self._generation += 1
            try:
                await session.close()
            except Exception:  # noqa: BLE001 - teardown must finish
                logger.warning("Error closing peer session", exc_info=True)

        if self._ws is not None:
            ws, self._ws = self._ws, None
            with suppress(Exception):
                await ws.close()

        self._events = asyncio.Queue()
        effects = self._machine.close()
        for effect in effects:
            if isinstance(effect, Notify):
                await self._notify(effect)
        self._closing = False

        worker, self._worker = self._worker, None
        if worker is not None and worker is current:
            worker.cancel()

    # -- event plumbing -----------------------------------------------------

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._process_events())

    async def _open_relay(self) -> None:
        if self._ws is not None:
            return
        logger.info("Connecting to signaling relay at %s", self.relay_url)
        self._ws = await self._connector(self.relay_url)
        self._reader = asyncio.create_task(self._read_relay(self._ws))

    async def _read_relay(self, ws: ClientConnection) -> None:
        try:
            async for raw in ws:
                try:
                    frame = json.loads(raw)
                except (TypeError, json.JSONDecodeError):
                    logger.debug("Ignoring non-JSON relay frame")
                    continue
                if isinstance(frame, dict):
                    self._events.put_nowait(("relay", frame))
        except asyncio.CancelledError:
            raise
        except ConnectionClosed:
            logger.debug("Relay connection closed")
        except Exception:
            logger.exception("Relay reader failed")
        if not self._closing:
            logger.warning("Lost connection to signaling relay")
            self._events.put_nowait(("transport-lost",))

    async def _process_events(self) -> None:
        while True:
            event = await self._events.get()
            try:
                await self._handle(event)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Failed to handle %s", event[0])

    async def _handle(self, event: Event) -> None:
        kind = event[0]
        if kind == "relay":
            await self._handle_relay(event[1])
        elif kind == "transport-lost":
            await self._apply(self._machine.transport_lost)
        elif kind == "offer-timer":
            await self._apply(self._machine.offer_timer_fired)
        elif kind in ("local-candidate", "session-state", "remote-track") and event[2] != self._generation:
            logger.debug("Ignoring %s from a discarded peer session", kind)
        elif kind == "local-candidate":
            await self._apply(self._machine.local_candidate, event[1])
        elif kind == "session-state":
            await self._apply(self._machine.session_state_changed, event[1])
        elif kind == "remote-track":
            await self._invoke(self._on_remote_track, event[1])

    async def _handle_relay(self, frame: Dict[str, Any]) -> None:
        name = frame.get("event")
        data = frame.get("data")
        if not isinstance(data, dict):
            data = {}
        machine = self._machine

        if name == "connected":
            await self._apply(machine.relay_connected, data.get("userId"))
        elif name == "user-joined":
            logger.info("Peer %s joined room %s", data.get("userId"), self.room_id)
            await self._apply(machine.user_joined, data.get("userId"))
        elif name == "user-left":
            logger.info("Peer %s left room %s", data.get("userId"), self.room_id)
            await self._apply(machine.user_left, data.get("userId"))
        elif name == "room-info":
            logger.info("Room %s has %s users", self.room_id, data.get("numUsers"))
            await self._apply(machine.room_info, data.get("numUsers", 0))
        elif name == "room-full":
            logger.warning("Room %s is full", self.room_id)
            await self._apply(machine.room_full, data.get("message", "Room is full"))
        elif name == "offer":
            logger.info("Received offer from %s", data.get("from"))
            await self._apply(machine.offer_received, data.get("offer"), data.get("from"))
        elif name == "answer":
            logger.info("Received answer from %s", data.get("from"))
            await self._apply(machine.answer_received, data.get("answer"), data.get("from"))
        elif name == "ice-candidate":
            logger.debug("Received ICE candidate from %s", data.get("from"))
            await self._apply(machine.candidate_received, data.get("candidate"))
        else:
            logger.debug("Ignoring unknown relay event %r", name)

    async def _apply(self, transition: Callable[..., List[Effect]], *args: Any) -> None:
        async with self._lock:
            await self._run(transition(*args))

    async def _run(self, effects: List[Effect]) -> None:
        for effect in effects:
            if isinstance(effect, SendMessage):
                await self._send(effect.event, effect.data)
            elif isinstance(effect, ScheduleOffer):
                self._schedule_offer(effect.delay)
            elif isinstance(effect, Notify):
                await self._notify(effect)
            elif isinstance(effect, AddCandidate):
                await self._add_candidate(effect.candidate)
            elif isinstance(effect, ResetSession):
                await self._replace_session()
            elif isinstance(effect, (CreateOffer, AcceptOffer, AcceptAnswer)):
                followups = await self._negotiate(effect)
                await self._run(followups)
                if self._machine.state is CallState.FAILED:
                    return

    async def _negotiate(self, effect: Effect) -> List[Effect]:
        if self._session is None:
            logger.warning("No peer session for %s", type(effect).__name__)
            return []
        try:
            if isinstance(effect, CreateOffer):
                logger.info("Creating offer for room %s", self.room_id)
                offer = await self._session.create_offer()
                return self._machine.offer_created(offer)
            if isinstance(effect, AcceptOffer):
                answer = await self._session.accept_offer(effect.description)
                logger.info("Sending answer in room %s", self.room_id)
                return self._machine.offer_accepted(answer)
            await self._session.apply_answer(effect.description)
            return self._machine.answer_applied()
        except Exception:
            logger.exception("Negotiation step %s failed", type(effect).__name__)
            return self._machine.negotiation_failed()

    async def _add_candidate(self, candidate: Any) -> None:
        if self._session is None:
            return
        try:
            await self._session.add_candidate(candidate)
        except Exception:  # noqa: BLE001 - a rejected candidate is discarded
            logger.warning("Discarding ICE candidate rejected by peer session", exc_info=True)

    async def _send(self, event: str, data: Any) -> None:
        if self._ws is None:
            logger.debug("Not connected to relay, dropping %s", event)
            return
        try:
            await self._ws.send(json.dumps({"event": event, "data": data}))
        except ConnectionClosed:
            logger.warning("Relay connection closed while sending %s", event)

    def _schedule_offer(self, delay: float) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.create_task(self._offer_timer(delay))

    async def _offer_timer(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._events.put_nowait(("offer-timer",))

    def _new_session(self) -> PeerSession:
        self._generation += 1
        generation = self._generation
        tracks = self._media.tracks if self._media is not None else []
        return self._session_factory(
            ice_servers=self._ice_servers,
            tracks=tracks,
            on_candidate=lambda candidate: self._events.put_nowait(("local-candidate", candidate, generation)),
            on_state_change=lambda state: self._events.put_nowait(("session-state", state, generation)),
            on_track=lambda track: self._events.put_nowait(("remote-track", track, generation)),
        )

    async def _replace_session(self) -> None:
        old, self._session = self._session, None
        if old is not None:
            await old.close()
        self._session = self._new_session()

    async def _notify(self, effect: Notify) -> None:
        await self._invoke(self._callbacks.get(effect.signal), effect.value)

    async def _invoke(self, callback: Callback | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:  # noqa: BLE001 - UI callbacks must not break negotiation
            logger.exception("Callback %r failed", callback)
