"""Negotiation state machine for one participant's side of a call.

The machine never performs I/O. Each input method updates the state and
returns the effects the caller must carry out, in order. Effects that need
the peer session (``CreateOffer``, ``AcceptOffer``, ``AcceptAnswer``) report
back through ``offer_created``, ``offer_accepted``, ``answer_applied`` or
``negotiation_failed``.

Offerer election follows one of two policies:

* ``timer``: ``offer_delay`` seconds after joining, a side that has not seen
  any peer sends an offer.
* ``arrival``: the member already in the room offers when it is told a peer
  joined; the later joiner only answers.

If both sides end up offering (glare), the side with the greater participant
id yields and answers the other's offer.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, List, Literal, Optional, Union

logger = logging.getLogger(__name__)

TieBreak = Literal["timer", "arrival"]


class CallState(str, enum.Enum):
    IDLE = "idle"
    ACQUIRING_MEDIA = "acquiring-media"
    JOINED_WAITING = "joined-waiting"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    FAILED = "failed"
    DISCONNECTED = "disconnected"
    CLOSED = "closed"


ACTIVE_STATES = frozenset(
    {CallState.JOINED_WAITING, CallState.NEGOTIATING, CallState.CONNECTED, CallState.DISCONNECTED}
)

# Peer session connection states mapped onto call states.
SESSION_STATE_MAP = {
    "connecting": CallState.NEGOTIATING,
    "connected": CallState.CONNECTED,
    "disconnected": CallState.DISCONNECTED,
    "failed": CallState.FAILED,
}


class CallInProgressError(RuntimeError):
    """Raised when a call is started on an orchestrator that already has one."""


class Signal(str, enum.Enum):
    """Callbacks surfaced to the UI layer."""

    STATE_CHANGED = "state-changed"
    USER_JOINED = "user-joined"
    USER_LEFT = "user-left"
    ROOM_INFO = "room-info"
    ROOM_FULL = "room-full"
    CONNECTION_LOST = "connection-lost"


@dataclass(frozen=True)
class SendMessage:
    event: str
    data: Any


@dataclass(frozen=True)
class ScheduleOffer:
    delay: float


@dataclass(frozen=True)
class CreateOffer:
    pass


@dataclass(frozen=True)
class AcceptOffer:
    description: Any


@dataclass(frozen=True)
class AcceptAnswer:
    description: Any


@dataclass(frozen=True)
class AddCandidate:
    candidate: Any


@dataclass(frozen=True)
class ResetSession:
    pass


@dataclass(frozen=True)
class Notify:
    signal: Signal
    value: Any = None


Effect = Union[SendMessage, ScheduleOffer, CreateOffer, AcceptOffer, AcceptAnswer, AddCandidate, ResetSession, Notify]


@dataclass
class NegotiationMachine:
    """Track one NegotiationSession: state, peers, offer and candidate bookkeeping."""

    tie_break: TieBreak = "timer"
    offer_delay: float = 1.0
    state: CallState = CallState.IDLE
    room_id: Optional[str] = None
    self_id: Optional[str] = None
    peers: List[str] = field(default_factory=list)
    in_room: bool = False
    offer_pending: bool = False
    offer_blind: bool = False
    local_offer: Any = None
    accepted_offer: Any = None
    remote_description_set: bool = False
    pending_candidates: List[Any] = field(default_factory=list)
    connection_lost_reported: bool = False

    # -- commands -----------------------------------------------------------

    def start_call(self, room_id: str) -> List[Effect]:
        if self.state is not CallState.IDLE:
            raise CallInProgressError(f"call already in state {self.state.value}")
        self.room_id = room_id
        return self._move(CallState.ACQUIRING_MEDIA)

    def media_attached(self) -> List[Effect]:
        """Local tracks are on the peer session and the relay channel is open."""

        if self.state is not CallState.ACQUIRING_MEDIA:
            return []
        effects = self._move(CallState.JOINED_WAITING)
        effects.append(SendMessage("join-room", self.room_id))
        self.in_room = True
        if self.tie_break == "timer":
            effects.append(ScheduleOffer(self.offer_delay))
        return effects

    def leave_room(self) -> List[Effect]:
        if not self.in_room or self.room_id is None:
            return []
        self.in_room = False
        return [SendMessage("leave-room", self.room_id)]

    def close(self) -> List[Effect]:
        """Explicit teardown: pass through ``closed`` and reset to ``idle``."""

        effects = self._move(CallState.CLOSED) if self.state is not CallState.IDLE else []
        self._reset()
        effects.extend(self._move(CallState.IDLE))
        return effects

    # -- relay events -------------------------------------------------------

    def relay_connected(self, user_id: str) -> List[Effect]:
        self.self_id = user_id
        return []

    def user_joined(self, user_id: str) -> List[Effect]:
        if not self._in_call():
            return []
        if user_id not in self.peers:
            self.peers.append(user_id)
        effects: List[Effect] = [Notify(Signal.USER_JOINED, user_id)]

        if self.offer_pending and self.offer_blind and self.local_offer is not None:
            # Our earlier offer went to an empty room; the newcomer never saw it.
            self.offer_blind = False
            effects.append(self._send_offer())
        elif self.tie_break == "arrival" and self._may_offer():
            effects.append(CreateOffer())
        return effects

    def user_left(self, user_id: str) -> List[Effect]:
        if user_id in self.peers:
            self.peers.remove(user_id)
        if not self._in_call():
            return []
        return [Notify(Signal.USER_LEFT, user_id)]

    def room_info(self, num_users: int) -> List[Effect]:
        if not self._in_call():
            return []
        return [Notify(Signal.ROOM_INFO, num_users)]

    def room_full(self, message: str) -> List[Effect]:
        if not self._in_call():
            return []
        self.in_room = False
        effects = self._move(CallState.FAILED)
        effects.append(Notify(Signal.ROOM_FULL, message))
        return effects

    def offer_timer_fired(self) -> List[Effect]:
        if self.tie_break != "timer" or self.state is not CallState.JOINED_WAITING:
            return []
        if self.peers or not self._may_offer():
            return []
        return [CreateOffer()]

    def offer_received(self, description: Any, sender_id: Optional[str]) -> List[Effect]:
        if not self._in_call():
            return []
        if self.remote_description_set:
            logger.debug("Ignoring offer from %s: session already negotiated", sender_id)
            return []

        effects: List[Effect] = []
        if self.offer_pending:
            if self._keeps_own_offer(sender_id):
                logger.info("Offer glare with %s: keeping our offer", sender_id)
                if self.offer_blind and self.local_offer is not None:
                    self.offer_blind = False
                    effects.append(self._send_offer())
                return effects
            logger.info("Offer glare with %s: yielding to remote offer", sender_id)
            self.offer_pending = False
            self.offer_blind = False
            self.local_offer = None
            effects.append(ResetSession())
        elif self.accepted_offer is not None:
            logger.debug("Ignoring offer from %s: answer already in progress", sender_id)
            return []

        self.accepted_offer = description
        if self.state is not CallState.NEGOTIATING:
            effects.extend(self._move(CallState.NEGOTIATING))
        effects.append(AcceptOffer(description))
        return effects

    def answer_received(self, description: Any, sender_id: Optional[str]) -> List[Effect]:
        if not self._in_call() or not self.offer_pending or self.remote_description_set:
            logger.debug("Ignoring unexpected answer from %s", sender_id)
            return []
        return [AcceptAnswer(description)]

    def candidate_received(self, candidate: Any) -> List[Effect]:
        if not self._in_call():
            return []
        if not self.remote_description_set:
            self.pending_candidates.append(candidate)
            return []
        return [AddCandidate(candidate)]

    def transport_lost(self) -> List[Effect]:
        if not self._in_call() and self.state is not CallState.ACQUIRING_MEDIA:
            return []
        self.in_room = False
        return self._fail()

    # -- peer session events ------------------------------------------------

    def offer_created(self, description: Any) -> List[Effect]:
        if not self._in_call() or not self.in_room:
            return []
        if self.remote_description_set or self.accepted_offer is not None:
            return []
        self.offer_pending = True
        self.offer_blind = not self.peers
        self.local_offer = description
        effects: List[Effect] = []
        if self.state is not CallState.NEGOTIATING:
            effects.extend(self._move(CallState.NEGOTIATING))
        effects.append(self._send_offer())
        return effects

    def offer_accepted(self, answer: Any) -> List[Effect]:
        """Remote offer applied and local answer created."""

        if not self._in_call():
            return []
        effects: List[Effect] = [SendMessage("answer", {"roomId": self.room_id, "answer": answer})]
        effects.extend(self._remote_description_applied())
        return effects

    def answer_applied(self) -> List[Effect]:
        if not self._in_call():
            return []
        self.offer_pending = False
        self.offer_blind = False
        return self._remote_description_applied()

    def local_candidate(self, candidate: Any) -> List[Effect]:
        if not self.in_room or self.room_id is None:
            return []
        return [SendMessage("ice-candidate", {"roomId": self.room_id, "candidate": candidate})]

    def session_state_changed(self, session_state: str) -> List[Effect]:
        if not self._in_call():
            return []
        target = SESSION_STATE_MAP.get(session_state)
        if target is None or target is self.state:
            return []
        if target in (CallState.FAILED, CallState.DISCONNECTED):
            return self._lose(target)
        return self._move(target)

    def negotiation_failed(self) -> List[Effect]:
        if not self._in_call():
            return []
        return self._fail()

    # -- helpers ------------------------------------------------------------

    def _in_call(self) -> bool:
        return self.state in ACTIVE_STATES

    def _may_offer(self) -> bool:
        if not self.in_room or self.offer_pending:
            return False
        return not self.remote_description_set and self.accepted_offer is None

    def _keeps_own_offer(self, sender_id: Optional[str]) -> bool:
        if self.self_id is None or sender_id is None:
            return False
        return self.self_id < sender_id

    def _send_offer(self) -> SendMessage:
        return SendMessage("offer", {"roomId": self.room_id, "offer": self.local_offer})

    def _remote_description_applied(self) -> List[Effect]:
        self.remote_description_set = True
        buffered, self.pending_candidates = self.pending_candidates, []
        return [AddCandidate(candidate) for candidate in buffered]

    def _fail(self) -> List[Effect]:
        return self._lose(CallState.FAILED)

    def _lose(self, target: CallState) -> List[Effect]:
        effects = self._move(target)
        if not self.connection_lost_reported:
            self.connection_lost_reported = True
            effects.append(Notify(Signal.CONNECTION_LOST, target.value))
        return effects

    def _move(self, target: CallState) -> List[Effect]:
        if target is self.state:
            return []
        logger.debug("Call state %s -> %s", self.state.value, target.value)
        self.state = target
        return [Notify(Signal.STATE_CHANGED, target)]

    def _reset(self) -> None:
        self.room_id = None
        self.self_id = None
        self.peers = []
        self.in_room = False
        self.offer_pending = False
        self.offer_blind = False
        self.local_offer = None
        self.accepted_offer = None
        self.remote_description_set = False
        self.pending_candidates = []
        self.connection_lost_reported = False
