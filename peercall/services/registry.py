"""In-memory room membership with a two-party capacity limit."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

ROOM_CAPACITY = 2


class RoomFullError(Exception):
    """Raised when a participant tries to join a room that already has two members."""

    def __init__(self, room_id: str) -> None:
        super().__init__(f"Room {room_id} is full")
        self.room_id = room_id


@dataclass(slots=True)
class LeaveResult:
    """Outcome of removing a participant from a room."""

    room_id: str
    participant_id: str
    remaining: List[str] = field(default_factory=list)


@dataclass(slots=True)
class JoinResult:
    """Outcome of a successful join."""

    room_id: str
    participant_id: str
    members: List[str]
    already_member: bool = False
    previous: Optional[LeaveResult] = None

    @property
    def others(self) -> List[str]:
        return [member for member in self.members if member != self.participant_id]

    @property
    def occupancy(self) -> int:
        return len(self.members)


class RoomRegistry:
    """Track which participants occupy which room.

    The registry is plain data and performs no locking of its own; the owner
    (``SignalingRelay``) serializes every call. Rooms are created on first join
    and dropped as soon as their last member leaves.
    """

    def __init__(self, capacity: int = ROOM_CAPACITY) -> None:
        self._capacity = capacity
        # Insertion-ordered dicts double as ordered sets.
        self._rooms: Dict[str, Dict[str, None]] = {}
        self._membership: Dict[str, str] = {}

    @property
    def capacity(self) -> int:
        return self._capacity

    def join(self, participant_id: str, room_id: str) -> JoinResult:
        """Add a participant to a room, moving them out of any other room first."""

        members = self._rooms.get(room_id, {})
        if participant_id in members:
            return JoinResult(
                room_id=room_id,
                participant_id=participant_id,
                members=list(members),
                already_member=True,
            )
        if len(members) >= self._capacity:
            raise RoomFullError(room_id)

        previous = None
        current = self._membership.get(participant_id)
        if current is not None:
            previous = self.leave(participant_id, current)

        participants = self._rooms.setdefault(room_id, {})
        participants[participant_id] = None
        self._membership[participant_id] = room_id
        return JoinResult(
            room_id=room_id,
            participant_id=participant_id,
            members=list(participants),
            previous=previous,
        )

    def leave(self, participant_id: str, room_id: str) -> Optional[LeaveResult]:
        """Remove a participant from a room; ``None`` if they were not in it."""

        participants = self._rooms.get(room_id)
        if not participants or participant_id not in participants:
            return None
        participants.pop(participant_id)
        self._membership.pop(participant_id, None)
        if not participants:
            self._rooms.pop(room_id, None)
        return LeaveResult(room_id=room_id, participant_id=participant_id, remaining=list(participants))

    def discard(self, participant_id: str) -> Optional[LeaveResult]:
        """Remove a participant from whatever room they occupy."""

        room_id = self._membership.get(participant_id)
        if room_id is None:
            return None
        return self.leave(participant_id, room_id)

    def room_of(self, participant_id: str) -> Optional[str]:
        return self._membership.get(participant_id)

    def members(self, room_id: str) -> List[str]:
        return list(self._rooms.get(room_id, {}))

    def occupancy(self, room_id: str) -> int:
        return len(self._rooms.get(room_id, {}))

    def is_member(self, participant_id: str, room_id: str) -> bool:
        return self._membership.get(participant_id) == room_id

    def rooms(self) -> Dict[str, List[str]]:
        """Snapshot of all live rooms."""

        return {room_id: list(participants) for room_id, participants in self._rooms.items()}
