"""aiortc peer session used by the orchestrator.

aiortc gathers every local candidate while applying the local description and
does not emit ``icecandidate`` events, so the session announces the
``a=candidate`` lines of each local description through ``on_candidate`` as
soon as that description is set.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol, Sequence

from aiortc import MediaStreamTrack, RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription
from aiortc.contrib.media import MediaPlayer
from aiortc.sdp import candidate_from_sdp

logger = logging.getLogger(__name__)

Description = Dict[str, str]
Candidate = Dict[str, Any]
CandidateHandler = Callable[[Candidate], None]
StateHandler = Callable[[str], None]
TrackHandler = Callable[[MediaStreamTrack], None]


@dataclass
class LocalMedia:
    """Locally captured tracks handed to ``start_call``."""

    tracks: List[MediaStreamTrack] = field(default_factory=list)
    player: Optional[MediaPlayer] = None

    @classmethod
    def from_player(cls, file: str, format: str | None = None, options: dict | None = None) -> "LocalMedia":
        """Capture from a file or device through ``MediaPlayer``."""

        player = MediaPlayer(file, format=format, options=options or {})
        tracks = [track for track in (player.audio, player.video) if track is not None]
        return cls(tracks=tracks, player=player)

    def stop(self) -> None:
        for track in self.tracks:
            logger.debug("Stopping %s track", track.kind)
            track.stop()


class PeerSession(Protocol):
    async def create_offer(self) -> Description: ...

    async def accept_offer(self, description: Description) -> Description: ...

    async def apply_answer(self, description: Description) -> None: ...

    async def add_candidate(self, candidate: Candidate) -> None: ...

    async def close(self) -> None: ...


SessionFactory = Callable[..., PeerSession]


def description_to_dict(description: RTCSessionDescription) -> Description:
    return {"type": description.type, "sdp": description.sdp}


def description_from_dict(payload: Any) -> RTCSessionDescription:
    if not isinstance(payload, dict) or "sdp" not in payload or "type" not in payload:
        raise ValueError("session description must carry 'type' and 'sdp'")
    return RTCSessionDescription(sdp=payload["sdp"], type=payload["type"])


def candidates_from_sdp(sdp: str) -> Iterator[Candidate]:
    """Yield browser-style candidate dicts for every ``a=candidate`` line."""

    index = -1
    mid: Optional[str] = None
    section: List[str] = []

    def flush() -> Iterator[Candidate]:
        for line in section:
            yield {"candidate": line, "sdpMid": mid, "sdpMLineIndex": index}

    for line in sdp.splitlines():
        line = line.strip()
        if line.startswith("m="):
            yield from flush()
            index += 1
            mid = None
            section = []
        elif index >= 0 and line.startswith("a=mid:"):
            mid = line[len("a=mid:"):]
        elif index >= 0 and line.startswith("a=candidate:"):
            section.append(line[2:])
    yield from flush()


class AiortcPeerSession:
    """Wrap one ``RTCPeerConnection`` behind the orchestrator's session interface."""

    def __init__(
        self,
        *,
        ice_servers: Sequence[str],
        tracks: Sequence[MediaStreamTrack],
        on_candidate: CandidateHandler,
        on_state_change: StateHandler,
        on_track: TrackHandler,
    ) -> None:
        configuration = RTCConfiguration(iceServers=[RTCIceServer(urls=[url]) for url in ice_servers])
        self._pc = RTCPeerConnection(configuration=configuration)
        self._on_candidate = on_candidate

        for track in tracks:
            logger.debug("Adding %s track to peer connection", track.kind)
            self._pc.addTrack(track)

        @self._pc.on("connectionstatechange")
        def _on_connection_state_change() -> None:
            logger.info("Peer connection state: %s", self._pc.connectionState)
            on_state_change(self._pc.connectionState)

        @self._pc.on("iceconnectionstatechange")
        def _on_ice_connection_state_change() -> None:
            logger.debug("ICE connection state: %s", self._pc.iceConnectionState)

        @self._pc.on("track")
        def _on_track(track: MediaStreamTrack) -> None:
            logger.info("Received remote %s track", track.kind)
            on_track(track)

    async def create_offer(self) -> Description:
        offer = await self._pc.createOffer()
        await self._pc.setLocalDescription(offer)
        return self._local_description()

    async def accept_offer(self, description: Description) -> Description:
        await self._pc.setRemoteDescription(description_from_dict(description))
        answer = await self._pc.createAnswer()
        await self._pc.setLocalDescription(answer)
        return self._local_description()

    async def apply_answer(self, description: Description) -> None:
        await self._pc.setRemoteDescription(description_from_dict(description))

    async def add_candidate(self, candidate: Candidate) -> None:
        if not isinstance(candidate, dict):
            raise ValueError("candidate must be an object")
        line = candidate.get("candidate") or ""
        if not line:
            # End-of-candidates marker; aiortc learns it from the description.
            return
        if line.startswith("candidate:"):
            line = line[len("candidate:"):]
        ice_candidate = candidate_from_sdp(line)
        ice_candidate.sdpMid = candidate.get("sdpMid")
        ice_candidate.sdpMLineIndex = candidate.get("sdpMLineIndex")
        await self._pc.addIceCandidate(ice_candidate)

    async def close(self) -> None:
        await self._pc.close()

    def _local_description(self) -> Description:
        local = description_to_dict(self._pc.localDescription)
        for candidate in candidates_from_sdp(local["sdp"]):
            self._on_candidate(candidate)
        return local
