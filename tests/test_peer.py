"""Tests for aiortc session helpers."""
from __future__ import annotations

import asyncio

import pytest
from aiortc.mediastreams import AudioStreamTrack

from peercall.client.peer import (
    AiortcPeerSession,
    LocalMedia,
    candidates_from_sdp,
    description_from_dict,
    description_to_dict,
)

SDP = "\r\n".join(
    [
        "v=0",
        "o=- 3911 3911 IN IP4 0.0.0.0",
        "s=-",
        "t=0 0",
        "a=group:BUNDLE 0 1",
        "m=audio 9 UDP/TLS/RTP/SAVPF 111",
        "c=IN IP4 0.0.0.0",
        "a=candidate:a1 1 udp 2130706431 192.168.1.5 50000 typ host",
        "a=candidate:a2 1 udp 1694498815 203.0.113.7 50000 typ srflx raddr 192.168.1.5 rport 50000",
        "a=end-of-candidates",
        "a=mid:0",
        "m=video 9 UDP/TLS/RTP/SAVPF 96",
        "c=IN IP4 0.0.0.0",
        "a=mid:1",
        "a=candidate:v1 1 udp 2130706431 192.168.1.5 50002 typ host",
        "",
    ]
)


def test_candidates_from_sdp_tags_each_media_section():
    candidates = list(candidates_from_sdp(SDP))

    assert candidates == [
        {"candidate": "candidate:a1 1 udp 2130706431 192.168.1.5 50000 typ host", "sdpMid": "0", "sdpMLineIndex": 0},
        {
            "candidate": "candidate:a2 1 udp 1694498815 203.0.113.7 50000 typ srflx raddr 192.168.1.5 rport 50000",
            "sdpMid": "0",
            "sdpMLineIndex": 0,
        },
        {"candidate": "candidate:v1 1 udp 2130706431 192.168.1.5 50002 typ host", "sdpMid": "1", "sdpMLineIndex": 1},
    ]


def test_candidates_from_sdp_without_media():
    assert list(candidates_from_sdp("v=0\r\ns=-\r\n")) == []


def test_description_round_trip():
    description = description_from_dict({"type": "offer", "sdp": SDP})

    assert description.type == "offer"
    assert description_to_dict(description) == {"type": "offer", "sdp": SDP}


@pytest.mark.parametrize("payload", [None, "v=0", {"sdp": "v=0"}, {"type": "offer"}])
def test_description_from_dict_rejects_incomplete_payloads(payload):
    with pytest.raises(ValueError):
        description_from_dict(payload)


def test_local_media_stop_stops_every_track():
    class Track:
        kind = "video"
        stopped = False

        def stop(self) -> None:
            self.stopped = True

    tracks = [Track(), Track()]

    LocalMedia(tracks=tracks).stop()

    assert all(track.stopped for track in tracks)


@pytest.mark.asyncio
async def test_aiortc_sessions_negotiate_over_loopback():
    caller_candidates: list[dict] = []
    callee_candidates: list[dict] = []
    caller_states: list[str] = []
    remote_tracks: list = []

    caller = AiortcPeerSession(
        ice_servers=[],
        tracks=[AudioStreamTrack()],
        on_candidate=caller_candidates.append,
        on_state_change=caller_states.append,
        on_track=lambda track: None,
    )
    callee = AiortcPeerSession(
        ice_servers=[],
        tracks=[],
        on_candidate=callee_candidates.append,
        on_state_change=lambda state: None,
        on_track=remote_tracks.append,
    )
    try:
        offer = await caller.create_offer()
        answer = await callee.accept_offer(offer)
        await caller.apply_answer(answer)

        for candidate in callee_candidates:
            await caller.add_candidate(candidate)
        for candidate in caller_candidates:
            await callee.add_candidate(candidate)
        await callee.add_candidate({"candidate": "", "sdpMid": "0", "sdpMLineIndex": 0})

        assert offer["type"] == "offer"
        assert answer["type"] == "answer"
        assert all(candidate["sdpMid"] == "0" for candidate in caller_candidates)
        assert [track.kind for track in remote_tracks] == ["audio"]

        for _ in range(100):
            if caller_states:
                break
            await asyncio.sleep(0.05)
        assert caller_states[0] == "connecting"
    finally:
        await caller.close()
        await callee.close()
