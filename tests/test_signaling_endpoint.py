"""Tests for the signaling websocket endpoint and RTC helper routes."""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from peercall.core.config import Settings
from peercall.main import create_app

SIGNALING = "/api/rtc/signaling"


def join(ws, room: str) -> None:
    ws.send_json({"event": "join-room", "data": room})


def test_two_party_room_scenario():
    client = TestClient(create_app())

    with client.websocket_connect(f"{SIGNALING}?participant_id=a") as ws_a:
        assert ws_a.receive_json() == {"event": "connected", "data": {"userId": "a"}}
        join(ws_a, "ABC123")
        assert ws_a.receive_json() == {"event": "room-info", "data": {"numUsers": 1}}

        with client.websocket_connect(f"{SIGNALING}?participant_id=b") as ws_b:
            ws_b.receive_json()
            join(ws_b, "ABC123")
            assert ws_a.receive_json() == {"event": "user-joined", "data": {"userId": "b"}}
            assert ws_b.receive_json() == {"event": "room-info", "data": {"numUsers": 2}}

            with client.websocket_connect(f"{SIGNALING}?participant_id=c") as ws_c:
                ws_c.receive_json()
                join(ws_c, "ABC123")
                rejected = ws_c.receive_json()
                assert rejected["event"] == "room-full"
                assert rejected["data"]["message"]

            status = client.get("/api/rtc/rooms/ABC123").json()
            assert status == {"room_id": "ABC123", "num_users": 2, "capacity": 2, "full": True}

            ws_b.send_json({"event": "offer", "data": {"roomId": "ABC123", "offer": {"type": "offer", "sdp": "hi"}}})
            forwarded = ws_a.receive_json()
            assert forwarded == {
                "event": "offer",
                "data": {"offer": {"type": "offer", "sdp": "hi"}, "from": "b"},
            }

        assert ws_a.receive_json() == {"event": "user-left", "data": {"userId": "b"}}
        assert ws_a.receive_json() == {"event": "room-info", "data": {"numUsers": 1}}


def test_offer_sent_alone_is_dropped():
    client = TestClient(create_app())

    with client.websocket_connect(f"{SIGNALING}?participant_id=a") as ws_a:
        ws_a.receive_json()
        join(ws_a, "ABC123")
        ws_a.receive_json()
        ws_a.send_json({"event": "offer", "data": {"roomId": "ABC123", "offer": {"sdp": "first"}}})
        # Re-joining is acknowledged, so the offer above has been handled by now.
        join(ws_a, "ABC123")
        assert ws_a.receive_json() == {"event": "room-info", "data": {"numUsers": 1}}

        with client.websocket_connect(f"{SIGNALING}?participant_id=b") as ws_b:
            ws_b.receive_json()
            join(ws_b, "ABC123")
            assert ws_b.receive_json() == {"event": "room-info", "data": {"numUsers": 2}}
            assert ws_a.receive_json()["event"] == "user-joined"

            ws_a.send_json({"event": "offer", "data": {"roomId": "ABC123", "offer": {"sdp": "second"}}})
            assert ws_b.receive_json() == {"event": "offer", "data": {"offer": {"sdp": "second"}, "from": "a"}}


def test_malformed_frames_are_ignored():
    client = TestClient(create_app())

    with client.websocket_connect(f"{SIGNALING}?participant_id=a") as ws_a:
        ws_a.receive_json()
        ws_a.send_text("not json")
        ws_a.send_json({"event": "shout", "data": "ROOM"})
        ws_a.send_json({"event": "offer", "data": {"offer": {"sdp": "missing room"}}})
        ws_a.send_bytes(b"\xff\xfe not json")
        ws_a.send_bytes(b'{"event": "join-room", "data": "ROOM"}')
        assert ws_a.receive_json() == {"event": "room-info", "data": {"numUsers": 1}}
        join(ws_a, "ROOM")
        assert ws_a.receive_json() == {"event": "room-info", "data": {"numUsers": 1}}


def test_duplicate_participant_id_is_refused():
    client = TestClient(create_app())

    with client.websocket_connect(f"{SIGNALING}?participant_id=a") as ws_a:
        ws_a.receive_json()
        with client.websocket_connect(f"{SIGNALING}?participant_id=a") as ws_dup:
            with pytest.raises(WebSocketDisconnect) as exc:
                ws_dup.receive_json()
        assert exc.value.code == 1008


def test_generated_participant_id():
    client = TestClient(create_app())

    with client.websocket_connect(SIGNALING) as ws:
        greeting = ws.receive_json()

    assert greeting["event"] == "connected"
    assert len(greeting["data"]["userId"]) == 32


def test_ice_servers_route():
    client = TestClient(create_app())

    response = client.get("/api/rtc/ice-servers")

    assert response.status_code == 200
    servers = response.json()["iceServers"]
    assert servers
    assert all(server["urls"][0].startswith("stun:") for server in servers)


def test_ice_servers_route_uses_app_settings():
    app_settings = Settings(_env_file=None, ice_servers=["stun:stun.example.org:3478"])
    client = TestClient(create_app(app_settings))

    response = client.get("/api/rtc/ice-servers")

    assert response.json() == {"iceServers": [{"urls": ["stun:stun.example.org:3478"]}]}


def test_room_status_for_empty_room():
    client = TestClient(create_app())

    response = client.get("/api/rtc/rooms/EMPTY1")

    assert response.json() == {"room_id": "EMPTY1", "num_users": 0, "capacity": 2, "full": False}
