"""Tests for room membership bookkeeping."""
from __future__ import annotations

import pytest

from peercall.services.registry import ROOM_CAPACITY, RoomFullError, RoomRegistry


def test_join_creates_room_and_orders_members():
    registry = RoomRegistry()

    first = registry.join("a", "ABC123")
    second = registry.join("b", "ABC123")

    assert first.members == ["a"]
    assert first.others == []
    assert second.members == ["a", "b"]
    assert second.others == ["a"]
    assert second.occupancy == ROOM_CAPACITY
    assert registry.room_of("b") == "ABC123"


def test_full_room_rejects_without_changing_members():
    registry = RoomRegistry()
    registry.join("a", "ABC123")
    registry.join("b", "ABC123")
    registry.join("c", "OTHER")

    with pytest.raises(RoomFullError) as exc:
        registry.join("c", "ABC123")

    assert exc.value.room_id == "ABC123"
    assert registry.members("ABC123") == ["a", "b"]
    assert registry.room_of("c") == "OTHER"


def test_rejoining_same_room_is_not_counted_twice():
    registry = RoomRegistry()
    registry.join("a", "ABC123")
    registry.join("b", "ABC123")

    result = registry.join("b", "ABC123")

    assert result.already_member is True
    assert result.members == ["a", "b"]


def test_joining_another_room_leaves_the_previous_one():
    registry = RoomRegistry()
    registry.join("a", "ROOM-1")
    registry.join("b", "ROOM-1")

    result = registry.join("a", "ROOM-2")

    assert result.previous is not None
    assert result.previous.room_id == "ROOM-1"
    assert result.previous.remaining == ["b"]
    assert registry.members("ROOM-1") == ["b"]
    assert registry.members("ROOM-2") == ["a"]
    assert registry.room_of("a") == "ROOM-2"


def test_leave_is_idempotent_and_drops_empty_rooms():
    registry = RoomRegistry()
    registry.join("a", "ABC123")

    first = registry.leave("a", "ABC123")
    second = registry.leave("a", "ABC123")

    assert first is not None and first.remaining == []
    assert second is None
    assert registry.rooms() == {}
    assert registry.room_of("a") is None


def test_leave_for_room_never_joined_is_a_noop():
    registry = RoomRegistry()
    registry.join("a", "ABC123")

    assert registry.leave("a", "ELSEWHERE") is None
    assert registry.leave("ghost", "ABC123") is None
    assert registry.members("ABC123") == ["a"]


def test_discard_removes_current_membership():
    registry = RoomRegistry()
    registry.join("a", "ABC123")
    registry.join("b", "ABC123")

    result = registry.discard("a")

    assert result is not None
    assert result.remaining == ["b"]
    assert registry.discard("a") is None
    assert registry.occupancy("ABC123") == 1
