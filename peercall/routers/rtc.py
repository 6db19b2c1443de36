"""RTC helper endpoints for call clients."""
from __future__ import annotations

from fastapi import APIRouter, Request

from ..core.config import Settings
from ..schemas.signaling import IceServer, IceServersResponse, RoomStatusResponse
from ..services.signaling import SignalingRelay

router = APIRouter()


@router.get("/ice-servers", response_model=IceServersResponse)
async def ice_servers(request: Request) -> IceServersResponse:
    """Return the STUN servers peers should use for candidate gathering."""

    app_settings: Settings = request.app.state.settings
    return IceServersResponse(ice_servers=[IceServer(urls=[url]) for url in app_settings.ice_servers])


@router.get("/rooms/{room_id}", response_model=RoomStatusResponse)
async def room_status(room_id: str, request: Request) -> RoomStatusResponse:
    """Report how many participants currently occupy a room."""

    relay: SignalingRelay = request.app.state.relay
    num_users = await relay.occupancy(room_id)
    capacity = relay.registry.capacity
    return RoomStatusResponse(room_id=room_id, num_users=num_users, capacity=capacity, full=num_users >= capacity)
