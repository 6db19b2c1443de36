"""FastAPI application hosting the two-party signaling relay."""
from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from .core.config import Settings, settings
from .routers import rtc, signaling
from .services.registry import RoomRegistry
from .services.signaling import SignalingRelay

logger = logging.getLogger(__name__)


def create_app(app_settings: Settings | None = None) -> FastAPI:
    """Build the relay application with its own room registry."""

    app_settings = app_settings or settings
    application = FastAPI(title="PeerCall Signaling Relay", version="0.1.0")
    application.state.settings = app_settings
    application.state.relay = SignalingRelay(RoomRegistry())

    if app_settings.cors_allow_origins:
        application.add_middleware(
            CORSMiddleware,
            allow_origins=app_settings.cors_allow_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    application.include_router(rtc.router, prefix="/api/rtc", tags=["rtc"])
    application.include_router(signaling.router, prefix="/api/rtc", tags=["rtc"])

    @application.get("/api/health", tags=["meta"])
    async def health() -> dict[str, str]:
        """Simple liveness probe."""

        return {"status": "ok"}

    @application.head("/api/health", tags=["meta"])
    async def health_head() -> Response:
        """Allow HEAD for uptime monitors that only need the status code."""

        return Response(status_code=200)

    logger.info("Signaling relay ready (env=%s)", app_settings.app_env)
    return application


app = create_app()
