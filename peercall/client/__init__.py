"""Expose the calling client API."""
from .negotiation import CallInProgressError, CallState, NegotiationMachine
from .orchestrator import ConnectionOrchestrator, generate_room_id
from .peer import AiortcPeerSession, LocalMedia

__all__ = [
    "AiortcPeerSession",
    "CallInProgressError",
    "CallState",
    "ConnectionOrchestrator",
    "LocalMedia",
    "NegotiationMachine",
    "generate_room_id",
]
