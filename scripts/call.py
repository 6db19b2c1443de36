"""Join a two-party call from the command line using aiortc media helpers."""
from __future__ import annotations

import argparse
import asyncio
import logging

from aiortc.contrib.media import MediaBlackhole, MediaRecorder

from peercall.client import CallState, ConnectionOrchestrator, LocalMedia, generate_room_id
from peercall.core.config import settings

logger = logging.getLogger("peercall.call")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Join (or create) a PeerCall room")
    parser.add_argument("--room", default=None, help="Room code to join; a new one is generated if omitted")
    parser.add_argument("--relay-url", default=settings.relay_url, help="Signaling relay WebSocket URL")
    parser.add_argument("--play", required=True, help="Media file or device to send (passed to MediaPlayer)")
    parser.add_argument("--play-format", default=None, help="MediaPlayer input format, e.g. v4l2 or pulse")
    parser.add_argument("--record", default=None, help="Write the remote media to this file")
    parser.add_argument("--tie-break", choices=["timer", "arrival"], default=settings.tie_break)
    return parser.parse_args()


async def run(args: argparse.Namespace) -> None:
    room_id = args.room or generate_room_id()
    recorder = MediaRecorder(args.record) if args.record else MediaBlackhole()
    finished = asyncio.Event()
    recording = False

    def on_track(track) -> None:
        recorder.addTrack(track)

    async def on_state(state: CallState) -> None:
        nonlocal recording
        logger.info("Call state: %s", state.value)
        if state is CallState.CONNECTED and not recording:
            recording = True
            await recorder.start()

    def on_lost(reason: str) -> None:
        logger.warning("Connection lost (%s)", reason)
        finished.set()

    def on_full(message: str) -> None:
        logger.error("%s", message)
        finished.set()

    def on_left(user_id: str) -> None:
        logger.info("Peer %s left the room", user_id)
        finished.set()

    orchestrator = ConnectionOrchestrator(
        room_id,
        relay_url=args.relay_url,
        tie_break=args.tie_break,
        on_remote_track=on_track,
        on_state_change=on_state,
        on_user_joined=lambda user_id: logger.info("Peer %s joined", user_id),
        on_user_left=on_left,
        on_room_full=on_full,
        on_connection_lost=on_lost,
    )

    logger.info("Room code: %s", room_id)
    async with orchestrator:
        await orchestrator.start_call(LocalMedia.from_player(args.play, format=args.play_format))
        await finished.wait()
    await recorder.stop()


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
