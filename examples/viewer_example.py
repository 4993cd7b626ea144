"""Example: Watch a room and record the stream to a file.

Looks the room up over HTTP, joins it over the signaling socket and writes
the received media to disk until interrupted.

Usage:
    python examples/viewer_example.py --room-id dev-room-001 --output out.mp4

    # Discard media, only exercise the connection
    python examples/viewer_example.py --room-id dev-room-001 --blackhole
"""

import argparse
import asyncio
import os

import httpx
from dotenv import load_dotenv
from loguru import logger

from livecast.clients.viewer import ViewerClient
from livecast.services.media.capture import BlackholeSurface, RecorderSurface
from livecast.services.transport.signaling_client import SignalingClient
from livecast.shared.api.utils import init_logger

# Optional local override (do not commit).
load_dotenv("env.local", override=False)

API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:3000")
SIGNALING_URL = os.getenv("SIGNALING_URL", "ws://localhost:3000/ws")


async def lookup_room(room_id: str) -> dict | None:
    """Return room info, or None if the room is not live."""
    async with httpx.AsyncClient(base_url=API_BASE_URL) as client:
        response = await client.get(f"/api/v1/room/{room_id}")
        data = response.json()
        if not data.get("success"):
            print(f"Room lookup failed: {data.get('errcode')} {data.get('errmesg')}")
            return None
        return data["results"]


async def main(args: argparse.Namespace) -> None:
    init_logger()

    room = await lookup_room(args.room_id)
    if room is None:
        return
    print(f"Room {room['room_id']} is live with {room['viewer_count']} viewers")

    surface = BlackholeSurface() if args.blackhole else RecorderSurface(args.output)
    transport = SignalingClient(args.url)
    viewer = ViewerClient(transport, args.room_id, surface)
    viewer.status.subscribe(lambda s: logger.info("status: {} error: {}", s.status, s.error_message))

    await transport.connect()
    try:
        if not await viewer.join():
            print(f"Failed to join: {viewer.status.error_message}")
            return
        await asyncio.Event().wait()
    finally:
        await viewer.close()
        await transport.disconnect()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Livecast viewer")
    parser.add_argument("--url", default=SIGNALING_URL, help="Signaling WebSocket URL")
    parser.add_argument("--room-id", required=True, help="Room to join")
    parser.add_argument("--output", default="livecast-recording.mp4", help="Recording path")
    parser.add_argument("--blackhole", action="store_true", help="Discard media instead of recording")

    try:
        asyncio.run(main(parser.parse_args()))
    except KeyboardInterrupt:
        pass
