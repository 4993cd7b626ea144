"""Example: Broadcast a camera or a media file to a room.

Starts a streamer against a running relay, prints the room id and keeps
serving viewers until interrupted. Pause and resume are driven from stdin.

Usage:
    # Webcam on Linux
    python examples/streamer_example.py --video /dev/video0 --video-format v4l2

    # Loop a file instead of a camera
    python examples/streamer_example.py --video sample.mp4

    Type "p" + Enter to pause, "r" + Enter to resume, "q" + Enter to quit.
"""

import argparse
import asyncio
import os

from dotenv import load_dotenv
from loguru import logger

from livecast.clients.streamer import StreamerClient
from livecast.services.media.capture import PlayerCaptureProvider
from livecast.services.transport.signaling_client import SignalingClient
from livecast.shared.api.utils import init_logger

# Optional local override (do not commit).
load_dotenv("env.local", override=False)

SIGNALING_URL = os.getenv("SIGNALING_URL", "ws://localhost:3000/ws")
PUBLIC_APP_URL = os.getenv("PUBLIC_APP_URL", "http://localhost:3000")


async def read_commands(streamer: StreamerClient) -> None:
    while True:
        line = await asyncio.to_thread(input)
        command = line.strip().lower()
        if command == "p":
            await streamer.pause()
        elif command == "r":
            await streamer.resume()
        elif command == "q":
            return
        print(f"[{streamer.status.status}] viewers={len(streamer.viewer_ids)}")


async def main(args: argparse.Namespace) -> None:
    init_logger()

    transport = SignalingClient(args.url)
    capture = PlayerCaptureProvider(
        args.video,
        video_format=args.video_format,
        video_options={"video_size": args.video_size} if args.video_size else None,
        audio=args.audio,
        audio_format=args.audio_format,
    )
    streamer = StreamerClient(transport, capture)
    streamer.status.subscribe(lambda s: logger.info("status: {} error: {}", s.status, s.error_message))

    await transport.connect()
    try:
        room_id = await streamer.start()
        if room_id is None:
            print(f"Failed to start: {streamer.status.error_message}")
            return

        print(f"Room: {room_id}")
        print(f"Watch at: {PUBLIC_APP_URL}/watch/{room_id}")
        await read_commands(streamer)
    finally:
        await streamer.close()
        await transport.disconnect()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Livecast streamer")
    parser.add_argument("--url", default=SIGNALING_URL, help="Signaling WebSocket URL")
    parser.add_argument("--video", required=True, help="Camera device or media file")
    parser.add_argument("--video-format", help="ffmpeg input format, e.g. v4l2, avfoundation")
    parser.add_argument("--video-size", help="Capture size, e.g. 1280x720")
    parser.add_argument("--audio", help="Separate audio device, e.g. default")
    parser.add_argument("--audio-format", help="ffmpeg audio input format, e.g. pulse")

    asyncio.run(main(parser.parse_args()))
