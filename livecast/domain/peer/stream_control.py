"""Pause/resume of the streamer's broadcast and the viewer's mirror of it."""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from loguru import logger

from livecast.domain.peer.negotiation import NegotiationCoordinator
from livecast.domain.peer.peer_manager import PeerConnectionManager
from livecast.schemas import ClientMessage, StreamPausedIn, StreamResumedIn
from livecast.services.media.capture import MediaCaptureProvider, MediaSource
from livecast.utils.app_errors import AppError


class StreamControlSynchronizer:
    """Streamer-side pause and resume.

    Pause stops the local tracks and tells the room; sessions stay open.
    Resume reacquires media, tells the room, then renegotiates every known
    viewer on its existing session.
    """

    def __init__(
        self,
        manager: PeerConnectionManager,
        coordinator: NegotiationCoordinator,
        capture: MediaCaptureProvider,
        send: Callable[[ClientMessage], Awaitable[Any]],
    ):
        self.manager = manager
        self.coordinator = coordinator
        self.capture = capture
        self.paused = False
        self._send = send

    async def start(self) -> MediaSource:
        source = await self.capture.acquire()
        self.manager.set_local_media(source)
        return source

    async def pause(self, room_id: str) -> None:
        self.manager.release_local_media()
        self.paused = True
        await self._send(StreamPausedIn(room_id=room_id))
        logger.info("Stream paused in room {}", room_id)

    async def resume(self, room_id: str, viewer_ids: Iterable[str]) -> dict[str, AppError]:
        """Resume broadcasting to `viewer_ids`.

        Raises:
            MediaAcquisitionError: local media could not be reacquired

        Returns:
            Viewers whose renegotiation failed, with the error
        """
        await self.start()
        await self._send(StreamResumedIn(room_id=room_id))
        self.paused = False

        viewer_ids = list(viewer_ids)
        logger.info("Stream resumed in room {}, renegotiating {} viewers", room_id, len(viewer_ids))
        results = await asyncio.gather(
            *(self.coordinator.create_offer(viewer_id, fresh=False) for viewer_id in viewer_ids),
            return_exceptions=True,
        )

        failures: dict[str, AppError] = {}
        for viewer_id, result in zip(viewer_ids, results):
            if isinstance(result, AppError):
                logger.warning("Renegotiation with {} failed: {}", viewer_id, result.errmesg)
                failures[viewer_id] = result
            elif isinstance(result, BaseException):
                raise result
        return failures


@dataclass
class ViewerPlaybackState:
    paused: bool = False
    processing_offer: bool = False
    playing: bool = False
    needs_user_interaction: bool = False

    def mark_paused(self) -> None:
        self.paused = True
        self.playing = False

    def mark_resumed(self) -> None:
        self.paused = False
        self.processing_offer = False

    def mark_playing(self) -> None:
        self.playing = True
        self.paused = False
        self.needs_user_interaction = False

    def mark_blocked(self) -> None:
        self.playing = False
        self.needs_user_interaction = True

    def reset(self) -> None:
        self.paused = False
        self.processing_offer = False
        self.playing = False
        self.needs_user_interaction = False
