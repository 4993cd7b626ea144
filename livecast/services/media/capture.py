"""Media capture and rendering collaborators built on aiortc.contrib.media."""

import asyncio
import errno
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from aiortc.contrib.media import MediaBlackhole, MediaPlayer, MediaRecorder
from loguru import logger

from livecast.domain.utils.idgen import new_stream_id
from livecast.utils.app_errors import AppErrorCode, MediaAcquisitionError

PERMISSION_DENIED_MESSAGE = "Camera permission denied, please allow camera access"
DEVICE_NOT_FOUND_MESSAGE = "Camera device not found"
DEVICE_BUSY_MESSAGE = "The camera is being used by another application"
NO_VIDEO_TRACK_MESSAGE = "Unable to get video track"


class MediaSource:
    """Local media tracks held by the streamer.

    Tracks are shared (not copied) across every peer session and are stopped
    exactly once, by `stop()`.
    """

    def __init__(self, tracks: list[Any]):
        self.tracks = list(tracks)
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def ready(self) -> bool:
        if self._stopped:
            return False
        return any(
            track.kind == "video" and getattr(track, "readyState", "live") != "ended"
            for track in self.tracks
        )

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        for track in self.tracks:
            logger.debug("Stopping track: {}", track.kind)
            track.stop()


class MediaCaptureProvider(Protocol):
    async def acquire(self) -> MediaSource: ...


def _map_capture_error(exc: OSError) -> MediaAcquisitionError:
    if isinstance(exc, PermissionError):
        return MediaAcquisitionError(AppErrorCode.E_PERMISSION_DENIED, PERMISSION_DENIED_MESSAGE)
    if isinstance(exc, FileNotFoundError):
        return MediaAcquisitionError(AppErrorCode.E_DEVICE_NOT_FOUND, DEVICE_NOT_FOUND_MESSAGE)
    if exc.errno == errno.EBUSY:
        return MediaAcquisitionError(AppErrorCode.E_DEVICE_BUSY, DEVICE_BUSY_MESSAGE)
    return MediaAcquisitionError(AppErrorCode.E_MEDIA_OTHER, str(exc) or "Unable to get media devices")


class PlayerCaptureProvider:
    """Capture provider backed by aiortc's MediaPlayer.

    `video` is a device path or file (e.g. "/dev/video0" with format "v4l2",
    or "sample.mp4"). Audio comes from the same source unless a separate
    `audio` device is given (e.g. "default" with format "pulse").
    """

    def __init__(
        self,
        video: str,
        *,
        video_format: str | None = None,
        video_options: dict[str, str] | None = None,
        audio: str | None = None,
        audio_format: str | None = None,
        player_factory: Callable[..., Any] = MediaPlayer,
    ):
        self.video = video
        self.video_format = video_format
        self.video_options = video_options or {}
        self.audio = audio
        self.audio_format = audio_format
        self._player_factory = player_factory

    async def _open(self, file: str, format: str | None, options: dict[str, str]) -> Any:
        try:
            return await asyncio.to_thread(self._player_factory, file, format=format, options=options)
        except OSError as exc:
            logger.error("Failed to acquire media stream from {}: {}", file, exc)
            raise _map_capture_error(exc) from exc

    async def acquire(self) -> MediaSource:
        player = await self._open(self.video, self.video_format, self.video_options)

        tracks = [track for track in (player.video, player.audio) if track is not None]
        if player.video is None:
            for track in tracks:
                track.stop()
            raise MediaAcquisitionError(AppErrorCode.E_MEDIA_OTHER, NO_VIDEO_TRACK_MESSAGE)

        if self.audio is not None:
            try:
                audio_player = await self._open(self.audio, self.audio_format, {})
            except MediaAcquisitionError:
                for track in tracks:
                    track.stop()
                raise
            if audio_player.audio is not None:
                if player.audio is not None:
                    player.audio.stop()
                tracks = [player.video, audio_player.audio]

        logger.info("Local media ready, track count: {}", len(tracks))
        return MediaSource(tracks)


@dataclass
class RemoteMediaStream:
    """Tracks received from the streamer, grouped as one stream."""

    stream_id: str = field(default_factory=new_stream_id)
    tracks: list[Any] = field(default_factory=list)

    def add_track(self, track: Any) -> None:
        if track not in self.tracks:
            self.tracks.append(track)


class RenderSurface(Protocol):
    def attach(self, stream: RemoteMediaStream) -> None: ...

    async def play(self) -> None: ...

    async def detach(self) -> None: ...


class _SinkSurface:
    """Feeds every track of the attached stream into an aiortc media sink."""

    def __init__(self) -> None:
        self.stream: RemoteMediaStream | None = None
        self._sink: Any = None

    def _make_sink(self) -> Any:
        raise NotImplementedError

    def attach(self, stream: RemoteMediaStream) -> None:
        self.stream = stream

    async def play(self) -> None:
        if self.stream is None:
            raise RuntimeError("No stream attached")
        if self._sink is not None:
            return
        sink = self._make_sink()
        for track in self.stream.tracks:
            sink.addTrack(track)
        await sink.start()
        self._sink = sink

    async def detach(self) -> None:
        sink, self._sink = self._sink, None
        self.stream = None
        if sink is not None:
            await sink.stop()


class RecorderSurface(_SinkSurface):
    """Writes the remote stream to a file (e.g. "out.mp4")."""

    def __init__(self, path: str, *, format: str | None = None):
        super().__init__()
        self.path = path
        self.format = format

    def _make_sink(self) -> Any:
        return MediaRecorder(self.path, format=self.format)


class BlackholeSurface(_SinkSurface):
    """Consumes and discards the remote stream."""

    def _make_sink(self) -> Any:
        return MediaBlackhole()
