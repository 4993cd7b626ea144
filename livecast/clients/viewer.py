"""Viewer client: joins a room, answers the streamer and renders its stream."""

import asyncio
from collections.abc import Awaitable, Callable

from loguru import logger

from livecast.app_config import AppEnvironConfig, get_app_environ_config
from livecast.clients.status import ClientStatus
from livecast.domain.peer.negotiation import NegotiationCoordinator
from livecast.domain.peer.peer_manager import PeerConnectionManager
from livecast.domain.peer.reconnection import ReconnectionController
from livecast.domain.peer.stream_control import ViewerPlaybackState
from livecast.schemas import (
    ConnectionState,
    IceCandidateOut,
    JoinRoomIn,
    JoinRoomResult,
    OfferOut,
    PeerRole,
    StreamerLeftOut,
    StreamPausedOut,
    StreamResumedOut,
)
from livecast.services.media.capture import RemoteMediaStream, RenderSurface
from livecast.services.media.rtc import PeerFactory, default_peer_factory
from livecast.services.transport.signaling_client import (
    DISCONNECT_EVENT,
    RECONNECT_EVENT,
    SignalingClient,
)
from livecast.shared.api.utils import format_error
from livecast.utils.app_errors import AppError, AppErrorCode, ConnectionTerminal, SignalingError


class ViewerClient:
    def __init__(
        self,
        transport: SignalingClient,
        room_id: str,
        surface: RenderSurface,
        *,
        peer_factory: PeerFactory | None = None,
        cfg: AppEnvironConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.cfg = cfg or get_app_environ_config()
        self.transport = transport
        self.room_id = room_id
        self.surface = surface
        self.status = ClientStatus("Connecting...")
        self.playback = ViewerPlaybackState()
        self.manager = PeerConnectionManager(
            PeerRole.VIEWER,
            peer_factory=peer_factory or default_peer_factory(self.cfg.ICE_STUN_URLS),
            send=transport.emit,
            on_state_change=self._on_state_change,
            on_remote_stream=self._on_remote_stream,
        )
        self.coordinator = NegotiationCoordinator(self.manager, transport.emit)
        self.reconnection = ReconnectionController(
            self._auto_reconnect,
            is_connected=lambda: self.manager.connection_state == ConnectionState.CONNECTED,
            is_joining=lambda: self.is_joining,
            on_exhausted=self._on_retry_exhausted,
            base_delay_ms=self.cfg.RECONNECT_BASE_DELAY_MS,
            max_attempts=self.cfg.RECONNECT_MAX_ATTEMPTS,
            sleep=sleep,
        )
        self.has_joined = False
        self.is_joining = False
        self._play_task: asyncio.Task | None = None
        self._unsubscribers = [
            transport.subscribe("offer", self._on_offer),
            transport.subscribe("ice-candidate", self._on_ice_candidate),
            transport.subscribe("streamer-left", self._on_streamer_left),
            transport.subscribe("stream-paused", self._on_stream_paused),
            transport.subscribe("stream-resumed", self._on_stream_resumed),
            transport.subscribe(DISCONNECT_EVENT, self._on_transport_disconnect),
            transport.subscribe(RECONNECT_EVENT, self._on_transport_reconnect),
        ]

    @property
    def connection_state(self) -> ConnectionState:
        return self.manager.connection_state

    @property
    def remote_stream(self) -> RemoteMediaStream | None:
        return self.manager.remote_stream

    async def join(self, *, reset_retry: bool = True) -> bool:
        """Join the room; the streamer answers with an offer."""
        if not self.room_id:
            self.status.set_error(SignalingError(AppErrorCode.E_ROOM_NOT_FOUND, "Invalid room id"))
            return False
        if self.is_joining or self.has_joined:
            return self.has_joined

        self.is_joining = True
        self.status.clear_error()
        self.status.set_status("Joining signaling room...")
        try:
            await self.transport.wait_connected(self.cfg.SOCKET_CONNECT_TIMEOUT_MS)
            reply = await self.transport.request(
                JoinRoomIn(room_id=self.room_id), self.cfg.JOIN_ROOM_TIMEOUT_MS
            )
        except (asyncio.TimeoutError, ConnectionError) as exc:
            logger.error("Failed to join room {}: {}", self.room_id, exc)
            self.status.set_error(SignalingError(AppErrorCode.E_JOIN_TIMEOUT, "Join room timed out"))
            self.status.set_status("Failed to join signaling room")
            return False
        finally:
            self.is_joining = False

        result = JoinRoomResult.model_validate(reply)
        if result.error:
            self.status.set_error(SignalingError(AppErrorCode.E_ROOM_NOT_FOUND, result.error))
            self.status.set_status("Failed to join signaling room")
            return False

        self.has_joined = True
        if reset_retry:
            self.reconnection.reset()
        logger.info("Joined room {}", self.room_id)
        self.status.set_status("Signaling connected, waiting for media stream...")
        return True

    async def reconnect(self) -> bool:
        """User-initiated reconnect: also resets the retry counter."""
        return await self._reconnect_sequence(manual=True)

    async def _auto_reconnect(self) -> None:
        await self._reconnect_sequence(manual=False)

    async def _reconnect_sequence(self, *, manual: bool) -> bool:
        self.reconnection.cancel_timer()
        if manual:
            self.reconnection.reset()

        await self._stop_playback()
        await self.manager.close_all()
        self.coordinator.guard.clear()

        self.has_joined = False
        self.playback.reset()
        self.status.clear_error()
        self.status.set_status("Reconnecting signaling and WebRTC...")
        return await self.join(reset_retry=manual)

    async def play(self) -> bool:
        """Start rendering the remote stream; a refusal asks for user interaction."""
        if self.remote_stream is None:
            return False
        try:
            await self.surface.play()
        except Exception as exc:
            logger.warning("Playback blocked: {}", exc)
            self.playback.mark_blocked()
            self.status.set_status("Click to start playback")
            return False

        self.playback.mark_playing()
        self.status.set_status("Live stream")
        return True

    async def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self.reconnection.reset()
        await self._stop_playback()
        await self.manager.close_all()
        self.has_joined = False

    async def _stop_playback(self) -> None:
        task, self._play_task = self._play_task, None
        if task is not None and not task.done():
            task.cancel()
        await self.surface.detach()

    # ==================== RELAY EVENTS ====================

    async def _on_offer(self, message: OfferOut) -> None:
        logger.info("Received offer from streamer: {}", message.sender)
        self.playback.processing_offer = True
        self.status.set_status("Negotiating WebRTC session...")
        try:
            await self.coordinator.create_answer(message.offer, message.sender)
        except AppError as exc:
            self.status.set_error(exc)
        finally:
            self.playback.processing_offer = False

    async def _on_ice_candidate(self, message: IceCandidateOut) -> None:
        try:
            await self.coordinator.handle_ice_candidate(message.candidate, message.sender)
        except AppError as exc:
            self.status.set_error(exc)

    def _on_streamer_left(self, message: StreamerLeftOut) -> None:
        logger.info("Streamer left room {}", self.room_id)
        self.has_joined = False
        self.status.set_error(ConnectionTerminal(AppErrorCode.E_CONNECTION_CLOSED, "Stream has ended"))
        self.status.set_status("Streamer is offline")

    def _on_stream_paused(self, message: StreamPausedOut) -> None:
        self.playback.mark_paused()
        self.status.set_status("Stream paused, waiting to resume...")

    def _on_stream_resumed(self, message: StreamResumedOut) -> None:
        self.playback.mark_resumed()
        self.status.set_status("Stream resuming, awaiting renegotiation...")

    def _on_transport_disconnect(self, reason: str) -> None:
        self.status.set_status("Signaling connection lost, reconnecting...")

    async def _on_transport_reconnect(self, attempt: int) -> None:
        # New transport identity: the old membership is gone, join again.
        await self._reconnect_sequence(manual=False)

    # ==================== PEER EVENTS ====================

    def _on_state_change(self, state: ConnectionState) -> None:
        if state == ConnectionState.CONNECTED:
            self.status.clear_error()
        self.reconnection.on_connection_state(state)

    def _on_remote_stream(self, stream: RemoteMediaStream) -> None:
        self.surface.attach(stream)
        self.status.set_status("Receiving stream...")
        task = asyncio.ensure_future(self.play())
        task.add_done_callback(self._on_play_done)
        self._play_task = task

    def _on_play_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Playback task failed: {}", format_error(exc))

    def _on_retry_exhausted(self) -> None:
        self.status.set_error(
            ConnectionTerminal(AppErrorCode.E_CONNECTION_FAILED, "WebRTC failed after multiple retries")
        )
        self.status.set_status("Connection failed")
