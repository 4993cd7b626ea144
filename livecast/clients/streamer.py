"""Streamer client: captures local media and serves one session per viewer."""

import asyncio

from loguru import logger

from livecast.app_config import AppEnvironConfig, get_app_environ_config
from livecast.clients.status import ClientStatus
from livecast.domain.peer.negotiation import NegotiationCoordinator
from livecast.domain.peer.peer_manager import PeerConnectionManager
from livecast.domain.peer.stream_control import StreamControlSynchronizer
from livecast.schemas import (
    AnswerOut,
    ConnectionState,
    CreateRoomIn,
    CreateRoomResult,
    IceCandidateOut,
    PeerRole,
    ViewerJoinedOut,
    ViewerLeftOut,
)
from livecast.services.media.capture import MediaCaptureProvider
from livecast.services.media.rtc import PeerFactory, default_peer_factory
from livecast.services.transport.signaling_client import (
    DISCONNECT_EVENT,
    RECONNECT_EVENT,
    SignalingClient,
)
from livecast.utils.app_errors import AppError, AppErrorCode, SignalingError

ROOM_EXPIRED_MESSAGE = "Room has expired, please restart streaming"


class StreamerClient:
    def __init__(
        self,
        transport: SignalingClient,
        capture: MediaCaptureProvider,
        *,
        peer_factory: PeerFactory | None = None,
        cfg: AppEnvironConfig | None = None,
    ):
        self.cfg = cfg or get_app_environ_config()
        self.transport = transport
        self.status = ClientStatus("Ready")
        self.manager = PeerConnectionManager(
            PeerRole.STREAMER,
            peer_factory=peer_factory or default_peer_factory(self.cfg.ICE_STUN_URLS),
            send=transport.emit,
            on_state_change=self._on_state_change,
        )
        self.coordinator = NegotiationCoordinator(self.manager, transport.emit)
        self.stream_control = StreamControlSynchronizer(
            self.manager, self.coordinator, capture, transport.emit
        )
        self.room_id: str | None = None
        self.viewer_ids: set[str] = set()
        self.is_streaming = False
        self._initializing = False
        self._unsubscribers = [
            transport.subscribe("viewer-joined", self._on_viewer_joined),
            transport.subscribe("viewer-left", self._on_viewer_left),
            transport.subscribe("answer", self._on_answer),
            transport.subscribe("ice-candidate", self._on_ice_candidate),
            transport.subscribe(DISCONNECT_EVENT, self._on_transport_disconnect),
            transport.subscribe(RECONNECT_EVENT, self._on_transport_reconnect),
        ]

    @property
    def connection_state(self) -> ConnectionState:
        return self.manager.connection_state

    @property
    def is_paused(self) -> bool:
        return self.stream_control.paused

    async def start(self) -> str | None:
        """Acquire local media and create a room; returns the room id."""
        if self._initializing or self.is_streaming:
            return self.room_id

        self._initializing = True
        self.status.clear_error()
        self.status.set_status("Requesting camera access...")
        try:
            await self.stream_control.start()
            self.is_streaming = True
            self.status.set_status("Creating room...")
            self.room_id = await self._create_room()
        except AppError as exc:
            self.manager.release_local_media()
            self.is_streaming = False
            self.status.set_error(exc)
            self.status.set_status("Initialization failed")
            return None
        finally:
            self._initializing = False

        logger.info("Room created: {}", self.room_id)
        self.status.set_status("Streaming live, share the room link to invite viewers")
        return self.room_id

    async def _create_room(self) -> str:
        try:
            await self.transport.wait_connected(self.cfg.SOCKET_CONNECT_TIMEOUT_MS)
            result = await self.transport.request(CreateRoomIn(), self.cfg.CREATE_ROOM_TIMEOUT_MS)
        except (asyncio.TimeoutError, ConnectionError) as exc:
            raise SignalingError(AppErrorCode.E_CREATE_TIMEOUT, "Room creation timed out") from exc
        return CreateRoomResult.model_validate(result).room_id

    async def pause(self) -> None:
        if self.room_id is None or self.is_paused:
            return
        await self.stream_control.pause(self.room_id)
        self.is_streaming = False
        self.status.set_status("Stream paused, press play to resume")

    async def resume(self) -> None:
        if self.room_id is None:
            self.status.set_error(SignalingError(AppErrorCode.E_ROOM_NOT_FOUND, ROOM_EXPIRED_MESSAGE))
            return

        self.status.clear_error()
        self.status.set_status("Resuming stream...")
        try:
            failures = await self.stream_control.resume(self.room_id, sorted(self.viewer_ids))
        except AppError as exc:
            self.status.set_error(exc)
            self.status.set_status("Restart failed")
            return

        self.is_streaming = True
        self.status.set_status("Streaming live")
        for error in failures.values():
            self.status.set_error(error)

    async def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        await self.manager.close_all()
        self.manager.release_local_media()
        self.is_streaming = False

    # ==================== RELAY EVENTS ====================

    async def _on_viewer_joined(self, message: ViewerJoinedOut) -> None:
        self.viewer_ids.add(message.viewer_id)
        logger.info("Viewer joined: {}", message.viewer_id)
        self.status.set_status(f"Viewer connected ({len(self.viewer_ids)} watching)")
        if self.is_paused:
            return
        try:
            await self.coordinator.create_offer(message.viewer_id)
        except AppError as exc:
            self.status.set_error(exc)

    async def _on_viewer_left(self, message: ViewerLeftOut) -> None:
        self.viewer_ids.discard(message.viewer_id)
        await self.manager.close_session(message.viewer_id)
        logger.info("Viewer left: {}", message.viewer_id)
        self.status.set_status(f"Viewer left ({len(self.viewer_ids)} watching)")

    async def _on_answer(self, message: AnswerOut) -> None:
        try:
            await self.coordinator.handle_answer(message.answer, message.sender)
        except AppError as exc:
            self.status.set_error(exc)

    async def _on_ice_candidate(self, message: IceCandidateOut) -> None:
        try:
            await self.coordinator.handle_ice_candidate(message.candidate, message.sender)
        except AppError as exc:
            self.status.set_error(exc)

    def _on_state_change(self, state: ConnectionState) -> None:
        logger.info("Aggregate connection state: {}", state)

    def _on_transport_disconnect(self, reason: str) -> None:
        self.status.set_status("Signaling connection lost, reconnecting...")

    async def _on_transport_reconnect(self, attempt: int) -> None:
        # The relay dropped the room together with the old connection.
        logger.warning("Signaling reconnected, room {} is gone", self.room_id)
        self.room_id = None
        self.viewer_ids.clear()
        await self.manager.close_all()
        self.status.set_error(SignalingError(AppErrorCode.E_ROOM_NOT_FOUND, ROOM_EXPIRED_MESSAGE))
        self.status.set_status("Room expired")
