"""Signaling relay: forwards negotiation messages and room events.

The relay never inspects SDP or candidate contents. It resolves recipients
through the registry at dispatch time and hands each outgoing message to the
recipient's endpoint, which only enqueues it. Writing to the socket happens on
a per-connection task, so dispatch never blocks on a slow peer.
"""

import asyncio
from collections.abc import Callable
from typing import Protocol

from loguru import logger

from livecast.schemas import (
    AnswerIn,
    AnswerOut,
    ClientMessage,
    CreateRoomResult,
    IceCandidateIn,
    IceCandidateOut,
    JoinRoomIn,
    JoinRoomResult,
    OfferIn,
    OfferOut,
    StreamerLeftOut,
    StreamPausedIn,
    StreamPausedOut,
    StreamResumedIn,
    StreamResumedOut,
    ViewerJoinedOut,
    ViewerLeftOut,
    WireModel,
)
from livecast.utils.app_errors import SignalingError

from .registry import SessionRegistry

DEFAULT_OUTBOX_SIZE = 256


class Endpoint(Protocol):
    def deliver(self, message: WireModel) -> bool: ...


class QueueEndpoint:
    """Outbound mailbox for one transport connection."""

    def __init__(self, client_id: str, maxsize: int = DEFAULT_OUTBOX_SIZE):
        self.client_id = client_id
        self._queue: asyncio.Queue[WireModel | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, message: WireModel) -> bool:
        if self._closed:
            return False
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(
                "Outbox full, dropping {} for {}", getattr(message, "event", "?"), self.client_id
            )
            return False
        return True

    async def next(self) -> WireModel | None:
        """Next queued message, or None once the endpoint is closed."""
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            # Writer is still draining; it will stop once it sees `closed`.
            pass


class ConnectionHub:
    """Live transport endpoints keyed by client identity."""

    def __init__(self) -> None:
        self._endpoints: dict[str, Endpoint] = {}

    def register(self, client_id: str, endpoint: Endpoint) -> None:
        self._endpoints[client_id] = endpoint

    def unregister(self, client_id: str) -> None:
        self._endpoints.pop(client_id, None)

    def get(self, client_id: str) -> Endpoint | None:
        return self._endpoints.get(client_id)

    def send(self, client_id: str, message: WireModel) -> bool:
        endpoint = self._endpoints.get(client_id)
        if endpoint is None:
            return False
        return endpoint.deliver(message)

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._endpoints

    def __len__(self) -> int:
        return len(self._endpoints)


Handler = Callable[[str, ClientMessage], WireModel | None]


class SignalingRelay:
    """Dispatches typed client messages and room lifecycle events."""

    def __init__(self, registry: SessionRegistry, hub: ConnectionHub | None = None):
        self.registry = registry
        self.hub = hub or ConnectionHub()
        self._handlers: dict[str, Handler] = {
            "create-room": self._on_create_room,
            "join-room": self._on_join_room,
            "offer": self._on_offer,
            "answer": self._on_answer,
            "ice-candidate": self._on_ice_candidate,
            "stream-paused": self._on_stream_paused,
            "stream-resumed": self._on_stream_resumed,
        }

    # ==================== CONNECTION LIFECYCLE ====================

    def connect(self, client_id: str, endpoint: Endpoint) -> None:
        self.hub.register(client_id, endpoint)
        logger.info("Client connected: {}", client_id)

    def disconnect(self, client_id: str) -> None:
        """Clean up registry state for a client whose transport went away."""
        logger.info("Client disconnected: {}", client_id)

        for viewer_id in self.registry.remove_streamer(client_id):
            self.hub.send(viewer_id, StreamerLeftOut())

        streamer_id = self.registry.remove_viewer(client_id)
        if streamer_id is not None:
            self.hub.send(streamer_id, ViewerLeftOut(viewer_id=client_id))

        self.hub.unregister(client_id)

    # ==================== DISPATCH ====================

    def handle(self, client_id: str, message: ClientMessage) -> WireModel | None:
        """Process one client message; returns the ack result, if any."""
        event = getattr(message, "event")
        handler = self._handlers.get(event)
        if handler is None:
            logger.warning("No handler for event {} from {}", event, client_id)
            return None
        return handler(client_id, message)

    def _on_create_room(self, client_id: str, message: ClientMessage) -> CreateRoomResult:
        created = self.registry.create_room(client_id)
        for viewer_id in created.dropped_viewer_ids:
            self.hub.send(viewer_id, StreamerLeftOut())
        return CreateRoomResult(room_id=created.room_id)

    def _on_join_room(self, client_id: str, message: JoinRoomIn) -> JoinRoomResult:
        try:
            joined = self.registry.join_room(message.room_id, client_id)
        except SignalingError as exc:
            logger.info("Join rejected: viewer={} room={} reason={}", client_id, message.room_id, exc.errmesg)
            return JoinRoomResult(error=exc.errmesg)

        if joined.previous_streamer_id is not None:
            self.hub.send(joined.previous_streamer_id, ViewerLeftOut(viewer_id=client_id))
        # Re-joins notify too, so a viewer recovering from a failed peer
        # connection gets a fresh offer.
        self.hub.send(joined.streamer_id, ViewerJoinedOut(viewer_id=client_id))
        return JoinRoomResult(success=True)

    def _on_offer(self, client_id: str, message: OfferIn) -> None:
        self._forward(message.target, OfferOut(offer=message.offer, sender=client_id))

    def _on_answer(self, client_id: str, message: AnswerIn) -> None:
        self._forward(message.target, AnswerOut(answer=message.answer, sender=client_id))

    def _on_ice_candidate(self, client_id: str, message: IceCandidateIn) -> None:
        self._forward(
            message.target, IceCandidateOut(candidate=message.candidate, sender=client_id)
        )

    def _on_stream_paused(self, client_id: str, message: StreamPausedIn) -> None:
        logger.info("Stream paused in room {}", message.room_id)
        self._broadcast_from_streamer(client_id, message.room_id, StreamPausedOut())

    def _on_stream_resumed(self, client_id: str, message: StreamResumedIn) -> None:
        logger.info("Stream resumed in room {}", message.room_id)
        self._broadcast_from_streamer(client_id, message.room_id, StreamResumedOut())

    # ==================== DELIVERY ====================

    def _forward(self, target: str, message: WireModel) -> None:
        # Fire-and-forget: the target may already be gone.
        if not self.hub.send(target, message):
            logger.debug("Dropped {} for missing target {}", getattr(message, "event", "?"), target)

    def _broadcast_from_streamer(self, client_id: str, room_id: str, message: WireModel) -> None:
        if not self.registry.is_streamer_of(client_id, room_id):
            logger.warning(
                "Ignoring {} for room {} from non-streamer {}",
                getattr(message, "event", "?"),
                room_id,
                client_id,
            )
            return
        for member in self.registry.room_audience(room_id, exclude=client_id):
            self.hub.send(member, message)
