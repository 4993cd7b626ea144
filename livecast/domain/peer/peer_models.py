"""Peer domain models."""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from livecast.schemas import ConnectionState, PeerRole, SignalingState
from livecast.services.media.capture import RemoteMediaStream


@dataclass(eq=False)
class PeerSession:
    """One peer connection and its lifecycle bookkeeping.

    `connection` is an aiortc RTCPeerConnection (or anything exposing the same
    surface). `listeners` keeps the handlers registered on it so they can be
    removed before the connection is closed.
    """

    remote_id: str
    role: PeerRole
    connection: Any
    remote_stream: RemoteMediaStream | None = None
    listeners: list[tuple[str, Callable[..., Any]]] = field(default_factory=list)

    @property
    def connection_state(self) -> ConnectionState:
        return ConnectionState(self.connection.connectionState)

    @property
    def signaling_state(self) -> SignalingState:
        return SignalingState(self.connection.signalingState)

    def has_track(self, track: Any) -> bool:
        return any(sender.track is track for sender in self.connection.getSenders())


class OfferProcessingGuard:
    """Remote peers whose offer is currently being processed."""

    def __init__(self) -> None:
        self._active: set[str] = set()

    def try_enter(self, remote_id: str) -> bool:
        if remote_id in self._active:
            return False
        self._active.add(remote_id)
        return True

    def leave(self, remote_id: str) -> None:
        self._active.discard(remote_id)

    def clear(self) -> None:
        self._active.clear()

    def __contains__(self, remote_id: object) -> bool:
        return remote_id in self._active

    def __len__(self) -> int:
        return len(self._active)


@dataclass
class RetryState:
    attempt_count: int = 0
    pending_timer: asyncio.Task | None = None
