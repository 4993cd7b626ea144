"""Peer connection lifecycle for both roles.

A streamer holds one session per viewer id; a viewer holds at most one
session, toward the streamer. Sessions are created, replaced and closed
here; offer/answer exchange lives in the negotiation coordinator.

Local ICE candidates are forwarded for factories whose connections emit
`icecandidate`. aiortc does not emit it: it gathers every candidate before
`setLocalDescription` returns and sends them inside the SDP, so with
`default_peer_factory` the forwarding path stays idle.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Mapping
from types import MappingProxyType
from typing import Any

from loguru import logger

from livecast.domain.peer.peer_models import PeerSession
from livecast.domain.peer.peer_state_machine import PeerStateMachine
from livecast.schemas import ClientMessage, ConnectionState, IceCandidateIn, PeerRole
from livecast.services.media.capture import MediaSource, RemoteMediaStream
from livecast.services.media.rtc import PeerFactory, candidate_to_payload
from livecast.shared.api.utils import format_error

SendFn = Callable[[ClientMessage], Awaitable[Any]]
StateCallback = Callable[[ConnectionState], None]
RemoteStreamCallback = Callable[[RemoteMediaStream], None]


class PeerConnectionManager:
    def __init__(
        self,
        role: PeerRole,
        *,
        peer_factory: PeerFactory,
        send: SendFn,
        on_state_change: StateCallback | None = None,
        on_remote_stream: RemoteStreamCallback | None = None,
    ):
        self.role = role
        self.connection_state = ConnectionState.NEW
        self.local_media: MediaSource | None = None
        self._peer_factory = peer_factory
        self._send = send
        self._on_state_change = on_state_change
        self._on_remote_stream = on_remote_stream
        self._sessions: dict[str, PeerSession] = {}
        self._viewer_session: PeerSession | None = None
        self._tasks: set[asyncio.Task] = set()

    # ==================== QUERIES ====================

    @property
    def sessions(self) -> Mapping[str, PeerSession]:
        return MappingProxyType(self._sessions)

    @property
    def viewer_session(self) -> PeerSession | None:
        return self._viewer_session

    def get_session(self, remote_id: str) -> PeerSession | None:
        """Return the session a message from `remote_id` applies to.

        A viewer only ever talks to its streamer, so it resolves every sender
        to its single session.
        """
        if self.role == PeerRole.VIEWER:
            return self._viewer_session
        return self._sessions.get(remote_id)

    @property
    def remote_stream(self) -> RemoteMediaStream | None:
        if self._viewer_session is None:
            return None
        return self._viewer_session.remote_stream

    # ==================== LOCAL MEDIA ====================

    def set_local_media(self, source: MediaSource) -> None:
        if self.local_media is not None and self.local_media is not source:
            self.local_media.stop()
        self.local_media = source

    def release_local_media(self) -> None:
        """Stop every local track; sessions keep their (now ended) senders."""
        source, self.local_media = self.local_media, None
        if source is not None:
            source.stop()

    async def attach_local_media(self, session: PeerSession) -> int:
        """Add local tracks the session does not carry yet.

        A sender whose track has ended (after pause) is reused through
        `replaceTrack` so renegotiation keeps the same transceivers.

        Returns:
            Number of tracks attached or replaced
        """
        if self.local_media is None:
            return 0

        attached = 0
        pc = session.connection
        for track in self.local_media.tracks:
            if session.has_track(track):
                continue

            sender = self._find_reusable_sender(session, track.kind)
            if sender is not None:
                result = sender.replaceTrack(track)
                if inspect.isawaitable(result):
                    await result
            else:
                pc.addTrack(track)
            attached += 1

        logger.debug("Attached {} local tracks to session {}", attached, session.remote_id)
        return attached

    @staticmethod
    def _find_reusable_sender(session: PeerSession, kind: str) -> Any:
        for sender in session.connection.getSenders():
            track = sender.track
            if track is None:
                if getattr(sender, "kind", None) == kind:
                    return sender
                continue
            if track.kind == kind and getattr(track, "readyState", "live") == "ended":
                return sender
        return None

    # ==================== SESSIONS ====================

    async def create_session(self, viewer_id: str) -> PeerSession:
        """Create a fresh streamer-side session for `viewer_id`.

        Any existing session for that viewer is torn down first.
        """
        if self.role != PeerRole.STREAMER:
            raise RuntimeError("Only a streamer holds per-viewer sessions")

        existing = self._sessions.pop(viewer_id, None)
        if existing is not None:
            logger.info("Replacing session for viewer {}", viewer_id)
            await self._dispose(existing)

        session = self._new_session(viewer_id)
        self._sessions[viewer_id] = session
        await self.attach_local_media(session)
        self._recompute_state()
        return session

    async def close_session(self, viewer_id: str) -> bool:
        session = self._sessions.pop(viewer_id, None)
        if session is None:
            return False
        await self._dispose(session)
        logger.info("Closed session for viewer {}", viewer_id)
        self._recompute_state()
        return True

    async def ensure_viewer_session(self, streamer_id: str) -> PeerSession:
        """Return a usable viewer session, replacing one that is no longer live."""
        if self.role != PeerRole.VIEWER:
            raise RuntimeError("Only a viewer holds an upstream session")

        session = self._viewer_session
        if session is not None:
            state = session.connection_state
            if not PeerStateMachine.needs_replacement(state):
                return session
            logger.info("Replacing viewer session in state {}", state)
            await self.discard_viewer_session()

        session = self._new_session(streamer_id)
        self._viewer_session = session
        self._recompute_state()
        return session

    async def discard_viewer_session(self) -> None:
        session, self._viewer_session = self._viewer_session, None
        if session is not None:
            await self._dispose(session)
            self._recompute_state()

    async def close_all(self) -> None:
        """Tear down every session and cancel outstanding send tasks."""
        sessions = list(self._sessions.values())
        self._sessions.clear()
        if self._viewer_session is not None:
            sessions.append(self._viewer_session)
            self._viewer_session = None

        for session in sessions:
            await self._dispose(session)

        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

        self._recompute_state()

    def _new_session(self, remote_id: str) -> PeerSession:
        session = PeerSession(remote_id=remote_id, role=self.role, connection=self._peer_factory())

        def on_connection_state_change() -> None:
            self._handle_connection_state(session)

        def on_ice_candidate(candidate: Any) -> None:
            self._handle_local_candidate(session, candidate)

        self._listen(session, "connectionstatechange", on_connection_state_change)
        self._listen(session, "icecandidate", on_ice_candidate)

        if self.role == PeerRole.VIEWER:

            def on_track(track: Any) -> None:
                self._handle_remote_track(session, track)

            self._listen(session, "track", on_track)

        logger.debug("Created {} session toward {}", self.role, remote_id)
        return session

    @staticmethod
    def _listen(session: PeerSession, event: str, handler: Callable[..., Any]) -> None:
        session.connection.on(event, handler)
        session.listeners.append((event, handler))

    async def _dispose(self, session: PeerSession) -> None:
        pc = session.connection
        for event, handler in session.listeners:
            pc.remove_listener(event, handler)
        session.listeners.clear()
        await pc.close()

    # ==================== EVENTS ====================

    def _handle_connection_state(self, session: PeerSession) -> None:
        state = session.connection_state
        if self.role == PeerRole.STREAMER:
            if self._sessions.get(session.remote_id) is not session:
                return
            logger.info("Viewer {} connection status: {}", session.remote_id, state)
        else:
            if session is not self._viewer_session:
                return
            logger.info("Connection status: {}", state)
        self._recompute_state()

    def _handle_local_candidate(self, session: PeerSession, candidate: Any) -> None:
        # Trickle ICE only; aiortc connections never call this.
        if candidate is None:
            return
        message = IceCandidateIn(candidate=candidate_to_payload(candidate), target=session.remote_id)
        self._spawn(self._send(message))

    def _handle_remote_track(self, session: PeerSession, track: Any) -> None:
        if session is not self._viewer_session:
            return
        logger.info("Received remote track: {}", track.kind)

        first = session.remote_stream is None
        if first:
            session.remote_stream = RemoteMediaStream()
        session.remote_stream.add_track(track)

        if first and self._on_remote_stream is not None:
            self._on_remote_stream(session.remote_stream)

    def _recompute_state(self) -> None:
        if self.role == PeerRole.STREAMER:
            state = PeerStateMachine.aggregate(s.connection_state for s in self._sessions.values())
        elif self._viewer_session is not None:
            state = self._viewer_session.connection_state
        else:
            state = ConnectionState.NEW

        if state == self.connection_state:
            return
        self.connection_state = state
        if self._on_state_change is not None:
            self._on_state_change(state)

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Failed to send ICE candidate: {}", format_error(exc))
