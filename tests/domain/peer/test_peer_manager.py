"""Tests for PeerConnectionManager."""

import pytest

from livecast.domain.peer.peer_manager import PeerConnectionManager
from livecast.schemas import ConnectionState, IceCandidateIn, PeerRole
from livecast.services.media.capture import MediaSource
from tests.fixtures.rtc_fixtures import FakePeerFactory, FakeTrack, FakeTransport, settle


@pytest.fixture
def states() -> list[ConnectionState]:
    return []


@pytest.fixture
def streamer(peer_factory: FakePeerFactory, fake_transport: FakeTransport, states) -> PeerConnectionManager:
    manager = PeerConnectionManager(
        PeerRole.STREAMER,
        peer_factory=peer_factory,
        send=fake_transport.emit,
        on_state_change=states.append,
    )
    manager.set_local_media(MediaSource([FakeTrack("video"), FakeTrack("audio")]))
    return manager


@pytest.fixture
def viewer(peer_factory: FakePeerFactory, fake_transport: FakeTransport, states) -> PeerConnectionManager:
    return PeerConnectionManager(
        PeerRole.VIEWER,
        peer_factory=peer_factory,
        send=fake_transport.emit,
        on_state_change=states.append,
    )


class TestStreamerSessions:
    """Per-viewer session lifecycle on the streamer."""

    async def test_create_session_attaches_local_tracks(self, streamer, peer_factory):
        # Act
        session = await streamer.create_session("v1")

        # Assert
        tracks = [sender.track for sender in peer_factory.last.getSenders()]
        assert tracks == streamer.local_media.tracks
        assert streamer.get_session("v1") is session

    async def test_create_session_replaces_existing(self, streamer, peer_factory):
        """Re-creating a session closes the old connection first."""
        # Arrange
        first = await streamer.create_session("v1")

        # Act
        second = await streamer.create_session("v1")

        # Assert
        assert first is not second
        assert peer_factory.created[0].closed is True
        assert peer_factory.created[0].listener_count() == 0
        assert list(streamer.sessions) == ["v1"]

    async def test_sessions_share_local_tracks(self, streamer, peer_factory):
        # Act
        await streamer.create_session("v1")
        await streamer.create_session("v2")

        # Assert
        first, second = peer_factory.created
        assert [s.track for s in first.getSenders()] == [s.track for s in second.getSenders()]

    async def test_close_session_removes_it(self, streamer, peer_factory):
        # Arrange
        await streamer.create_session("v1")

        # Act
        closed = await streamer.close_session("v1")

        # Assert
        assert closed is True
        assert streamer.get_session("v1") is None
        assert peer_factory.last.closed is True
        assert await streamer.close_session("v1") is False

    async def test_viewer_role_cannot_create_streamer_sessions(self, viewer):
        with pytest.raises(RuntimeError):
            await viewer.create_session("v1")


class TestAggregateState:
    """Aggregate connection state reported by the streamer."""

    async def test_any_connected_wins(self, streamer, peer_factory, states):
        # Arrange
        await streamer.create_session("v1")
        await streamer.create_session("v2")
        first, second = peer_factory.created

        # Act
        first.set_connection_state("failed")
        second.set_connection_state("connected")

        # Assert
        assert streamer.connection_state == ConnectionState.CONNECTED
        assert states[-1] == ConnectionState.CONNECTED

    async def test_closing_last_session_returns_to_new(self, streamer, peer_factory):
        # Arrange
        await streamer.create_session("v1")
        peer_factory.last.set_connection_state("connected")

        # Act
        await streamer.close_session("v1")

        # Assert
        assert streamer.connection_state == ConnectionState.NEW

    async def test_stale_session_events_are_ignored(self, streamer, peer_factory, states):
        # Arrange
        await streamer.create_session("v1")
        stale = peer_factory.last
        await streamer.create_session("v1")
        states.clear()

        # Act
        stale.connectionState = "connected"
        stale.emit("connectionstatechange")

        # Assert
        assert states == []


class TestLocalMedia:
    async def test_attach_skips_tracks_already_present(self, streamer, peer_factory):
        # Arrange
        session = await streamer.create_session("v1")

        # Act
        attached = await streamer.attach_local_media(session)

        # Assert
        assert attached == 0
        assert len(peer_factory.last.getSenders()) == 2

    async def test_attach_reuses_ended_senders(self, streamer, peer_factory):
        """After pause, fresh tracks replace the ended ones on the same senders."""
        # Arrange
        session = await streamer.create_session("v1")
        streamer.release_local_media()
        fresh = MediaSource([FakeTrack("video", "v2"), FakeTrack("audio", "a2")])
        streamer.set_local_media(fresh)

        # Act
        attached = await streamer.attach_local_media(session)

        # Assert
        senders = peer_factory.last.getSenders()
        assert attached == 2
        assert len(senders) == 2
        assert [s.track for s in senders] == fresh.tracks

    async def test_release_stops_tracks_once(self, streamer):
        # Arrange
        tracks = streamer.local_media.tracks

        # Act
        streamer.release_local_media()
        streamer.release_local_media()

        # Assert
        assert streamer.local_media is None
        assert [t.stop_calls for t in tracks] == [1, 1]


class TestIceForwarding:
    """Trickle forwarding for connections that emit `icecandidate`; aiortc itself does not."""

    async def test_local_candidate_forwarded_to_remote(self, streamer, peer_factory, fake_transport):
        # Arrange
        await streamer.create_session("v1")
        from aiortc.sdp import candidate_from_sdp

        candidate = candidate_from_sdp("1 1 udp 2122260223 10.0.0.1 40000 typ host")
        candidate.sdpMid = "0"
        candidate.sdpMLineIndex = 0

        # Act
        peer_factory.last.emit("icecandidate", candidate)
        await settle()

        # Assert
        sent = fake_transport.sent_events("ice-candidate")
        assert len(sent) == 1
        assert isinstance(sent[0], IceCandidateIn)
        assert sent[0].target == "v1"
        assert sent[0].candidate.candidate.startswith("candidate:1 1 udp")

    async def test_end_of_candidates_not_forwarded(self, streamer, peer_factory, fake_transport):
        # Arrange
        await streamer.create_session("v1")

        # Act
        peer_factory.last.emit("icecandidate", None)
        await settle()

        # Assert
        assert fake_transport.sent == []


class TestViewerSession:
    """Single upstream session on the viewer."""

    async def test_ensure_reuses_live_session(self, viewer, peer_factory):
        # Arrange
        first = await viewer.ensure_viewer_session("s1")
        peer_factory.last.set_connection_state("connecting")

        # Act
        second = await viewer.ensure_viewer_session("s1")

        # Assert
        assert first is second
        assert len(peer_factory.created) == 1

    @pytest.mark.parametrize("state", ["failed", "closed", "disconnected"])
    async def test_ensure_replaces_dead_session(self, viewer, peer_factory, state):
        # Arrange
        first = await viewer.ensure_viewer_session("s1")
        peer_factory.last.connectionState = state

        # Act
        second = await viewer.ensure_viewer_session("s1")

        # Assert
        assert first is not second
        assert peer_factory.created[0].closed is True
        assert viewer.viewer_session is second

    async def test_remote_stream_surfaced_once(self, peer_factory, fake_transport):
        # Arrange
        streams = []
        viewer = PeerConnectionManager(
            PeerRole.VIEWER,
            peer_factory=peer_factory,
            send=fake_transport.emit,
            on_remote_stream=streams.append,
        )
        await viewer.ensure_viewer_session("s1")
        video, audio = FakeTrack("video"), FakeTrack("audio")

        # Act
        peer_factory.last.emit("track", video)
        peer_factory.last.emit("track", audio)

        # Assert
        assert len(streams) == 1
        assert streams[0].tracks == [video, audio]
        assert viewer.remote_stream is streams[0]

    async def test_close_all_unregisters_before_closing(self, viewer, peer_factory, states):
        # Arrange
        await viewer.ensure_viewer_session("s1")
        peer_factory.last.set_connection_state("connected")
        states.clear()

        # Act
        await viewer.close_all()

        # Assert
        assert peer_factory.last.closed is True
        assert peer_factory.last.listener_count() == 0
        assert viewer.viewer_session is None
        assert states == [ConnectionState.NEW]
