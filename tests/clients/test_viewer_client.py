"""Tests for ViewerClient."""

import asyncio

import pytest

from livecast.clients.viewer import ViewerClient
from livecast.schemas import (
    ConnectionState,
    JoinRoomIn,
    OfferOut,
    SessionDescriptionPayload,
    StreamerLeftOut,
    StreamPausedOut,
    StreamResumedOut,
)
from livecast.utils.app_errors import AppErrorCode
from tests.fixtures.rtc_fixtures import FakePeerFactory, FakeSurface, FakeTrack, FakeTransport, settle

OFFER = OfferOut(offer=SessionDescriptionPayload(type="offer", sdp="v=0 offer"), sender="s1")


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def surface() -> FakeSurface:
    return FakeSurface()


@pytest.fixture
def viewer(fake_transport: FakeTransport, surface, peer_factory: FakePeerFactory, sleep) -> ViewerClient:
    return ViewerClient(fake_transport, "ro_1", surface, peer_factory=peer_factory, sleep=sleep)


async def _joined(viewer: ViewerClient, transport: FakeTransport) -> None:
    transport.responses.append({"success": True})
    assert await viewer.join() is True


async def _connected(viewer: ViewerClient, transport: FakeTransport, factory: FakePeerFactory) -> None:
    await transport.push("offer", OFFER)
    factory.last.set_connection_state("connecting")
    factory.last.set_connection_state("connected")


class TestJoin:
    """Tests for ViewerClient.join."""

    async def test_join_success(self, viewer, fake_transport):
        # Act
        await _joined(viewer, fake_transport)

        # Assert
        assert fake_transport.sent == [JoinRoomIn(room_id="ro_1", ack=None)]
        assert viewer.has_joined is True
        assert viewer.status.status == "Signaling connected, waiting for media stream..."

    async def test_join_missing_room(self, viewer, fake_transport):
        # Arrange
        fake_transport.responses.append({"error": "Room does not exist"})

        # Act
        joined = await viewer.join()

        # Assert
        assert joined is False
        assert viewer.status.error.errcode == AppErrorCode.E_ROOM_NOT_FOUND.value
        assert viewer.status.error.errmesg == "Room does not exist"

    async def test_join_timeout(self, viewer, fake_transport):
        # Arrange
        fake_transport.responses.append(asyncio.TimeoutError())

        # Act
        joined = await viewer.join()

        # Assert
        assert joined is False
        assert viewer.status.error.errcode == AppErrorCode.E_JOIN_TIMEOUT.value
        assert viewer.is_joining is False

    async def test_join_twice_is_noop(self, viewer, fake_transport):
        # Arrange
        await _joined(viewer, fake_transport)

        # Act
        joined = await viewer.join()

        # Assert
        assert joined is True
        assert len(fake_transport.sent) == 1

    async def test_empty_room_id(self, fake_transport, surface, peer_factory):
        viewer = ViewerClient(fake_transport, "", surface, peer_factory=peer_factory)

        assert await viewer.join() is False
        assert viewer.status.error.errcode == AppErrorCode.E_ROOM_NOT_FOUND.value


class TestMedia:
    """Offer handling and playback."""

    async def test_offer_answered_and_stream_played(self, viewer, fake_transport, peer_factory, surface):
        # Arrange
        await _joined(viewer, fake_transport)

        # Act
        await fake_transport.push("offer", OFFER)
        peer_factory.last.emit("track", FakeTrack("video"))
        peer_factory.last.emit("track", FakeTrack("audio"))
        await settle()

        # Assert
        assert [answer.target for answer in fake_transport.sent_events("answer")] == ["s1"]
        assert surface.stream is viewer.remote_stream
        assert len(surface.stream.tracks) == 2
        assert surface.play_calls == 1
        assert viewer.playback.playing is True
        assert viewer.status.status == "Live stream"

    async def test_blocked_playback_asks_for_interaction(self, fake_transport, peer_factory, sleep):
        # Arrange
        surface = FakeSurface(play_error=RuntimeError("autoplay blocked"))
        viewer = ViewerClient(fake_transport, "ro_1", surface, peer_factory=peer_factory, sleep=sleep)
        await _joined(viewer, fake_transport)
        await fake_transport.push("offer", OFFER)

        # Act
        peer_factory.last.emit("track", FakeTrack("video"))
        await settle()

        # Assert
        assert viewer.playback.needs_user_interaction is True
        assert viewer.status.status == "Click to start playback"

        # Manual play succeeds once allowed
        surface.play_error = None
        assert await viewer.play() is True
        assert viewer.playback.needs_user_interaction is False

    async def test_pause_and_resume_notices(self, viewer, fake_transport):
        # Act
        await fake_transport.push("stream-paused", StreamPausedOut())
        paused = viewer.playback.paused
        await fake_transport.push("stream-resumed", StreamResumedOut())

        # Assert
        assert paused is True
        assert viewer.playback.paused is False
        assert viewer.status.status == "Stream resuming, awaiting renegotiation..."

    async def test_streamer_left(self, viewer, fake_transport):
        # Arrange
        await _joined(viewer, fake_transport)

        # Act
        await fake_transport.push("streamer-left", StreamerLeftOut())

        # Assert
        assert viewer.status.error.errcode == AppErrorCode.E_CONNECTION_CLOSED.value
        assert viewer.status.status == "Streamer is offline"
        assert viewer.has_joined is False


class TestRecovery:
    """Automatic and manual reconnection."""

    async def test_disconnect_retries_after_2s_then_4s(self, viewer, fake_transport, peer_factory, sleep):
        """Scenario: connected -> disconnected rejoins after 2000ms; a second failure waits 4000ms."""
        # Arrange
        await _joined(viewer, fake_transport)
        await _connected(viewer, fake_transport, peer_factory)
        fake_transport.responses.append({"success": True})

        # Act: connection drops, the retry rejoins the room
        peer_factory.last.set_connection_state("disconnected")
        await settle(10)

        # Assert
        assert sleep.delays == [2.0]
        assert len(fake_transport.sent_events("join-room")) == 2
        assert peer_factory.created[0].closed is True
        assert viewer.reconnection.attempt_count == 1

        # Act: the renegotiated session fails too
        await fake_transport.push("offer", OFFER)
        fake_transport.responses.append({"success": True})
        peer_factory.last.set_connection_state("failed")
        await settle(10)

        # Assert
        assert sleep.delays == [2.0, 4.0]
        assert viewer.reconnection.attempt_count == 2

    async def test_fresh_offer_during_backoff_keeps_new_session(self, fake_transport, surface, peer_factory):
        """A streamer re-offer while a retry is waiting replaces the retry."""
        # Arrange
        gate = asyncio.Event()

        async def gated_sleep(seconds: float) -> None:
            await gate.wait()

        viewer = ViewerClient(fake_transport, "ro_1", surface, peer_factory=peer_factory, sleep=gated_sleep)
        await _joined(viewer, fake_transport)
        await _connected(viewer, fake_transport, peer_factory)
        peer_factory.last.set_connection_state("disconnected")
        await settle()
        assert viewer.reconnection.pending is True

        # Act
        await fake_transport.push("offer", OFFER)
        peer_factory.last.set_connection_state("connecting")
        gate.set()
        await settle(10)

        # Assert
        assert len(peer_factory.created) == 2
        assert peer_factory.last.closed is False
        assert viewer.reconnection.pending is False
        assert len(fake_transport.sent_events("join-room")) == 1

    async def test_recovery_resets_counter(self, viewer, fake_transport, peer_factory, sleep):
        # Arrange
        await _joined(viewer, fake_transport)
        await _connected(viewer, fake_transport, peer_factory)
        fake_transport.responses.append({"success": True})
        peer_factory.last.set_connection_state("disconnected")
        await settle(10)

        # Act
        await _connected(viewer, fake_transport, peer_factory)

        # Assert
        assert viewer.connection_state == ConnectionState.CONNECTED
        assert viewer.reconnection.attempt_count == 0

    async def test_retry_exhaustion_surfaces_error(self, viewer, fake_transport, peer_factory, sleep):
        # Arrange
        await _joined(viewer, fake_transport)
        viewer.reconnection.retry.attempt_count = 5
        await fake_transport.push("offer", OFFER)

        # Act
        peer_factory.last.set_connection_state("failed")
        await settle()

        # Assert
        assert sleep.delays == []
        assert viewer.status.error.errcode == AppErrorCode.E_CONNECTION_FAILED.value

    async def test_manual_reconnect_resets_and_rejoins(self, viewer, fake_transport, peer_factory, surface):
        # Arrange
        await _joined(viewer, fake_transport)
        await fake_transport.push("offer", OFFER)
        viewer.reconnection.retry.attempt_count = 3
        fake_transport.responses.append({"success": True})

        # Act
        rejoined = await viewer.reconnect()

        # Assert
        assert rejoined is True
        assert viewer.reconnection.attempt_count == 0
        assert peer_factory.last.closed is True
        assert viewer.manager.viewer_session is None
        assert surface.detach_calls == 1
        assert len(fake_transport.sent_events("join-room")) == 2

    async def test_transport_reconnect_rejoins(self, viewer, fake_transport):
        # Arrange
        await _joined(viewer, fake_transport)
        fake_transport.responses.append({"success": True})

        # Act
        await fake_transport.push("reconnect", 1)

        # Assert
        assert viewer.has_joined is True
        assert len(fake_transport.sent_events("join-room")) == 2
