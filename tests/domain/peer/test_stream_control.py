"""Tests for StreamControlSynchronizer and ViewerPlaybackState."""

import pytest

from livecast.domain.peer.negotiation import NegotiationCoordinator
from livecast.domain.peer.peer_manager import PeerConnectionManager
from livecast.domain.peer.stream_control import StreamControlSynchronizer, ViewerPlaybackState
from livecast.schemas import PeerRole, StreamPausedIn, StreamResumedIn
from livecast.utils.app_errors import AppErrorCode, MediaAcquisitionError
from tests.fixtures.rtc_fixtures import FakeCaptureProvider, FakePeerFactory, FakeTransport


@pytest.fixture
def capture() -> FakeCaptureProvider:
    return FakeCaptureProvider()


@pytest.fixture
def control(peer_factory: FakePeerFactory, fake_transport: FakeTransport, capture) -> StreamControlSynchronizer:
    manager = PeerConnectionManager(PeerRole.STREAMER, peer_factory=peer_factory, send=fake_transport.emit)
    coordinator = NegotiationCoordinator(manager, fake_transport.emit)
    return StreamControlSynchronizer(manager, coordinator, capture, fake_transport.emit)


async def _stream_to(control: StreamControlSynchronizer, *viewer_ids: str) -> None:
    await control.start()
    for viewer_id in viewer_ids:
        await control.coordinator.create_offer(viewer_id)


class TestPause:
    async def test_pause_stops_media_and_keeps_sessions(self, control, fake_transport, capture):
        # Arrange
        await _stream_to(control, "v1", "v2")
        sessions = dict(control.manager.sessions)
        fake_transport.sent.clear()

        # Act
        await control.pause("ro_1")

        # Assert
        assert control.paused is True
        assert control.manager.local_media is None
        assert all(track.readyState == "ended" for track in capture.sources[0].tracks)
        assert dict(control.manager.sessions) == sessions
        assert fake_transport.sent == [StreamPausedIn(room_id="ro_1")]


class TestResume:
    async def test_resume_sends_one_offer_per_viewer(self, control, fake_transport, peer_factory):
        """Scenario: resume with viewers v1 and v2 sends exactly two offers and keeps sessions."""
        # Arrange
        await _stream_to(control, "v1", "v2")
        sessions = dict(control.manager.sessions)
        await control.pause("ro_1")
        fake_transport.sent.clear()

        # Act
        failures = await control.resume("ro_1", ["v1", "v2"])

        # Assert
        assert failures == {}
        assert fake_transport.sent[0] == StreamResumedIn(room_id="ro_1")
        offers = fake_transport.sent_events("offer")
        assert sorted(offer.target for offer in offers) == ["v1", "v2"]
        assert dict(control.manager.sessions) == sessions
        assert len(peer_factory.created) == 2
        assert not any(pc.closed for pc in peer_factory.created)

    async def test_resume_swaps_in_new_tracks(self, control, peer_factory, capture):
        # Arrange
        await _stream_to(control, "v1")
        await control.pause("ro_1")

        # Act
        await control.resume("ro_1", ["v1"])

        # Assert
        fresh = capture.sources[-1].tracks
        assert [sender.track for sender in peer_factory.last.getSenders()] == fresh

    async def test_resume_offers_viewer_that_joined_while_paused(self, control, fake_transport, peer_factory):
        # Arrange
        await _stream_to(control, "v1")
        await control.pause("ro_1")

        # Act
        await control.resume("ro_1", ["v1", "v2"])

        # Assert
        assert sorted(offer.target for offer in fake_transport.sent_events("offer")) == ["v1", "v1", "v2"]
        assert set(control.manager.sessions) == {"v1", "v2"}

    async def test_resume_with_capture_failure(self, control, fake_transport, capture):
        # Arrange
        await _stream_to(control, "v1")
        await control.pause("ro_1")
        capture.error = MediaAcquisitionError(AppErrorCode.E_DEVICE_BUSY)
        fake_transport.sent.clear()

        # Act
        with pytest.raises(MediaAcquisitionError):
            await control.resume("ro_1", ["v1"])

        # Assert
        assert fake_transport.sent == []
        assert control.paused is True

    async def test_resume_reports_per_viewer_failures(self, control, peer_factory):
        # Arrange
        await _stream_to(control, "v1", "v2")
        await control.pause("ro_1")
        control.manager.get_session("v2").connection.fail_on.add("createOffer")

        # Act
        failures = await control.resume("ro_1", ["v1", "v2"])

        # Assert
        assert list(failures) == ["v2"]
        assert failures["v2"].errcode == AppErrorCode.E_SDP_FAILURE.value


class TestViewerPlaybackState:
    def test_pause_then_resume_then_play(self):
        # Arrange
        state = ViewerPlaybackState(playing=True)

        # Act / Assert
        state.mark_paused()
        assert (state.paused, state.playing) == (True, False)

        state.mark_resumed()
        assert state.paused is False

        state.mark_blocked()
        assert state.needs_user_interaction is True

        state.mark_playing()
        assert (state.playing, state.needs_user_interaction) == (True, False)

    def test_reset(self):
        state = ViewerPlaybackState(paused=True, processing_offer=True, playing=True, needs_user_interaction=True)
        state.reset()
        assert state == ViewerPlaybackState()
