"""Tests for ClientStatus."""

from livecast.clients.status import ClientStatus
from livecast.utils.app_errors import AppErrorCode, SignalingError


class TestClientStatus:
    def test_single_current_error(self):
        # Arrange
        status = ClientStatus()
        first = SignalingError(AppErrorCode.E_JOIN_TIMEOUT, "Join room timed out")
        second = SignalingError(AppErrorCode.E_ROOM_NOT_FOUND, "Room does not exist")

        # Act
        status.set_error(first)
        status.set_error(second)

        # Assert
        assert status.error is second
        assert status.error_message == "Room does not exist"

    def test_clear_error(self):
        status = ClientStatus()
        status.set_error(SignalingError(AppErrorCode.E_JOIN_TIMEOUT))

        status.clear_error()

        assert status.error is None
        assert status.error_message is None

    def test_listeners_notified_on_change_only(self):
        # Arrange
        status = ClientStatus("Ready")
        seen = []
        unsubscribe = status.subscribe(lambda s: seen.append(s.status))

        # Act
        status.set_status("Ready")
        status.set_status("Joining signaling room...")
        unsubscribe()
        status.set_status("Live stream")

        # Assert
        assert seen == ["Joining signaling room..."]
