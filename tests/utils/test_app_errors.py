"""Tests for the AppError family."""

import inspect

import pytest

from livecast.utils.app_errors import AppError, AppErrorCode, HttpStatusCode, MessageParseError, SignalingError


def _raise_site() -> MessageParseError:
    return MessageParseError("bad frame")


class TestAppError:
    def test_fields(self):
        # Act
        error = SignalingError(AppErrorCode.E_ROOM_NOT_FOUND, "Room does not exist", status_code=HttpStatusCode.NOT_FOUND)

        # Assert
        assert error.errcode == "E_ROOM_NOT_FOUND"
        assert error.errmesg == "Room does not exist"
        assert error.status_code == 404
        assert len(error.erresid) == 10

    def test_message_defaults_to_code(self):
        assert AppError(AppErrorCode.E_SDP_FAILURE).errmesg == "E_SDP_FAILURE"

    def test_subclass_rejects_foreign_code(self):
        with pytest.raises(ValueError):
            SignalingError(AppErrorCode.E_SDP_FAILURE)

    def test_caller_is_raise_site_not_constructor(self):
        """Subclass constructors are skipped when recording the caller."""
        # Act
        error = _raise_site()

        # Assert
        assert error.caller_info.startswith(f"{__name__}:_raise_site:")
        assert error.status_code == HttpStatusCode.UNPROCESSABLE_ENTITY

    def test_caller_capture_does_not_read_full_stack(self, monkeypatch):
        # Arrange
        def fail(*args, **kwargs):
            raise AssertionError("inspect.stack must not be used")

        monkeypatch.setattr(inspect, "stack", fail)

        # Act
        error = MessageParseError("bad frame")

        # Assert
        assert error.caller_info.startswith(f"{__name__}:test_caller_capture_does_not_read_full_stack:")
