"""Application error taxonomy.

Every failure in the system is scoped to one session or room. Errors carry a
stable `errcode`, a human readable `errmesg`, a short `erresid` for log
correlation and the call site that raised them.
"""

import inspect
from enum import Enum, IntEnum
from uuid import uuid4


class HttpStatusCode(IntEnum):
    OK = 200
    BAD_REQUEST = 400
    NOT_FOUND = 404
    CONFLICT = 409
    UNPROCESSABLE_ENTITY = 422
    INTERNAL_SERVER_ERROR = 500
    GATEWAY_TIMEOUT = 504


class AppErrorCode(str, Enum):
    # Media acquisition
    E_PERMISSION_DENIED = "E_PERMISSION_DENIED"
    E_DEVICE_NOT_FOUND = "E_DEVICE_NOT_FOUND"
    E_DEVICE_BUSY = "E_DEVICE_BUSY"
    E_MEDIA_OTHER = "E_MEDIA_OTHER"

    # Signaling
    E_ROOM_NOT_FOUND = "E_ROOM_NOT_FOUND"
    E_JOIN_TIMEOUT = "E_JOIN_TIMEOUT"
    E_CREATE_TIMEOUT = "E_CREATE_TIMEOUT"
    E_MALFORMED_MESSAGE = "E_MALFORMED_MESSAGE"

    # Negotiation
    E_LOCAL_MEDIA_NOT_READY = "E_LOCAL_MEDIA_NOT_READY"
    E_SDP_FAILURE = "E_SDP_FAILURE"

    # ICE
    E_ADD_CANDIDATE_FAILURE = "E_ADD_CANDIDATE_FAILURE"

    # Connection
    E_CONNECTION_FAILED = "E_CONNECTION_FAILED"
    E_CONNECTION_CLOSED = "E_CONNECTION_CLOSED"

    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_INTERNAL_ERROR = "E_INTERNAL_ERROR"

    def __str__(self) -> str:
        return self.value


class AppError(Exception):
    """Base error carrying an error code, message and HTTP status."""

    allowed_codes: frozenset[AppErrorCode] | None = None

    def __init__(
        self,
        errcode: AppErrorCode | str,
        errmesg: str | None = None,
        *,
        status_code: int = HttpStatusCode.BAD_REQUEST,
    ):
        code = AppErrorCode(errcode)
        if self.allowed_codes is not None and code not in self.allowed_codes:
            raise ValueError(f"{type(self).__name__} does not accept {code}")

        self.errcode = code.value
        self.errmesg = errmesg or code.value
        self.status_code = int(status_code)
        self.erresid = uuid4().hex[:10]

        self.caller_info = _caller_info(inspect.currentframe())

        super().__init__(self.errmesg)

    @property
    def code(self) -> AppErrorCode:
        return AppErrorCode(self.errcode)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.errcode}, {self.errmesg!r})"


class MediaAcquisitionError(AppError):
    allowed_codes = frozenset(
        {
            AppErrorCode.E_PERMISSION_DENIED,
            AppErrorCode.E_DEVICE_NOT_FOUND,
            AppErrorCode.E_DEVICE_BUSY,
            AppErrorCode.E_MEDIA_OTHER,
        }
    )


class SignalingError(AppError):
    allowed_codes = frozenset(
        {
            AppErrorCode.E_ROOM_NOT_FOUND,
            AppErrorCode.E_JOIN_TIMEOUT,
            AppErrorCode.E_CREATE_TIMEOUT,
        }
    )


class MessageParseError(AppError):
    allowed_codes = frozenset({AppErrorCode.E_MALFORMED_MESSAGE})

    def __init__(self, errmesg: str | None = None):
        super().__init__(
            AppErrorCode.E_MALFORMED_MESSAGE,
            errmesg,
            status_code=HttpStatusCode.UNPROCESSABLE_ENTITY,
        )


class NegotiationError(AppError):
    allowed_codes = frozenset(
        {AppErrorCode.E_LOCAL_MEDIA_NOT_READY, AppErrorCode.E_SDP_FAILURE}
    )


class IceError(AppError):
    allowed_codes = frozenset({AppErrorCode.E_ADD_CANDIDATE_FAILURE})


class ConnectionTerminal(AppError):
    allowed_codes = frozenset(
        {AppErrorCode.E_CONNECTION_FAILED, AppErrorCode.E_CONNECTION_CLOSED}
    )


def _caller_info(frame) -> str:
    """`module:function:line` of the first frame outside an `__init__`."""
    # Skip subclass constructors so the recorded caller is the raise site.
    caller = frame.f_back if frame is not None else None
    while caller is not None and caller.f_code.co_name == "__init__" and caller.f_back is not None:
        caller = caller.f_back
    if caller is None:
        return "unknown"
    code = caller.f_code
    module_name = caller.f_globals.get("__name__") or code.co_filename
    return f"{module_name}:{code.co_name}:{caller.f_lineno}"
