"""User-facing status text and current error of a client."""

from collections.abc import Callable

from loguru import logger

from livecast.utils.app_errors import AppError

StatusListener = Callable[["ClientStatus"], None]


class ClientStatus:
    def __init__(self, status: str = "Ready"):
        self.status = status
        self.error: AppError | None = None
        self._listeners: list[StatusListener] = []

    @property
    def error_message(self) -> str | None:
        return self.error.errmesg if self.error is not None else None

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def set_status(self, status: str) -> None:
        if status == self.status:
            return
        self.status = status
        logger.debug("Status: {}", status)
        self._notify()

    def set_error(self, error: AppError) -> None:
        self.error = error
        logger.warning("{} [{}]: {}", error.errcode, error.erresid, error.errmesg)
        self._notify()

    def clear_error(self) -> None:
        if self.error is None:
            return
        self.error = None
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)
