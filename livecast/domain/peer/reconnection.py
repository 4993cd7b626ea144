"""Viewer-side retry scheduling after a peer connection drops."""

import asyncio
from collections.abc import Awaitable, Callable

from loguru import logger

from livecast.domain.peer.peer_models import RetryState
from livecast.domain.peer.peer_state_machine import PeerStateMachine
from livecast.schemas import ConnectionState
from livecast.shared.api.utils import format_error


class ReconnectionController:
    """Schedules the viewer's reconnect sequence with a linear backoff.

    Attempt n waits `base_delay_ms * n` before running `reconnect`. At most
    one timer is pending; scheduling a new one cancels the old, and any
    state change outside the retry states cancels it too. After
    `max_attempts` the controller stops and calls `on_exhausted`.
    """

    def __init__(
        self,
        reconnect: Callable[[], Awaitable[None]],
        *,
        is_connected: Callable[[], bool],
        is_joining: Callable[[], bool],
        on_exhausted: Callable[[], None] | None = None,
        base_delay_ms: int = 2000,
        max_attempts: int = 5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.retry = RetryState()
        self.base_delay_ms = base_delay_ms
        self.max_attempts = max_attempts
        self._reconnect = reconnect
        self._is_connected = is_connected
        self._is_joining = is_joining
        self._on_exhausted = on_exhausted
        self._sleep = sleep

    @property
    def attempt_count(self) -> int:
        return self.retry.attempt_count

    @property
    def pending(self) -> bool:
        timer = self.retry.pending_timer
        return timer is not None and not timer.done()

    def delay_for(self, attempt: int) -> int:
        return self.base_delay_ms * attempt

    def on_connection_state(self, state: ConnectionState) -> None:
        if state == ConnectionState.CONNECTED:
            if self.retry.attempt_count:
                logger.info("Connection recovered after {} retries", self.retry.attempt_count)
            self.reset()
            return

        if not PeerStateMachine.triggers_retry(state):
            # A fresh session is negotiating; a pending retry would tear it down.
            if self.pending:
                logger.debug("Connection {}, cancelling scheduled retry", state)
            self.cancel_timer()
            return

        self.retry.attempt_count += 1
        attempt = self.retry.attempt_count
        if attempt > self.max_attempts:
            self.cancel_timer()
            logger.warning("Retry limit reached ({}), giving up", self.max_attempts)
            if self._on_exhausted is not None:
                self._on_exhausted()
            return

        delay_ms = self.delay_for(attempt)
        logger.info(
            "Connection {}, retry {}/{} in {}ms", state, attempt, self.max_attempts, delay_ms
        )
        self.cancel_timer()
        timer = asyncio.ensure_future(self._fire(delay_ms))
        timer.add_done_callback(self._on_timer_done)
        self.retry.pending_timer = timer

    async def _fire(self, delay_ms: int) -> None:
        await self._sleep(delay_ms / 1000)

        # The reconnect sequence cancels pending timers; this one is no longer pending.
        if self.retry.pending_timer is asyncio.current_task():
            self.retry.pending_timer = None

        if self._is_connected() or self._is_joining():
            logger.debug("Skipping scheduled retry, connection already recovering")
            return
        await self._reconnect()

    def cancel_timer(self) -> None:
        timer, self.retry.pending_timer = self.retry.pending_timer, None
        if timer is None or timer.done():
            return
        if timer is asyncio.current_task():
            return
        timer.cancel()

    def reset(self) -> None:
        self.cancel_timer()
        self.retry.attempt_count = 0

    @staticmethod
    def _on_timer_done(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Scheduled reconnect failed: {}", format_error(exc))
