"""Client side of the signaling relay, over `websockets`.

Besides relay events, subscribers may listen for local lifecycle events:
"connect" (client id), "disconnect" (reason), "reconnect" (attempt number)
and "reconnect_failed".
"""

import asyncio
import inspect
import itertools
import random
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

import websockets
from loguru import logger

from livecast.app_config import get_app_environ_config
from livecast.schemas import (
    AckOut,
    ClientMessage,
    ConnectedOut,
    ErrorOut,
    dump_message,
    parse_relay_message,
)
from livecast.shared.api.utils import format_error
from livecast.utils.app_errors import MessageParseError

Handler = Callable[[Any], Any]
Connector = Callable[[str], Awaitable[Any]]

CONNECT_EVENT = "connect"
DISCONNECT_EVENT = "disconnect"
RECONNECT_EVENT = "reconnect"
RECONNECT_FAILED_EVENT = "reconnect_failed"


def _default_connector(url: str) -> Awaitable[Any]:
    return websockets.connect(url)


class SignalingClient:
    def __init__(
        self,
        url: str | None = None,
        *,
        connector: Connector = _default_connector,
        reconnection: bool = True,
        reconnect_delay_ms: int | None = None,
        reconnect_delay_max_ms: int | None = None,
        reconnect_attempts: int | None = None,
        randomization_factor: float = 0.5,
        connect_timeout_ms: int | None = None,
    ):
        cfg = get_app_environ_config()
        self.url = url or cfg.SIGNALING_URL
        self.reconnection = reconnection
        self.reconnect_delay_ms = reconnect_delay_ms or cfg.TRANSPORT_RECONNECT_DELAY_MS
        self.reconnect_delay_max_ms = reconnect_delay_max_ms or cfg.TRANSPORT_RECONNECT_DELAY_MAX_MS
        self.reconnect_attempts = reconnect_attempts or cfg.TRANSPORT_RECONNECT_ATTEMPTS
        self.randomization_factor = randomization_factor
        self.connect_timeout_ms = connect_timeout_ms or cfg.SOCKET_CONNECT_TIMEOUT_MS
        self.client_id: str | None = None

        self._connector = connector
        self._ws: Any = None
        self._reader: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._closing = False
        self._connected = asyncio.Event()
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._pending: dict[int, asyncio.Future] = {}
        self._ack_seq = itertools.count(1)
        self._tasks: set[asyncio.Task] = set()

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    # ==================== SUBSCRIPTIONS ====================

    def subscribe(self, event: str, handler: Handler) -> Callable[[], None]:
        """Register `handler` for `event`; returns a callable that removes it."""
        self._handlers[event].append(handler)

        def unsubscribe() -> None:
            self.unsubscribe(event, handler)

        return unsubscribe

    def unsubscribe(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def _dispatch(self, event: str, payload: Any = None) -> None:
        for handler in list(self._handlers.get(event, ())):
            try:
                result = handler(payload)
            except Exception as exc:
                logger.error("Handler for '{}' failed: {}", event, format_error(exc))
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._on_handler_done)

    def _on_handler_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Handler task failed: {}", format_error(exc))

    # ==================== CONNECTION ====================

    async def connect(self) -> None:
        """Open the connection; the relay confirms with a `connected` frame."""
        if self._ws is not None:
            return
        self._closing = False
        await self._open()

    async def wait_connected(self, timeout_ms: int | None = None) -> None:
        """Wait for the relay's `connected` frame.

        Raises:
            asyncio.TimeoutError: not connected within `timeout_ms`
        """
        if self.connected:
            return
        timeout = (timeout_ms or self.connect_timeout_ms) / 1000
        await asyncio.wait_for(self._connected.wait(), timeout)

    async def disconnect(self) -> None:
        self._closing = True
        if self._reconnect_task is not None and self._reconnect_task is not asyncio.current_task():
            self._reconnect_task.cancel()
        self._reconnect_task = None

        ws = self._ws
        if ws is not None:
            await ws.close()

        reader = self._reader
        if reader is not None and not reader.done():
            try:
                await asyncio.wait_for(reader, 1.0)
            except asyncio.TimeoutError:
                reader.cancel()
        logger.info("Signaling client disconnected")

    async def _open(self) -> None:
        logger.info("Connecting to signaling server at {}", self.url)
        ws = await self._connector(self.url)
        self._ws = ws
        self._reader = asyncio.ensure_future(self._read_loop(ws))

    async def _read_loop(self, ws: Any) -> None:
        reason = "connection closed"
        try:
            async for raw in ws:
                self._handle_frame(raw)
        except websockets.ConnectionClosed as exc:
            reason = str(exc)
        finally:
            if self._ws is ws:
                self._on_connection_lost(reason)

    def _handle_frame(self, raw: str | bytes) -> None:
        try:
            message = parse_relay_message(raw)
        except MessageParseError as exc:
            logger.warning("Ignoring malformed relay frame: {}", exc.errmesg)
            return

        if isinstance(message, AckOut):
            future = self._pending.pop(message.ack, None)
            if future is not None and not future.done():
                future.set_result(message.result)
            return

        if isinstance(message, ConnectedOut):
            self.client_id = message.client_id
            self._connected.set()
            logger.info("Socket connected, client id: {}", message.client_id)
            self._dispatch(CONNECT_EVENT, message.client_id)
            return

        if isinstance(message, ErrorOut):
            logger.warning("Relay rejected a frame: {} {}", message.errcode, message.errmesg)

        self._dispatch(message.event, message)

    def _on_connection_lost(self, reason: str) -> None:
        was_connected = self.connected
        self._connected.clear()
        self._ws = None
        self.client_id = None

        for future in self._pending.values():
            if not future.done():
                future.set_exception(ConnectionError("Signaling connection lost"))
        self._pending.clear()

        if was_connected:
            logger.warning("Socket disconnected: {}", reason)
            self._dispatch(DISCONNECT_EVENT, reason)

        if self._closing or not self.reconnection:
            return
        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.ensure_future(self._reconnect_loop())

    def reconnect_delay(self, attempt: int) -> float:
        """Backoff in seconds before `attempt` (1-based), jittered."""
        delay = min(self.reconnect_delay_ms * 2 ** (attempt - 1), self.reconnect_delay_max_ms)
        jitter = random.uniform(-self.randomization_factor, self.randomization_factor)
        return max(0.0, delay * (1 + jitter)) / 1000

    async def _reconnect_loop(self) -> None:
        for attempt in range(1, self.reconnect_attempts + 1):
            await asyncio.sleep(self.reconnect_delay(attempt))
            if self._closing:
                return
            try:
                await self._open()
                await self.wait_connected(self.connect_timeout_ms)
            except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as exc:
                logger.warning("Reconnect attempt {} failed: {}", attempt, exc)
                await self._drop_socket()
                continue

            logger.info("Socket reconnected successfully, attempt: {}", attempt)
            self._dispatch(RECONNECT_EVENT, attempt)
            return

        logger.error("Socket reconnection failed after {} attempts", self.reconnect_attempts)
        self._dispatch(RECONNECT_FAILED_EVENT, None)

    async def _drop_socket(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()

    # ==================== SENDING ====================

    async def emit(self, message: ClientMessage) -> bool:
        """Send a frame; returns False when the transport is down."""
        ws = self._ws
        if ws is None or not self.connected:
            logger.warning("Socket not connected, dropping '{}'", message.event)
            return False
        try:
            await ws.send(dump_message(message))
        except websockets.ConnectionClosed as exc:
            logger.warning("Failed to send '{}': {}", message.event, exc)
            return False
        return True

    async def request(self, message: ClientMessage, timeout_ms: int) -> dict[str, Any]:
        """Send a frame and wait for the relay's acknowledgement.

        Raises:
            ConnectionError: transport down or lost while waiting
            asyncio.TimeoutError: no acknowledgement within `timeout_ms`
        """
        ack = next(self._ack_seq)
        message = message.model_copy(update={"ack": ack})
        future = asyncio.get_running_loop().create_future()
        self._pending[ack] = future
        try:
            if not await self.emit(message):
                raise ConnectionError("Signaling transport is not connected")
            return await asyncio.wait_for(future, timeout_ms / 1000)
        finally:
            self._pending.pop(ack, None)
