"""
Connection Manager

Owns the single persistent consumer socket and its lifecycle.

State machine:
    DISCONNECTED --connect--> CONNECTING --socket open, init sent-->
    (init ack 200) CONNECTED --(subscribe ack)--> SUBSCRIBED

On socket error or abnormal close the manager retries a bounded number of
times with a fixed delay. The retry counter belongs to the instance and is
reset on every CONNECTED transition. A close reason saying the identity
token is invalid forces a fresh credential before the next attempt. Once
retries are exhausted the manager stays DISCONNECTED and emits
connection.failed; there are no further automatic attempts.

Outbound frames go through a single-writer queue that only drains while
CONNECTED. The init and heartbeat frames bypass the queue.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

import websockets
from websockets.exceptions import ConnectionClosed

from ums_client.auth.broker import Credential
from ums_client.errors import AuthError, ConnectionLostError, ProtocolError, StateError
from ums_client.events.models import EngineEventType
from ums_client.events.stream import EventStream
from ums_client.protocol.builder import FrameBuilder
from ums_client.protocol.frames import Frame, RequestFrame, RequestId, ResponseFrame, decode_frame
from ums_client.transport.queue import OutboundQueue
from ums_client.transport.subscriptions import SubscriptionRegistry

logger = logging.getLogger(__name__)


INVALID_TOKEN_REASON = "token is invalid"


class ConnectionState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    SUBSCRIBED = "SUBSCRIBED"


class Socket(Protocol):
    """The subset of a websockets client connection the manager uses."""

    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> Any: ...


SocketFactory = Callable[[str], Awaitable[Socket]]
CredentialProvider = Callable[[bool], Awaitable[Credential]]
FrameHandler = Callable[[Frame], Awaitable[None]]


async def open_websocket(url: str) -> Socket:
    """Default socket factory."""
    return await websockets.connect(url)


def close_reason(error: BaseException) -> str:
    """Readable reason for a lost socket."""
    if isinstance(error, ConnectionClosed) and error.rcvd is not None:
        return error.rcvd.reason or f"code {error.rcvd.code}"
    return str(error) or type(error).__name__


class ConnectionManager:
    """
    Consumer socket with bounded reconnect.

    Attributes:
        url: Socket URL
        subscriptions: Subscriptions requested on the current socket
    """

    def __init__(
        self,
        builder: FrameBuilder,
        url: str | None = None,
        credential_provider: CredentialProvider | None = None,
        socket_factory: SocketFactory | None = None,
        events: EventStream | None = None,
        account_id: str | None = None,
        retries: int = 1,
        retry_delay: float = 2.0,
        heartbeat_interval: float = 60.0,
        max_queue_size: int = 200,
    ):
        """
        Initialize the manager.

        Args:
            builder: Frame builder for init and heartbeat frames
            url: Socket URL (can also be given to connect())
            credential_provider: Called with reset=True when the server rejects the token
            socket_factory: Opens a socket for a URL (defaults to websockets.connect)
            events: Engine event stream for connection notifications
            account_id: Account, for event correlation
            retries: Reconnect attempts before giving up
            retry_delay: Seconds between attempts
            heartbeat_interval: Seconds between GetClock frames
            max_queue_size: Outbound queue depth
        """
        self.url = url
        self.subscriptions = SubscriptionRegistry()
        self._builder = builder
        self._credential_provider = credential_provider
        self._socket_factory = socket_factory or open_websocket
        self._events = events
        self.account_id = account_id
        self._retries = retries
        self._retry_delay = retry_delay
        self._heartbeat_interval = heartbeat_interval
        self._max_queue_size = max_queue_size

        self._state = ConnectionState.DISCONNECTED
        self._attempts = 0
        self._credential: Credential | None = None
        self._socket: Socket | None = None
        self._queue: OutboundQueue | None = None
        self._handlers: list[FrameHandler] = []
        self._supervisor: asyncio.Task | None = None
        self._heartbeat: asyncio.Task | None = None
        self._closing = False

    # =========================================================================
    # State
    # =========================================================================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def attempts(self) -> int:
        """Reconnect attempts made since the last CONNECTED transition."""
        return self._attempts

    @property
    def has_socket(self) -> bool:
        return self._state != ConnectionState.DISCONNECTED

    @property
    def credential(self) -> Credential | None:
        return self._credential

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        logger.info(f"Connection state {self._state.value} -> {state.value}")
        self._state = state
        if self._events:
            self._events.emit(
                EngineEventType.CONNECTION_STATE,
                message=f"Connection {state.value}",
                account_id=self.account_id,
                state=state.value,
            )

    async def mark_connected(self) -> None:
        """Init acknowledged: reset the retry budget and start draining sends."""
        self._attempts = 0
        self._set_state(ConnectionState.CONNECTED)
        if self._queue and not self._queue.is_closed:
            await self._queue.start()

    def mark_subscribed(self) -> None:
        if self._state == ConnectionState.CONNECTED:
            self._set_state(ConnectionState.SUBSCRIBED)

    # =========================================================================
    # Public API
    # =========================================================================

    def on_message(self, handler: FrameHandler) -> None:
        """Register a handler for every decoded inbound frame."""
        self._handlers.append(handler)

    async def connect(self, credential: Credential, url: str | None = None) -> None:
        """
        Open the socket and authenticate it.

        Returns once the socket is open and the init frame is sent; the
        CONNECTED transition happens when the init ack arrives.

        Raises:
            StateError: If no URL is known or a connection is already active
            ConnectionLostError: If the socket cannot be opened within the retry budget
        """
        if url:
            self.url = url
        if not self.url:
            raise StateError("No socket URL to connect to")
        if self.has_socket:
            raise StateError(f"Connection already {self._state.value}")

        self._credential = credential
        self._closing = False
        self._attempts = 0
        self._queue = OutboundQueue(self.url, self._send_raw, self._max_queue_size)
        self._set_state(ConnectionState.CONNECTING)

        try:
            await self._open()
        except ConnectionLostError as e:
            if not await self._reconnect(str(e)):
                raise ConnectionLostError(f"Could not connect to {self.url}") from e

        self._supervisor = asyncio.create_task(self._supervise(), name=f"socket_reader_{self.account_id}")

    async def send(self, frame: RequestFrame) -> None:
        """
        Queue a frame for the socket.

        Frames sent before CONNECTED wait in the queue and are flushed on
        the CONNECTED transition.

        Raises:
            StateError: If there is no socket at all
            QueueFullError: If the outbound queue is full
        """
        if not self.has_socket or self._queue is None:
            raise StateError("No socket found")
        self._queue.put_nowait(frame.to_wire())

    async def flush(self) -> None:
        """Wait until queued frames are written (only meaningful while CONNECTED)."""
        if self._queue and self._queue.is_running:
            await self._queue.join()

    async def close(self) -> None:
        """Close the socket, cancel timers and clear the subscription registry."""
        self._closing = True
        self._stop_heartbeat()
        if self._queue:
            await self._queue.stop()

        supervisor = self._supervisor
        self._supervisor = None
        if supervisor and supervisor is not asyncio.current_task():
            supervisor.cancel()
            try:
                await supervisor
            except asyncio.CancelledError:
                pass

        await self._close_socket()
        self.subscriptions.clear()
        self._set_state(ConnectionState.DISCONNECTED)

    async def wait_closed(self) -> None:
        """Wait until the reader stops (normal close or retries exhausted)."""
        if self._supervisor:
            try:
                await self._supervisor
            except asyncio.CancelledError:
                pass

    # =========================================================================
    # Socket Lifecycle
    # =========================================================================

    async def _open(self) -> None:
        """Open a socket, send the heartbeat and init frames, start the heartbeat."""
        if self._credential is None:
            raise StateError("No credential to authenticate the socket")
        try:
            self._socket = await self._socket_factory(self.url)
        except Exception as e:
            raise ConnectionLostError(f"Could not open socket: {close_reason(e)}") from e

        logger.info(f"Socket open for account {self.account_id}")
        try:
            await self._send_raw(self._builder.create_get_clock().to_wire())
            await self._send_raw(self._builder.create_init_connection(self._credential.token).to_wire())
        except Exception as e:
            await self._close_socket()
            raise ConnectionLostError(f"Could not send init frame: {close_reason(e)}") from e
        self._start_heartbeat()

    async def _supervise(self) -> None:
        """Read until the socket ends; reconnect on abnormal loss."""
        while True:
            reason = await self._read()
            await self._drop_socket()
            if self._closing or reason is None:
                logger.info("Socket closed")
                self._set_state(ConnectionState.DISCONNECTED)
                return
            logger.warning(f"Socket lost: {reason}")
            if not await self._reconnect(reason):
                return

    async def _read(self) -> str | None:
        """
        Dispatch inbound frames until the socket ends.

        Returns:
            None for a normal close, otherwise the loss reason
        """
        socket = self._socket
        if socket is None:
            return "no socket"
        try:
            async for raw in socket:
                await self._dispatch(raw)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return close_reason(e)
        return None

    async def _reconnect(self, reason: str) -> bool:
        """
        Retry within the budget.

        Returns:
            True if a socket was reopened, False if retries are exhausted
        """
        while self._attempts < self._retries and not self._closing:
            self._attempts += 1
            self._set_state(ConnectionState.CONNECTING)
            logger.info(f"Reconnect attempt {self._attempts}/{self._retries} in {self._retry_delay}s")
            await asyncio.sleep(self._retry_delay)
            if self._closing:
                return False
            try:
                if INVALID_TOKEN_REASON in reason.lower() and self._credential_provider:
                    logger.info("Server rejected the identity token, resolving a fresh credential")
                    self._credential = await self._credential_provider(True)
                await self._open()
                return True
            except (AuthError, ConnectionLostError) as e:
                reason = str(e)
                logger.warning(f"Reconnect attempt {self._attempts} failed: {reason}")

        if self._closing:
            return False
        logger.error(f"Giving up on socket after {self._attempts} attempts: {reason}")
        if self._queue:
            await self._queue.stop()
        self.subscriptions.clear()
        self._set_state(ConnectionState.DISCONNECTED)
        if self._events:
            self._events.emit(
                EngineEventType.CONNECTION_FAILED,
                message="Connection lost, retries exhausted",
                account_id=self.account_id,
                reason=reason,
                attempts=self._attempts,
            )
        return False

    async def _drop_socket(self) -> None:
        self._stop_heartbeat()
        if self._queue:
            await self._queue.pause()
        await self._close_socket()
        self.subscriptions.clear()

    async def _close_socket(self) -> None:
        socket = self._socket
        self._socket = None
        if socket is None:
            return
        try:
            await socket.close()
        except Exception as e:
            logger.debug(f"Ignoring error while closing socket: {e}")

    # =========================================================================
    # Frames
    # =========================================================================

    async def _send_raw(self, text: str) -> None:
        if self._socket is None:
            raise ConnectionLostError("Socket is not open")
        await self._socket.send(text)

    async def _dispatch(self, raw: Any) -> None:
        try:
            frame = decode_frame(raw)
        except ProtocolError as e:
            logger.warning(f"Dropping frame: {e}")
            return

        if isinstance(frame, ResponseFrame):
            if frame.req_id == RequestId.INIT_CONNECTION.value and frame.ok:
                await self.mark_connected()
            elif frame.req_id == RequestId.SUBSCRIBE_EX_CONVERSATIONS.value and frame.ok:
                self.mark_subscribed()

        for handler in self._handlers:
            try:
                await handler(frame)
            except Exception as e:
                logger.error(f"Frame handler failed: {e}", exc_info=True)

    # =========================================================================
    # Heartbeat
    # =========================================================================

    def _start_heartbeat(self) -> None:
        self._stop_heartbeat()
        self._heartbeat = asyncio.create_task(self._heartbeat_loop(), name=f"heartbeat_{self.account_id}")

    def _stop_heartbeat(self) -> None:
        if self._heartbeat and self._heartbeat is not asyncio.current_task():
            self._heartbeat.cancel()
        self._heartbeat = None

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            try:
                await self._send_raw(self._builder.create_get_clock().to_wire())
            except Exception as e:
                logger.warning(f"Heartbeat failed: {e}")
                return
