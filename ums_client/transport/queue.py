"""
Outbound Frame Queue

Serializes request frames onto the consumer socket.

The queue accepts frames as soon as a connection attempt starts, but the
writer only runs while the connection is CONNECTED. A frame leaves the
queue once the socket write succeeds; if the write fails the frame stays
at the head and goes out first after the next CONNECTED.
"""

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable

from ums_client.errors import UmsClientError

logger = logging.getLogger(__name__)


class QueueFullError(UmsClientError):
    """Too many frames waiting for the socket."""
    def __init__(self, conn_id: str, queue_size: int):
        self.conn_id = conn_id
        self.queue_size = queue_size
        super().__init__(f"Outbound queue full for {conn_id} ({queue_size} frames waiting)")


class OutboundQueue:
    """
    Frames waiting for one consumer socket.

    start() / pause() follow the connection state; stop() is terminal.
    """

    def __init__(
        self,
        conn_id: str,
        send_fn: Callable[[str], Awaitable[None]],
        max_size: int = 200
    ):
        self.conn_id = conn_id
        self._send_fn = send_fn
        self._max_size = max_size
        self._frames: deque[str] = deque()
        self._wakeup = asyncio.Event()
        # Set while the queue is empty or the writer is not running
        self._settled = asyncio.Event()
        self._settled.set()
        self._writer: asyncio.Task | None = None
        self._closed = False

    @property
    def is_running(self) -> bool:
        return self._writer is not None and not self._writer.done()

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def qsize(self) -> int:
        return len(self._frames)

    @property
    def is_full(self) -> bool:
        return len(self._frames) >= self._max_size

    def put_nowait(self, frame: str) -> None:
        """
        Raises:
            QueueFullError: If max_size frames are already waiting
            RuntimeError: After stop()
        """
        if self._closed:
            raise RuntimeError(f"Outbound queue for {self.conn_id} is closed")
        if self.is_full:
            raise QueueFullError(self.conn_id, self._max_size)
        self._frames.append(frame)
        self._settled.clear()
        self._wakeup.set()

    async def start(self) -> None:
        """Run the writer; a no-op if it is already running."""
        if self._closed:
            raise RuntimeError(f"Outbound queue for {self.conn_id} is closed")
        if self.is_running:
            return
        if self._frames:
            self._settled.clear()
        self._writer = asyncio.create_task(self._write_frames(), name=f"outbound_{self.conn_id}")

    async def pause(self) -> None:
        """Stop writing; waiting frames are kept."""
        writer, self._writer = self._writer, None
        if writer is None:
            return
        writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            pass

    async def stop(self) -> None:
        """Stop writing for good and discard waiting frames."""
        self._closed = True
        await self.pause()
        if self._frames:
            logger.info(f"Discarding {len(self._frames)} unsent frames for {self.conn_id}")
            self._frames.clear()
        self._settled.set()

    async def join(self) -> None:
        """Wait until the queue is empty, or until the writer stops."""
        if self._frames and self.is_running:
            await self._settled.wait()

    async def _write_frames(self) -> None:
        try:
            while True:
                if not self._frames:
                    self._wakeup.clear()
                    self._settled.set()
                    await self._wakeup.wait()
                    continue

                try:
                    await self._send_fn(self._frames[0])
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    # The reader sees the dead socket and drives the reconnect
                    logger.warning(f"Socket write failed for {self.conn_id}, holding {len(self._frames)} frames: {e}")
                    return

                if self._frames:
                    self._frames.popleft()
        finally:
            self._settled.set()
