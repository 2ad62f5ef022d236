"""
Script Playback

Replays a list of scripted consumer lines against a live agent. The first
line is sent immediately; every later line waits for an agent reply and
then a countdown, restarted by each further agent message.
"""

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class ScriptRunner:
    """Scripted consumer lines paced by agent replies."""

    def __init__(self, send: Callable[[str], Awaitable[None]], interval: float = 3.0):
        """
        Args:
            send: Sends one consumer line
            interval: Countdown in seconds after the latest agent message
        """
        self._send = send
        self.interval = interval
        self._lines: list[str] = []
        self._index = 0
        self._timer: asyncio.Task | None = None

    @property
    def index(self) -> int:
        """Number of lines sent so far."""
        return self._index

    @property
    def remaining(self) -> int:
        return max(len(self._lines) - self._index, 0)

    @property
    def is_running(self) -> bool:
        return self.remaining > 0

    async def run(self, lines: list[str]) -> None:
        """Start a script, replacing any script in progress."""
        self.stop()
        self._lines = [line for line in lines if line]
        if not self._lines:
            return
        logger.info(f"Running script with {len(self._lines)} lines")
        await self._send_next()

    def on_agent_message(self) -> None:
        """Restart the countdown to the next line."""
        if not self.is_running:
            return
        if self._timer:
            self._timer.cancel()
        self._timer = asyncio.create_task(self._countdown(), name="script_countdown")

    def stop(self) -> None:
        if self._timer and self._timer is not asyncio.current_task():
            self._timer.cancel()
        self._timer = None
        self._lines = []
        self._index = 0

    async def wait(self) -> None:
        """Wait for the pending countdown, if any."""
        if self._timer:
            try:
                await self._timer
            except asyncio.CancelledError:
                pass

    async def _countdown(self) -> None:
        await asyncio.sleep(self.interval)
        try:
            await self._send_next()
        except Exception as e:
            logger.error(f"Script line failed: {e}")
            self.stop()

    async def _send_next(self) -> None:
        if not self.is_running:
            return
        line = self._lines[self._index]
        self._index += 1
        await self._send(line)
        if not self.is_running:
            logger.info("Script finished")
