"""Tests for OutboundQueue and SubscriptionRegistry."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from ums_client.transport.queue import OutboundQueue, QueueFullError
from ums_client.transport.subscriptions import (
    CONVERSATIONS_KEY,
    SubscriptionRegistry,
    dialog_key,
    survey_key,
)


class TestOutboundQueue:
    """Single-writer draining, pause and backpressure."""

    @pytest.mark.asyncio
    async def test_frames_wait_until_started(self) -> None:
        send = AsyncMock()
        queue = OutboundQueue("conn-1", send)

        queue.put_nowait("a")
        queue.put_nowait("b")
        await asyncio.sleep(0)
        send.assert_not_awaited()

        await queue.start()
        await queue.join()

        assert [call.args[0] for call in send.await_args_list] == ["a", "b"]
        await queue.stop()

    @pytest.mark.asyncio
    async def test_pause_keeps_frames(self) -> None:
        send = AsyncMock()
        queue = OutboundQueue("conn-1", send)
        await queue.start()
        await queue.pause()

        queue.put_nowait("a")
        assert queue.qsize == 1

        await queue.start()
        await queue.join()
        send.assert_awaited_once_with("a")
        await queue.stop()

    @pytest.mark.asyncio
    async def test_backpressure(self) -> None:
        queue = OutboundQueue("conn-1", AsyncMock(), max_size=1)
        queue.put_nowait("a")

        with pytest.raises(QueueFullError) as exc_info:
            queue.put_nowait("b")

        assert exc_info.value.queue_size == 1
        assert queue.is_full

    @pytest.mark.asyncio
    async def test_stop_discards_and_closes(self) -> None:
        send = AsyncMock()
        queue = OutboundQueue("conn-1", send)
        queue.put_nowait("a")

        await queue.stop()

        assert queue.is_closed
        assert queue.qsize == 0
        send.assert_not_awaited()
        with pytest.raises(RuntimeError):
            queue.put_nowait("b")

    @pytest.mark.asyncio
    async def test_failed_write_keeps_frame_for_next_start(self) -> None:
        send = AsyncMock(side_effect=[ConnectionError("gone"), None, None])
        queue = OutboundQueue("conn-1", send)
        queue.put_nowait("a")
        queue.put_nowait("b")

        await queue.start()
        await queue.join()
        await asyncio.sleep(0.01)

        assert not queue.is_running
        assert queue.qsize == 2

        await queue.start()
        await queue.join()

        assert [call.args[0] for call in send.await_args_list] == ["a", "a", "b"]
        assert queue.qsize == 0
        await queue.stop()


class TestSubscriptionRegistry:
    """Per-socket subscription keys."""

    def test_add_is_idempotent(self) -> None:
        registry = SubscriptionRegistry()

        assert registry.add(CONVERSATIONS_KEY)
        assert not registry.add(CONVERSATIONS_KEY)
        assert registry.add(dialog_key("D1"))
        assert registry.add(survey_key("D1"))
        assert len(registry) == 3

    def test_clear(self) -> None:
        registry = SubscriptionRegistry()
        registry.add(dialog_key("D1"))

        registry.clear()

        assert dialog_key("D1") not in registry
        assert registry.add(dialog_key("D1"))
