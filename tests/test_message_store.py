"""Tests for MessageStore and timeline grouping."""

from unittest.mock import AsyncMock

import pytest

from ums_client.events import EngineEventType, EventStream
from ums_client.messages.models import ClientMessage, MessageType, message_uid
from ums_client.messages.store import MessageStore, group, md_to_link


def text(sequence: int, originator: str, body: str = "hi", dialog_id: str = "D1") -> ClientMessage:
    return ClientMessage(
        uid=message_uid(sequence, dialog_id),
        sequence=sequence,
        dialog_id=dialog_id,
        originator_id=originator,
        is_agent=originator.startswith("agent"),
        text=body,
    )


# =============================================================================
# Append
# =============================================================================


class TestAppend:
    """Idempotent, ordered storage."""

    @pytest.mark.asyncio
    async def test_duplicate_uid_is_stored_once(self) -> None:
        store = MessageStore()

        assert await store.append(text(1, "agent-1"))
        assert not await store.append(text(1, "agent-1", body="again"))

        assert len(store) == 1
        assert store.messages[0].text == "hi"
        assert message_uid(1, "D1") in store

    @pytest.mark.asyncio
    async def test_order_is_preserved(self) -> None:
        store = MessageStore()
        for sequence in (3, 1, 2):
            await store.append(text(sequence, "agent-1", body=str(sequence)))

        assert [m.text for m in store.messages] == ["3", "1", "2"]

    @pytest.mark.asyncio
    async def test_markdown_marker_becomes_link(self) -> None:
        store = MessageStore()

        await store.append(text(1, "agent-1", body="#md#see [docs](https://example.com)"))

        assert store.messages[0].text == 'see <a href="https://example.com" target="_blank">docs</a>'

    @pytest.mark.asyncio
    async def test_changes_are_announced(self) -> None:
        events = EventStream()
        changes = events.subscribe("changes")
        store = MessageStore(events=events)

        await store.append(text(1, "agent-1"))
        store.reset()

        counts = []
        while (event := changes.get_nowait()) is not None:
            assert event.event_type == EngineEventType.MESSAGES_CHANGED
            counts.append(event.data["count"])
        assert counts == [1, 0]

    @pytest.mark.asyncio
    async def test_reset_allows_same_uid_again(self) -> None:
        store = MessageStore()
        await store.append(text(1, "agent-1"))

        store.reset()

        assert len(store) == 0
        assert await store.append(text(1, "agent-1"))


# =============================================================================
# Read Receipts & Status
# =============================================================================


class TestReadReceipts:
    """Receipts for entries arriving while the view is focused."""

    @pytest.mark.asyncio
    async def test_focused_view_sends_receipt(self) -> None:
        sender = AsyncMock()
        store = MessageStore(read_receipt_sender=sender)
        store.set_view(True)

        await store.append(text(7, "agent-1"))

        sender.assert_awaited_once_with("D1", [7])

    @pytest.mark.asyncio
    async def test_hidden_or_minimized_view_sends_nothing(self) -> None:
        sender = AsyncMock()
        store = MessageStore(read_receipt_sender=sender)

        await store.append(text(1, "agent-1"))
        store.set_view(True, minimized=True)
        await store.append(text(2, "agent-1"))

        sender.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_local_entries_send_nothing(self) -> None:
        sender = AsyncMock()
        store = MessageStore(read_receipt_sender=sender)
        store.set_view(True)

        await store.append(ClientMessage(type=MessageType.COBROWSE_ENDED.value, text="ended"))

        sender.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_update_status_by_sequence(self) -> None:
        store = MessageStore()
        await store.append(text(1, "consumer-1"))
        await store.append(text(2, "consumer-1"))
        await store.append(text(3, "consumer-1", dialog_id="D2"))

        assert store.update_status([1, 3], "READ") == 2
        assert store.update_status([3], "ACCEPT", dialog_id="D1") == 0

        assert [m.status for m in store.messages] == ["READ", "SENT", "READ"]


# =============================================================================
# Grouping
# =============================================================================


class TestGrouping:
    """Bubbles from consecutive text by the same originator."""

    def test_consecutive_text_merges(self) -> None:
        bubbles = group([text(1, "A", "one"), text(2, "A", "two"), text(3, "B", "three")])

        assert [b.lines for b in bubbles] == [["one", "two"], ["three"]]
        assert bubbles[0].uid == message_uid(1, "D1")

    def test_non_text_never_merges(self) -> None:
        file_message = text(2, "A", "a.png")
        file_message.type = MessageType.FILE.value

        bubbles = group([text(1, "A"), file_message, text(3, "A")])

        assert [b.type for b in bubbles] == ["text", "file", "text"]

    def test_grouping_disabled(self) -> None:
        bubbles = group([text(1, "A"), text(2, "A")], group_messages=False)

        assert len(bubbles) == 2

    def test_grouping_is_a_pure_view(self) -> None:
        messages = [text(1, "A", "one"), text(2, "A", "two")]

        first = group(messages)
        second = group(messages)

        assert [b.lines for b in first] == [b.lines for b in second] == [["one", "two"]]
        assert [m.text for m in messages] == ["one", "two"]

    def test_newlines_become_breaks(self) -> None:
        bubbles = group([text(1, "A", "a\nb")])

        assert bubbles[0].lines == ["a<br />b"]

    def test_md_to_link(self) -> None:
        assert md_to_link("[x](http://y)\nz") == '<a href="http://y" target="_blank">x</a><br />z'
