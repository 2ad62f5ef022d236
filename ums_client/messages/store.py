"""
Message Store

Ordered, uid-deduplicated conversation timeline.

- append() is idempotent on uid
- a new unread entry arriving while the view is focused triggers a read receipt
- group() is a pure view: consecutive text messages from the same
  originator merge into one bubble, anything else starts its own
"""

import logging
import re
from typing import Awaitable, Callable

from ums_client.events.models import EngineEventType
from ums_client.events.stream import EventStream
from ums_client.messages.models import Bubble, ClientMessage, MessageType
from ums_client.protocol.frames import MessageStatus

logger = logging.getLogger(__name__)


MARKDOWN_MARKER = "#md#"
_MARKDOWN_LINK = re.compile(r"\[(.*?)\]\((.*?)\)")

ReadReceiptSender = Callable[[str, list[int]], Awaitable[None]]


def n_to_br(text: str) -> str:
    """Newlines to <br /> for display."""
    return text.replace("\n", "<br />")


def md_to_link(text: str) -> str:
    """Markdown [label](url) links to anchors, newlines to <br />."""
    text = _MARKDOWN_LINK.sub(r'<a href="\2" target="_blank">\1</a>', text)
    return n_to_br(text)


def group(messages: list[ClientMessage], group_messages: bool = True) -> list[Bubble]:
    """
    Group a timeline into bubbles.

    Args:
        messages: Timeline in order
        group_messages: False yields one bubble per message

    Returns:
        New Bubble list; the input is not modified
    """
    bubbles: list[Bubble] = []
    for message in messages:
        line = n_to_br(message.text)
        if not message.is_text:
            bubbles.append(Bubble(message=message, lines=[line] if message.text else []))
            continue

        last = bubbles[-1] if bubbles else None
        if (
            group_messages
            and last is not None
            and last.type == MessageType.TEXT.value
            and last.originator_id == message.originator_id
        ):
            last.lines.append(line)
        else:
            bubbles.append(Bubble(message=message, lines=[line]))
    return bubbles


class MessageStore:
    """
    Conversation timeline.

    Attributes:
        group_messages: Merge adjacent text messages in group()
        visible: The chat view is shown
        minimized: The chat view is minimized
    """

    def __init__(
        self,
        read_receipt_sender: ReadReceiptSender | None = None,
        events: EventStream | None = None,
        group_messages: bool = True,
    ):
        """
        Initialize the store.

        Args:
            read_receipt_sender: Publishes a READ status for (dialog_id, sequences)
            events: Engine event stream for messages.changed notifications
            group_messages: Merge adjacent text messages in group()
        """
        self._read_receipt_sender = read_receipt_sender
        self._events = events
        self.group_messages = group_messages
        self.visible = False
        self.minimized = False
        self._messages: list[ClientMessage] = []
        self._uids: set[str] = set()

    @property
    def messages(self) -> list[ClientMessage]:
        return list(self._messages)

    @property
    def is_focused(self) -> bool:
        return self.visible and not self.minimized

    def __len__(self) -> int:
        return len(self._messages)

    def __contains__(self, uid: object) -> bool:
        return uid in self._uids

    async def append(self, message: ClientMessage) -> bool:
        """
        Add a message unless its uid is already stored.

        Returns:
            True if stored, False for a duplicate
        """
        if message.uid in self._uids:
            logger.debug(f"Ignoring duplicate message {message.uid}")
            return False

        if MARKDOWN_MARKER in message.text:
            message.text = md_to_link(message.text.replace(MARKDOWN_MARKER, ""))

        if (
            self.is_focused
            and message.status != MessageStatus.READ.value
            and message.sequence is not None
            and message.dialog_id
            and self._read_receipt_sender
        ):
            await self._read_receipt_sender(message.dialog_id, [message.sequence])

        self._messages.append(message)
        self._uids.add(message.uid)
        self._changed()
        return True

    def get(self, uid: str) -> ClientMessage | None:
        for message in self._messages:
            if message.uid == uid:
                return message
        return None

    def find_by_invitation(self, invitation_id: str) -> ClientMessage | None:
        for message in self._messages:
            if message.invitation_id == invitation_id:
                return message
        return None

    def update_status(self, sequence_list: list[int], status: str, dialog_id: str | None = None) -> int:
        """
        Set the delivery status of messages by sequence.

        Returns:
            Number of messages updated
        """
        sequences = set(sequence_list)
        updated = 0
        for message in self._messages:
            if message.sequence in sequences and (dialog_id is None or message.dialog_id == dialog_id):
                message.status = status
                updated += 1
        if updated:
            self._changed()
        return updated

    def touch(self) -> None:
        """Announce an in-place edit of a stored message."""
        self._changed()

    def reset(self) -> None:
        if not self._messages:
            return
        self._messages = []
        self._uids = set()
        self._changed()

    def set_view(self, visible: bool, minimized: bool = False) -> None:
        self.visible = visible
        self.minimized = minimized

    def group(self) -> list[Bubble]:
        return group(self._messages, self.group_messages)

    def _changed(self) -> None:
        if self._events:
            self._events.emit(
                EngineEventType.MESSAGES_CHANGED,
                message=f"{len(self._messages)} messages",
                count=len(self._messages),
            )
