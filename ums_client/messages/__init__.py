# Message Timeline
# Deduplicated conversation timeline and its grouped bubble view

from ums_client.messages.models import (
    ClientMessage,
    Bubble,
    MessageType,
    message_uid,
    short_uid,
    now_ms,
)
from ums_client.messages.store import (
    MessageStore,
    ReadReceiptSender,
    group,
    md_to_link,
    n_to_br,
)

__all__ = [
    "ClientMessage",
    "Bubble",
    "MessageType",
    "message_uid",
    "short_uid",
    "now_ms",
    "MessageStore",
    "ReadReceiptSender",
    "group",
    "md_to_link",
    "n_to_br",
]
