"""
Timeline Models

ClientMessage is one entry of the conversation timeline, whether it came
from a messaging event or was synthesized locally (co-browse notices,
secure form prompts). Bubble is the grouped view entry the UI renders.
"""

import time
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from ums_client.protocol.frames import MessageStatus


class MessageType(str, Enum):
    """Timeline entry types."""
    TEXT = "text"
    FILE = "file"
    RICH_CONTENT = "rich_content"
    SECURE_FORM_REQUEST = "secure form request"
    COBROWSE_REQUEST = "cobrowse_request"
    COBROWSE_ACCEPTED = "cobrowse_accepted"
    COBROWSE_DECLINED = "cobrowse_declined"
    COBROWSE_ENDED = "cobrowse_ended"


def message_uid(sequence: int, dialog_id: str) -> str:
    """Stable uid for a server-sequenced message."""
    return f"{sequence}-{dialog_id}"


def short_uid() -> str:
    """Random uid for a locally synthesized entry."""
    return uuid4().hex[:12]


def now_ms() -> int:
    return int(time.time() * 1000)


class ClientMessage(BaseModel):
    """
    One timeline entry.

    Server-sequenced entries use uid "{sequence}-{dialog_id}", so the same
    event delivered twice maps to the same entry.
    """
    uid: str = Field(default_factory=short_uid, description="Idempotency key")
    sequence: int | None = Field(default=None)
    conversation_id: str | None = Field(default=None)
    dialog_id: str | None = Field(default=None)
    originator_id: str | None = Field(default=None)
    role: str | None = Field(default=None, description="Originator's participant role")
    sender: str | None = Field(default=None, description="Display name of the originator")
    is_agent: bool = Field(default=False)
    agent_id: str | None = Field(default=None)
    type: str = Field(default=MessageType.TEXT.value)
    status: str = Field(default=MessageStatus.SENT.value)
    text: str = Field(default="")
    content: dict[str, Any] | None = Field(default=None, description="Rich content card")
    quick_replies: list[Any] = Field(default_factory=list)
    metadata: list[Any] = Field(default_factory=list)
    server_timestamp: int = Field(default=0, description="Epoch ms")
    time_local: int = Field(default_factory=now_ms, description="Epoch ms")

    # Secure forms
    invitation_id: str | None = Field(default=None)
    form_id: str | None = Field(default=None)
    title: str | None = Field(default=None)
    url: str | None = Field(default=None)
    submitted: bool = Field(default=False)
    expired: bool = Field(default=False)

    # Hosted files
    relative_path: str | None = Field(default=None)
    caption: str | None = Field(default=None)
    file_type: str | None = Field(default=None)
    preview: str | None = Field(default=None)

    # Co-browse
    cobrowse_metadata: dict[str, Any] | None = Field(default=None)

    @property
    def is_text(self) -> bool:
        return self.type == MessageType.TEXT.value


class Bubble(BaseModel):
    """A grouped view entry: the head message plus its display lines."""
    message: ClientMessage
    lines: list[str] = Field(default_factory=list)

    @property
    def uid(self) -> str:
        return self.message.uid

    @property
    def originator_id(self) -> str | None:
        return self.message.originator_id

    @property
    def type(self) -> str:
        return self.message.type
