"""
Engine Event Models

Notifications the session engine publishes for the embedding UI. A UI
renders the transcript from MESSAGES_CHANGED, shows the socket banner
from CONNECTION_STATE / CONNECTION_FAILED, and hands COBROWSE_SIGNAL
payloads to whatever co-browse client it embeds.

Events are immutable and carry the account id plus, when one exists,
the conversation id they concern.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class EngineEventType(str, Enum):
    """
    Categories of engine events.

    Grouped by concern:
    - connection.* - Socket lifecycle
    - conversation.* - Conversation/dialog lifecycle
    - messages.* - Timeline changes
    - session.* - Subscription and visibility
    - agent.* - Agent activity
    - cobrowse.* - Co-browse sub-sessions
    """
    # Connection
    CONNECTION_STATE = "connection.state"
    CONNECTION_FAILED = "connection.failed"

    # Conversation
    CONVERSATION_OPENED = "conversation.opened"
    CONVERSATION_CLOSED = "conversation.closed"

    # Timeline
    MESSAGES_CHANGED = "messages.changed"

    # Session
    SESSION_SUBSCRIBED = "session.subscribed"
    SESSION_REVEALED = "session.revealed"

    # Agent
    AGENT_TYPING = "agent.typing"

    # Co-browse
    COBROWSE_OFFERED = "cobrowse.offered"
    COBROWSE_ACCEPTED = "cobrowse.accepted"
    COBROWSE_DECLINED = "cobrowse.declined"
    COBROWSE_ENDED = "cobrowse.ended"
    COBROWSE_SIGNAL = "cobrowse.signal"


class EngineEvent(BaseModel):
    """
    A single engine notification.

    Provides identification, timing and correlation fields.
    """
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    event_type: EngineEventType = Field(
        ...,
        description="Type/category of the event"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred"
    )
    account_id: str | None = Field(
        default=None,
        description="Account the engine is connected to"
    )
    conversation_id: str | None = Field(
        default=None,
        description="Conversation the event belongs to (if any)"
    )
    message: str = Field(
        default="",
        description="Human-readable event description"
    )
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="Event-specific structured data"
    )
