"""
Session State Models

- Session: anonymous tracking identity, created once and persisted
- Participant: a conversation participant merged with directory data
- ConversationState: the single owner of conversation, dialog and
  participant state, mutated only by the EventProcessor and the orchestrator
"""

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field

from ums_client.protocol.frames import DialogDetails, ParticipantRole, Stage


class Session(BaseModel):
    """Tracking identity; immutable once set."""
    visitor_id: str = Field(..., description="Anonymous visitor id")
    session_id: str = Field(..., description="Tracking session id")

    class Config:
        frozen = True


class Participant(BaseModel):
    """Participant identity with display data from the user directory."""
    id: str
    role: str
    nickname: str | None = None
    picture_url: str | None = None
    full_name: str | None = None

    class Config:
        extra = "allow"


@dataclass
class ConversationState:
    """
    Conversation, dialog and participant state.

    At most one conversation exists per session. A conversation exists from
    the change that reports it OPEN until a change reports none open or the
    consumer closes it.
    """
    conversation_id: str | None = None
    last_conversation_id: str | None = None
    stage: str | None = None
    dialog: DialogDetails | None = None
    participants: dict[str, Participant] = field(default_factory=dict)
    consumer_id: str | None = None
    agent_id: str | None = None
    agent_chat_state: str | None = None
    is_subscribed: bool = False
    show_window: bool = False
    first_message: str | None = None
    first_message_due: bool = False

    @property
    def is_open(self) -> bool:
        return self.stage == Stage.OPEN.value

    @property
    def dialog_id(self) -> str | None:
        return self.dialog.dialog_id if self.dialog else None

    @property
    def is_post_survey(self) -> bool:
        return self.dialog is not None and self.dialog.is_post_survey

    @property
    def agent(self) -> Participant | None:
        return self.participants.get(ParticipantRole.ASSIGNED_AGENT.value)

    def reset(self) -> None:
        """Forget the conversation; identity and pending input survive."""
        self.conversation_id = None
        self.stage = None
        self.dialog = None
        self.participants = {}
        self.agent_chat_state = None

    def snapshot(self) -> dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "last_conversation_id": self.last_conversation_id,
            "stage": self.stage,
            "dialog_id": self.dialog_id,
            "participants": {role: p.id for role, p in self.participants.items()},
            "consumer_id": self.consumer_id,
            "is_subscribed": self.is_subscribed,
            "show_window": self.show_window,
        }
