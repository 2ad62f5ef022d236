"""
UMS Wire Frames

Every frame on the consumer socket is a JSON text frame of one of three kinds:
- req: {kind, id, type, body, headers?} sent by the client
- resp: {kind, reqId, code, type?, body} correlated to a prior request
- notification: {kind, type, body: {subscriptionId, sentTs, changes}} pushed by the server

Inbound frames are decoded once, at the transport boundary, into a tagged union:
responses and notifications are keyed by `type`, messaging events by their
`event.type`, and content events further by `contentType`. Downstream
components match on these classes instead of inspecting raw dicts.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from ums_client.errors import ProtocolError

logger = logging.getLogger(__name__)


# =============================================================================
# Protocol Constants
# =============================================================================

class FrameKind(str, Enum):
    """Frame kinds on the consumer socket."""
    REQUEST = "req"
    RESPONSE = "resp"
    NOTIFICATION = "notification"


class RequestId(str, Enum):
    """
    Well-known request ids.

    The server echoes a request's id as the response's reqId, so these
    double as the response correlation table.
    """
    GET_CLOCK = "100"
    INIT_CONNECTION = "101"
    GET_USER_PROFILE = "102"
    SUBSCRIBE_EX_CONVERSATIONS = "103"
    SUBSCRIBE_EX_CONVERSATIONS_SURVEYS = "104"
    SUBSCRIBE_MESSAGING_EVENTS = "105"
    STEP_UP_AUTHENTICATION = "107"
    SET_USER_PROFILE = "108"
    UPDATE_CONVERSATION_FIELD = "500"
    CLOSE_CONVERSATION = "501"
    CLOSE_DIALOG = "502"
    REQUEST_CONVERSATION = "511"
    PUBLISH_FILE = "519"
    REQUEST_FILE_UPLOAD = "1"


# Prefixes for request ids generated per request
CONSUMER_MESSAGE_PREFIX = "consumer_"
SECURE_FORM_SUBMIT_PREFIX = "secure-form-submit-"


class UmsType(str, Enum):
    """Frame `type` values."""
    # Requests
    GET_CLOCK = "GetClock"
    INIT_CONNECTION = "InitConnection"
    GET_USER_PROFILE = "userprofile.GetUserProfile"
    SET_USER_PROFILE = "userprofile.SetUserProfile"
    SUBSCRIBE_EX_CONVERSATIONS = "cqm.SubscribeExConversations"
    SUBSCRIBE_MESSAGING_EVENTS = "ms.SubscribeMessagingEvents"
    UPDATE_CONVERSATION_FIELD = "cm.UpdateConversationField"
    REQUEST_CONVERSATION = "cm.ConsumerRequestConversation"
    PUBLISH_EVENT = "ms.PublishEvent"
    GENERATE_UPLOAD_TOKEN = "ms.GenerateUploadToken"
    GENERATE_URL_FOR_UPLOAD_FILE = "ms.GenerateURLForUploadFile"

    # Server pushes and typed responses
    CONVERSATION_CHANGE_NOTIFICATION = "cqm.ExConversationChangeNotification"
    MESSAGING_EVENT_NOTIFICATION = "ms.MessagingEventNotification"
    UPLOAD_TOKEN_RESPONSE = "ms.UploadTokenResponse"
    FILE_UPLOAD_RESPONSE = "ms.GenerateURLResponse"


class EventKind(str, Enum):
    """Messaging event discriminator (`event.type`)."""
    CONTENT = "ContentEvent"
    ACCEPT_STATUS = "AcceptStatusEvent"
    RICH_CONTENT = "RichContentEvent"
    CHAT_STATE = "ChatStateEvent"


class ContentType(str, Enum):
    """Content event discriminator (`event.contentType`)."""
    TEXT = "text/plain"
    SECURE_FORM_INVITATION = "forms/secure-invitation"
    SECURE_FORM_SUBMISSION = "forms/secure-submission"
    HOSTED_FILE = "hosted/file"


class ParticipantRole(str, Enum):
    """Conversation participant roles."""
    CONSUMER = "CONSUMER"
    ASSIGNED_AGENT = "ASSIGNED_AGENT"
    MANAGER = "MANAGER"
    CONTROLLER = "CONTROLLER"
    READER = "READER"


class Stage(str, Enum):
    """Conversation stages (also used for dialog states)."""
    OPEN = "OPEN"
    CLOSE = "CLOSE"
    LOCKED = "LOCKED"


class DialogType(str, Enum):
    """Dialog types the engine distinguishes."""
    MAIN = "MAIN"
    POST_SURVEY = "POST_SURVEY"
    OTHER = "OTHER"


class ChannelType(str, Enum):
    """Dialog channel types."""
    MESSAGING = "MESSAGING"
    COBROWSE = "COBROWSE"
    VIDEO_CALL = "VIDEO_CALL"
    VOICE_CALL = "VOICE_CALL"


class MessageStatus(str, Enum):
    """Delivery status of a published message."""
    PENDING = "PENDING"
    SENT = "SENT"
    ACCEPT = "ACCEPT"
    READ = "READ"


class Audience(str, Enum):
    """Message audience."""
    ALL = "ALL"
    AGENTS_AND_MANAGERS = "AGENTS_AND_MANAGERS"


# =============================================================================
# Messaging Events
# =============================================================================

class _WireModel(BaseModel):
    """Base for inbound models: camelCase aliases, unknown keys kept."""

    class Config:
        populate_by_name = True
        extra = "allow"


class OriginatorMetadata(_WireModel):
    """Who produced a messaging event."""
    id: str = Field(default="", description="Participant id")
    role: str = Field(default="", description="Participant role")


class SecureFormMessage(_WireModel):
    """Message body of a secure form invitation or submission."""
    invitation_id: str = Field(..., alias="invitationId")
    form_id: str | None = Field(default=None, alias="formId")
    title: str | None = Field(default=None)
    submission_id: str | None = Field(default=None, alias="submissionId")


class HostedFileMessage(_WireModel):
    """Message body of a hosted file share."""
    relative_path: str = Field(..., alias="relativePath")
    caption: str | None = Field(default=None)
    file_type: str | None = Field(default=None, alias="fileType")
    preview: str | None = Field(default=None)


class ContentEvent(_WireModel):
    """Plain text, secure form or file content."""
    type: Literal["ContentEvent"] = "ContentEvent"
    content_type: str = Field(default=ContentType.TEXT.value, alias="contentType")
    message: Any = Field(default=None, description="Text, or a structured body keyed by contentType")
    quick_replies: dict[str, Any] | None = Field(default=None, alias="quickReplies")

    @model_validator(mode="after")
    def _parse_message(self) -> "ContentEvent":
        if not isinstance(self.message, dict):
            return self
        if self.content_type in (
            ContentType.SECURE_FORM_INVITATION.value,
            ContentType.SECURE_FORM_SUBMISSION.value,
        ):
            self.message = SecureFormMessage.model_validate(self.message)
        elif self.content_type == ContentType.HOSTED_FILE.value or "relativePath" in self.message:
            self.message = HostedFileMessage.model_validate(self.message)
        return self

    @property
    def text(self) -> str:
        if isinstance(self.message, str):
            return self.message
        if isinstance(self.message, HostedFileMessage):
            return self.message.caption or ""
        return "" if self.message is None else str(self.message)


class RichContentEvent(_WireModel):
    """Structured card content."""
    type: Literal["RichContentEvent"] = "RichContentEvent"
    content: dict[str, Any] = Field(default_factory=dict)
    quick_replies: dict[str, Any] | None = Field(default=None, alias="quickReplies")


class AcceptStatusEvent(_WireModel):
    """Delivery status update for previously published sequences."""
    type: Literal["AcceptStatusEvent"] = "AcceptStatusEvent"
    status: str
    sequence_list: list[int] = Field(default_factory=list, alias="sequenceList")


class ChatStateEvent(_WireModel):
    """Typing indicator."""
    type: Literal["ChatStateEvent"] = "ChatStateEvent"
    chat_state: str | None = Field(default=None, alias="chatState")


class UnknownEvent(_WireModel):
    """Any event type the engine does not recognize."""
    type: str = ""


EVENT_MODELS: dict[str, type[BaseModel]] = {
    EventKind.CONTENT.value: ContentEvent,
    EventKind.RICH_CONTENT.value: RichContentEvent,
    EventKind.ACCEPT_STATUS.value: AcceptStatusEvent,
    EventKind.CHAT_STATE.value: ChatStateEvent,
}

AnyEvent = Union[ContentEvent, RichContentEvent, AcceptStatusEvent, ChatStateEvent, UnknownEvent]


class MessagingEvent(_WireModel):
    """One entry of a messaging event notification's `changes`."""
    sequence: int = Field(default=0)
    dialog_id: str = Field(default="", alias="dialogId")
    conversation_id: str | None = Field(default=None, alias="conversationId")
    originator_id: str = Field(default="", alias="originatorId")
    originator_metadata: OriginatorMetadata = Field(
        default_factory=OriginatorMetadata, alias="originatorMetadata"
    )
    server_timestamp: int = Field(default=0, alias="serverTimestamp")
    message_audience: str = Field(default=Audience.ALL.value, alias="messageAudience")
    metadata: list[Any] | None = Field(default=None)
    event: AnyEvent

    @field_validator("event", mode="before")
    @classmethod
    def _select_event_model(cls, value: Any) -> Any:
        if isinstance(value, dict):
            model = EVENT_MODELS.get(value.get("type", ""), UnknownEvent)
            return model.model_validate(value)
        return value

    @property
    def role(self) -> str:
        return self.originator_metadata.role

    @property
    def is_agent(self) -> bool:
        return self.originator_metadata.role == ParticipantRole.ASSIGNED_AGENT.value


# =============================================================================
# Conversation Changes
# =============================================================================

class DialogDetails(_WireModel):
    """A dialog as reported in a conversation change."""
    dialog_id: str = Field(..., alias="dialogId")
    dialog_type: str = Field(default=DialogType.MAIN.value, alias="dialogType")
    channel_type: str = Field(default=ChannelType.MESSAGING.value, alias="channelType")
    state: str = Field(default=Stage.OPEN.value)
    meta_data: dict[str, Any] | None = Field(default=None, alias="metaData")

    @property
    def is_open(self) -> bool:
        return self.state == Stage.OPEN.value

    @property
    def is_other(self) -> bool:
        return self.dialog_type.upper() == DialogType.OTHER.value

    @property
    def is_post_survey(self) -> bool:
        return self.dialog_type == DialogType.POST_SURVEY.value


class ParticipantDetails(_WireModel):
    """A participant as reported in a conversation change."""
    id: str
    role: str


class ConversationDetails(_WireModel):
    stage: str | None = Field(default=None)
    dialogs: list[DialogDetails] = Field(default_factory=list)
    participants: list[ParticipantDetails] = Field(default_factory=list)


class ConversationResult(_WireModel):
    conv_id: str | None = Field(default=None, alias="convId")
    conversation_details: ConversationDetails | None = Field(default=None, alias="conversationDetails")


class ConversationChange(_WireModel):
    """One entry of a conversation change notification's `changes`."""
    type: str | None = Field(default=None)
    result: ConversationResult | None = Field(default=None)

    @property
    def stage(self) -> str | None:
        if self.result and self.result.conversation_details:
            return self.result.conversation_details.stage
        return None


# =============================================================================
# Frames
# =============================================================================

class RequestFrame(BaseModel):
    """Outbound request frame."""
    kind: Literal["req"] = "req"
    id: str | int = Field(..., description="Request id, echoed back as reqId")
    type: str = Field(..., description="Request type")
    body: dict[str, Any] = Field(default_factory=dict)
    headers: list[dict[str, Any]] | None = Field(default=None)

    def to_wire(self) -> str:
        """Serialize for the socket."""
        data = self.model_dump()
        if self.headers is None:
            data.pop("headers")
        return json.dumps(data)


class ResponseFrame(_WireModel):
    """Response correlated to a prior request."""
    kind: Literal["resp"] = "resp"
    req_id: str | None = Field(default=None, alias="reqId")
    code: int | None = Field(default=None)
    type: str | None = Field(default=None)
    body: Any = Field(default=None)

    @field_validator("req_id", mode="before")
    @classmethod
    def _normalize_req_id(cls, value: Any) -> Any:
        if value is None:
            return None
        return str(value).rstrip(",")

    @property
    def ok(self) -> bool:
        return self.code == 200


class OneTimeKeys(_WireModel):
    read_otk: str = Field(..., alias="readOtk")
    write_otk: str = Field(..., alias="writeOtk")


class UploadTokenBody(_WireModel):
    token: OneTimeKeys


class UploadTokenResponse(ResponseFrame):
    """Secure form upload token; reqId carries the invitation id."""
    body: UploadTokenBody


class FileUploadUrlBody(_WireModel):
    relative_path: str = Field(default="", alias="relativePath")
    query_params: dict[str, Any] = Field(default_factory=dict, alias="queryParams")


class FileUploadUrlResponse(ResponseFrame):
    """Signed URL for a pending file upload."""
    body: FileUploadUrlBody


class NotificationBody(_WireModel):
    subscription_id: str | None = Field(default=None, alias="subscriptionId")
    sent_ts: int | None = Field(default=None, alias="sentTs")
    changes: list[Any] = Field(default_factory=list)


class NotificationFrame(_WireModel):
    """Server push."""
    kind: Literal["notification"] = "notification"
    type: str
    body: NotificationBody = Field(default_factory=NotificationBody)


def validate_each(model: type[BaseModel], entries: Any, label: str) -> Any:
    """
    Validate notification changes one entry at a time.

    An invalid entry is logged and skipped so the rest of the batch still
    reaches the processor in order. A non-list is returned untouched and
    fails the enclosing field's own validation.
    """
    if not isinstance(entries, list):
        return entries
    valid = []
    for index, entry in enumerate(entries):
        try:
            valid.append(model.model_validate(entry))
        except ValidationError as e:
            error = ProtocolError(f"Invalid {label} change at index {index}: {e}")
            logger.warning(f"Skipping change: {error}")
    return valid


class ConversationChangeBody(NotificationBody):
    changes: list[ConversationChange] = Field(default_factory=list)

    @field_validator("changes", mode="before")
    @classmethod
    def _validate_changes(cls, value: Any) -> Any:
        return validate_each(ConversationChange, value, "conversation")


class ConversationChangeNotification(NotificationFrame):
    body: ConversationChangeBody = Field(default_factory=ConversationChangeBody)

    def find_open_change(self) -> ConversationChange | None:
        """Last change whose conversation stage is OPEN, if any."""
        found = None
        for change in self.body.changes:
            if change.stage == Stage.OPEN.value:
                found = change
        return found


class MessagingEventBody(NotificationBody):
    changes: list[MessagingEvent] = Field(default_factory=list)

    @field_validator("changes", mode="before")
    @classmethod
    def _validate_changes(cls, value: Any) -> Any:
        return validate_each(MessagingEvent, value, "messaging event")


class MessagingEventNotification(NotificationFrame):
    body: MessagingEventBody = Field(default_factory=MessagingEventBody)


Frame = Union[ResponseFrame, NotificationFrame]

RESPONSE_MODELS: dict[str, type[ResponseFrame]] = {
    UmsType.UPLOAD_TOKEN_RESPONSE.value: UploadTokenResponse,
    UmsType.FILE_UPLOAD_RESPONSE.value: FileUploadUrlResponse,
}

NOTIFICATION_MODELS: dict[str, type[NotificationFrame]] = {
    UmsType.CONVERSATION_CHANGE_NOTIFICATION.value: ConversationChangeNotification,
    UmsType.MESSAGING_EVENT_NOTIFICATION.value: MessagingEventNotification,
}


def decode_frame(raw: str | bytes | dict[str, Any]) -> Frame:
    """
    Decode an inbound socket frame into its tagged model.

    Args:
        raw: JSON text, bytes, or an already-parsed dict

    Returns:
        A ResponseFrame (or typed subclass) or NotificationFrame subclass

    Raises:
        ProtocolError: If the frame is not JSON, has an unknown kind or
            notification type, or fails validation
    """
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise ProtocolError(f"Frame is not valid JSON: {e}") from e
    else:
        data = raw

    if not isinstance(data, dict):
        raise ProtocolError(f"Frame must be a JSON object, got {type(data).__name__}")

    kind = data.get("kind")
    try:
        if kind == FrameKind.RESPONSE.value:
            model = RESPONSE_MODELS.get(data.get("type") or "", ResponseFrame)
            return model.model_validate(data)
        if kind == FrameKind.NOTIFICATION.value:
            notification_model = NOTIFICATION_MODELS.get(data.get("type") or "")
            if notification_model is None:
                raise ProtocolError(f"Unknown notification type: {data.get('type')}")
            return notification_model.model_validate(data)
    except ValidationError as e:
        raise ProtocolError(f"Invalid {kind} frame ({data.get('type')}): {e}") from e

    raise ProtocolError(f"Unknown frame kind: {kind}")
