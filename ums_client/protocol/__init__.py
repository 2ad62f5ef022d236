# UMS Protocol
# Wire frame models, tagged-union decoding and the injected frame builder

from ums_client.protocol.frames import (
    FrameKind,
    RequestId,
    UmsType,
    EventKind,
    ContentType,
    ParticipantRole,
    Stage,
    DialogType,
    ChannelType,
    MessageStatus,
    Audience,
    OriginatorMetadata,
    SecureFormMessage,
    HostedFileMessage,
    ContentEvent,
    RichContentEvent,
    AcceptStatusEvent,
    ChatStateEvent,
    UnknownEvent,
    MessagingEvent,
    DialogDetails,
    ParticipantDetails,
    ConversationDetails,
    ConversationChange,
    RequestFrame,
    ResponseFrame,
    UploadTokenResponse,
    FileUploadUrlBody,
    FileUploadUrlResponse,
    NotificationFrame,
    ConversationChangeNotification,
    MessagingEventNotification,
    Frame,
    decode_frame,
    CONSUMER_MESSAGE_PREFIX,
    SECURE_FORM_SUBMIT_PREFIX,
)
from ums_client.protocol.builder import FrameBuilder

__all__ = [
    # Constants
    "FrameKind",
    "RequestId",
    "UmsType",
    "EventKind",
    "ContentType",
    "ParticipantRole",
    "Stage",
    "DialogType",
    "ChannelType",
    "MessageStatus",
    "Audience",
    "CONSUMER_MESSAGE_PREFIX",
    "SECURE_FORM_SUBMIT_PREFIX",
    # Events
    "OriginatorMetadata",
    "SecureFormMessage",
    "HostedFileMessage",
    "ContentEvent",
    "RichContentEvent",
    "AcceptStatusEvent",
    "ChatStateEvent",
    "UnknownEvent",
    "MessagingEvent",
    "DialogDetails",
    "ParticipantDetails",
    "ConversationDetails",
    "ConversationChange",
    # Frames
    "RequestFrame",
    "ResponseFrame",
    "UploadTokenResponse",
    "FileUploadUrlBody",
    "FileUploadUrlResponse",
    "NotificationFrame",
    "ConversationChangeNotification",
    "MessagingEventNotification",
    "Frame",
    "decode_frame",
    # Builder
    "FrameBuilder",
]
