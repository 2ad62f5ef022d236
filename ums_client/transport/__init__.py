# Transport Layer
# Consumer socket lifecycle, outbound queue and subscription bookkeeping

from ums_client.transport.connection import (
    ConnectionManager,
    ConnectionState,
    Socket,
    SocketFactory,
    CredentialProvider,
    FrameHandler,
    INVALID_TOKEN_REASON,
    open_websocket,
)
from ums_client.transport.queue import OutboundQueue, QueueFullError
from ums_client.transport.subscriptions import (
    SubscriptionRegistry,
    CONVERSATIONS_KEY,
    dialog_key,
    survey_key,
)

__all__ = [
    "ConnectionManager",
    "ConnectionState",
    "Socket",
    "SocketFactory",
    "CredentialProvider",
    "FrameHandler",
    "INVALID_TOKEN_REASON",
    "open_websocket",
    "OutboundQueue",
    "QueueFullError",
    "SubscriptionRegistry",
    "CONVERSATIONS_KEY",
    "dialog_key",
    "survey_key",
]
