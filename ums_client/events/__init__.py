# Engine Events
# In-process pub/sub so the UI layer can observe engine state without polling

from ums_client.events.models import (
    EngineEventType,
    EngineEvent,
)
from ums_client.events.stream import (
    EventStream,
    EventSubscription,
    EventFilter,
    create_conversation_filter,
    create_cobrowse_filter,
    create_connection_filter,
    create_timeline_filter,
)

__all__ = [
    # Event Models
    "EngineEventType",
    "EngineEvent",
    # Event Stream
    "EventStream",
    "EventSubscription",
    "EventFilter",
    "create_conversation_filter",
    "create_cobrowse_filter",
    "create_connection_filter",
    "create_timeline_filter",
]
