# UMS Client - real-time conversational session engine
# Drives the consumer messaging socket: credentials, conversations, timeline,
# secure forms and co-browse negotiation

__version__ = "0.1.0"

# Re-export commonly used components for convenience
from ums_client.config import EngineSettings, settings_from_env, configure_logging
from ums_client.errors import (
    UmsClientError,
    AuthError,
    GatewayError,
    ConnectionLostError,
    ProtocolError,
    StateError,
)
from ums_client.events import EngineEvent, EngineEventType, EventStream
from ums_client.session import SessionOrchestrator

__all__ = [
    "__version__",
    # Configuration
    "EngineSettings",
    "settings_from_env",
    "configure_logging",
    # Errors
    "UmsClientError",
    "AuthError",
    "GatewayError",
    "ConnectionLostError",
    "ProtocolError",
    "StateError",
    # Events
    "EngineEvent",
    "EngineEventType",
    "EventStream",
    # Engine
    "SessionOrchestrator",
]
