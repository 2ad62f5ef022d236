# Session Engine
# Conversation state, inbound routing, script playback and the orchestrator

from ums_client.session.models import (
    Session,
    Participant,
    ConversationState,
)
from ums_client.session.processor import EventProcessor, find_main_dialog, find_cobrowse_dialog
from ums_client.session.script import ScriptRunner
from ums_client.session.orchestrator import SessionOrchestrator, PendingUpload, file_type

__all__ = [
    "Session",
    "Participant",
    "ConversationState",
    "EventProcessor",
    "find_main_dialog",
    "find_cobrowse_dialog",
    "ScriptRunner",
    "SessionOrchestrator",
    "PendingUpload",
    "file_type",
]
