# Co-browse
# Screen-share, video and voice sub-session negotiation

from ums_client.cobrowse.coordinator import (
    CobrowseCoordinator,
    CobrowseSession,
    CobrowseMode,
    CobrowseSignal,
    SignalChannel,
    EventStreamSignalChannel,
    COBROWSE_CHANNEL,
    describe_mode,
)

__all__ = [
    "CobrowseCoordinator",
    "CobrowseSession",
    "CobrowseMode",
    "CobrowseSignal",
    "SignalChannel",
    "EventStreamSignalChannel",
    "COBROWSE_CHANNEL",
    "describe_mode",
]
