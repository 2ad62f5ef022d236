"""
Co-browse Coordinator

Negotiates co-browse, video call and voice call sub-sessions offered by an
agent through a COBROWSE dialog.

- At most one session is active; a new offer closes the old one first
- Expiry is evaluated once, when the offer arrives
- accept, reject and close each add one transcript message and publish
  the matching signal on the `lpCoBrowse` channel, keyed by serviceId
"""

import logging
from enum import Enum
from typing import Any, Callable, Protocol

from pydantic import BaseModel, Field

from ums_client.events.models import EngineEventType
from ums_client.events.stream import EventStream
from ums_client.messages.models import ClientMessage, MessageType, now_ms
from ums_client.messages.store import MessageStore
from ums_client.protocol.frames import DialogDetails

logger = logging.getLogger(__name__)


COBROWSE_CHANNEL = "lpCoBrowse"


class CobrowseMode(str, Enum):
    COBROWSE = "COBROWSE"
    VIDEO_CALL = "VIDEO_CALL"
    VOICE_CALL = "VOICE_CALL"


class CobrowseSignal(str, Enum):
    """Signal names published on the co-browse channel."""
    OFFERED = "cobrowseOffered"
    ACCEPTED = "cobrowseAccepted"
    DECLINED = "cobrowseDeclined"
    ENDED = "cobrowseEnded"


def describe_mode(mode: str | None) -> str:
    if mode == CobrowseMode.VIDEO_CALL.value:
        return "video call"
    if mode == CobrowseMode.VOICE_CALL.value:
        return "voice call"
    return "cobrowse session"


class CobrowseSession(BaseModel):
    """The single active co-browse negotiation."""
    service_id: str = Field(..., description="Signalling key for the sub-session")
    mode: str = Field(default=CobrowseMode.COBROWSE.value)
    expires: float | None = Field(default=None, description="Offer expiry, epoch seconds")
    expired: bool = Field(default=False, description="Offer had expired when it arrived")
    accepted: bool = Field(default=False)
    agent_id: str = Field(default="")
    dialog_id: str | None = Field(default=None)
    metadata: dict[str, Any] = Field(default_factory=dict)


class SignalChannel(Protocol):
    """Out-of-band channel the co-browse client listens on."""

    async def publish(self, channel: str, name: str, payload: dict[str, Any]) -> None: ...


class EventStreamSignalChannel:
    """Publishes signals as cobrowse.signal engine events for the embedding UI."""

    def __init__(self, events: EventStream):
        self._events = events

    async def publish(self, channel: str, name: str, payload: dict[str, Any]) -> None:
        self._events.emit(
            EngineEventType.COBROWSE_SIGNAL,
            message=name,
            channel=channel,
            name=name,
            payload=payload,
        )


class CobrowseCoordinator:
    """
    Co-browse offer, accept, reject and close.

    Attributes:
        visitor_id: Tracking visitor id sent as svid
        session_id: Tracking session id sent as ssid
    """

    def __init__(
        self,
        store: MessageStore,
        signal: SignalChannel | None = None,
        events: EventStream | None = None,
        now: Callable[[], int] = now_ms,
    ):
        self._store = store
        self._events = events
        self._signal = signal or (EventStreamSignalChannel(events) if events else None)
        self._now = now
        self._session: CobrowseSession | None = None
        self.visitor_id: str | None = None
        self.session_id: str | None = None

    @property
    def session(self) -> CobrowseSession | None:
        return self._session

    @property
    def is_active(self) -> bool:
        return self._session is not None

    def set_identity(self, visitor_id: str | None, session_id: str | None) -> None:
        self.visitor_id = visitor_id
        self.session_id = session_id

    async def on_offer(
        self,
        dialog: DialogDetails,
        sent_ts: int | None = None,
        agent_id: str = "",
        conversation_id: str | None = None,
    ) -> CobrowseSession | None:
        """
        Handle an open COBROWSE dialog.

        Returns:
            The new session, or None when the offer repeats the active one
        """
        metadata = dict(dialog.meta_data or {})
        service_id = str(metadata.get("serviceId") or dialog.dialog_id)
        if self._session and self._session.service_id == service_id:
            return None
        if self._session:
            logger.info(f"New co-browse offer {service_id} replaces {self._session.service_id}")
            await self.close()

        expires = metadata.get("expires")
        expired = expires is not None and float(expires) * 1000 < self._now()
        session = CobrowseSession(
            service_id=service_id,
            mode=metadata.get("mode") or CobrowseMode.COBROWSE.value,
            expires=expires,
            expired=expired,
            agent_id=agent_id,
            dialog_id=dialog.dialog_id,
            metadata=metadata,
        )
        self._session = session

        await self._publish(CobrowseSignal.OFFERED, {
            "serviceId": session.service_id,
            "agentId": agent_id,
            "visitorName": "visitor",
            "mode": session.mode,
            "ssid": self.session_id,
            "svid": self.visitor_id,
        })
        timestamp = sent_ts or self._now()
        await self._store.append(ClientMessage(
            conversation_id=conversation_id,
            dialog_id=dialog.dialog_id,
            type=MessageType.COBROWSE_REQUEST.value,
            server_timestamp=timestamp,
            time_local=timestamp,
            expired=expired,
            cobrowse_metadata=metadata,
        ))
        self._emit(EngineEventType.COBROWSE_OFFERED, f"{describe_mode(session.mode)} offered", expired=expired)
        logger.info(f"Co-browse offer {service_id} ({session.mode}), expired={expired}")
        return session

    async def accept(self) -> bool:
        """
        Accept the active offer.

        Returns:
            False when there is no offer or it had expired
        """
        session = self._session
        if session is None:
            logger.error("No co-browse offer to accept")
            return False
        if session.expired:
            logger.info(f"Co-browse offer {session.service_id} has expired")
            return False

        await self._publish(CobrowseSignal.ACCEPTED, self._answer(session))
        session.accepted = True
        await self._transcript(MessageType.COBROWSE_ACCEPTED, f"you have accepted a {describe_mode(session.mode)}")
        self._emit(EngineEventType.COBROWSE_ACCEPTED, f"{describe_mode(session.mode)} accepted")
        return True

    async def reject(self) -> bool:
        session = self._session
        if session is None:
            logger.error("No co-browse offer to reject")
            return False

        await self._publish(CobrowseSignal.DECLINED, self._answer(session))
        self._session = None
        await self._transcript(MessageType.COBROWSE_DECLINED, f"you have declined a {describe_mode(session.mode)}")
        self._emit(EngineEventType.COBROWSE_DECLINED, f"{describe_mode(session.mode)} declined")
        return True

    async def close(self) -> bool:
        """End the active session, if any."""
        session = self._session
        if session is None:
            return False

        await self._publish(CobrowseSignal.ENDED, self._answer(session))
        self._session = None
        await self._transcript(MessageType.COBROWSE_ENDED, f"your {describe_mode(session.mode)} has ended")
        self._emit(EngineEventType.COBROWSE_ENDED, f"{describe_mode(session.mode)} ended")
        logger.info(f"Co-browse session {session.service_id} closed")
        return True

    def _answer(self, session: CobrowseSession) -> dict[str, Any]:
        return {
            "serviceId": session.service_id,
            "agentId": session.agent_id,
            "visitorName": None,
            "ssid": self.session_id,
            "svid": self.visitor_id,
        }

    async def _publish(self, signal: CobrowseSignal, payload: dict[str, Any]) -> None:
        if self._signal is None:
            logger.debug(f"No signal channel for {signal.value}")
            return
        await self._signal.publish(COBROWSE_CHANNEL, signal.value, payload)

    async def _transcript(self, message_type: MessageType, text: str) -> None:
        timestamp = self._now()
        await self._store.append(ClientMessage(
            type=message_type.value,
            text=text,
            server_timestamp=timestamp,
            time_local=timestamp,
        ))

    def _emit(self, event_type: EngineEventType, message: str, **data: Any) -> None:
        if self._events:
            self._events.emit(event_type, message=message, **data)
