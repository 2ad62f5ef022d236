"""
Engine Event Stream

In-process fan-out of EngineEvents to whatever drives the chat UI.

Design:
- EventStream: publish side, owned by one engine
- EventSubscription: bounded per-consumer queue with its own filter
- EventFilter: type, type prefix, account and conversation criteria
- Listeners: plain callbacks for UIs that re-render on every change

Publishing never blocks and never awaits: engine components emit from
inside frame handlers, so a slow consumer drops events instead of
stalling the socket reader.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable

from pydantic import BaseModel, Field

from ums_client.events.models import EngineEvent, EngineEventType

logger = logging.getLogger(__name__)


EventListener = Callable[[EngineEvent], None]


class EventFilter(BaseModel):
    """
    Which engine events a subscription receives.

    Every criterion that is set must match; None matches anything.
    """
    event_types: set[EngineEventType] | None = Field(
        default=None,
        description="Exact event types to receive"
    )
    event_type_prefixes: list[str] | None = Field(
        default=None,
        description="Event type namespaces to receive (e.g. 'cobrowse.')"
    )
    account_ids: set[str] | None = Field(
        default=None,
        description="Accounts to receive events for"
    )
    conversation_ids: set[str] | None = Field(
        default=None,
        description="Conversations to receive events for"
    )

    def matches(self, event: EngineEvent) -> bool:
        if self.event_types is not None and event.event_type not in self.event_types:
            return False
        if self.event_type_prefixes is not None and not any(
            event.event_type.value.startswith(prefix) for prefix in self.event_type_prefixes
        ):
            return False
        if self.account_ids is not None and event.account_id not in self.account_ids:
            return False
        if self.conversation_ids is not None and event.conversation_id not in self.conversation_ids:
            return False
        return True


class EventSubscription:
    """
    Bounded queue of the events one consumer asked for.

    Consumers either await get() / iterate, or poll with get_nowait() and
    drain() from a render loop. A full queue drops the newest event.
    """

    def __init__(
        self,
        subscription_id: str,
        filter: EventFilter | None = None,
        max_queue_size: int = 1000,
    ):
        self.subscription_id = subscription_id
        self.filter = filter or EventFilter()
        self._queue: asyncio.Queue[EngineEvent | None] = asyncio.Queue(maxsize=max_queue_size)
        self._closed = False
        self._created_at = datetime.now(timezone.utc)
        self._received = 0
        self._dropped = 0

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "subscription_id": self.subscription_id,
            "created_at": self._created_at.isoformat(),
            "events_received": self._received,
            "events_dropped": self._dropped,
            "queue_size": self._queue.qsize(),
            "is_closed": self._closed,
        }

    def deliver(self, event: EngineEvent) -> bool:
        """
        Offer an event to this subscription.

        Returns:
            True if queued; False if closed, filtered out or dropped
        """
        if self._closed or not self.filter.matches(event):
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._dropped += 1
            logger.warning(f"Subscription {self.subscription_id} is full, dropped {event.event_type.value}")
            return False
        self._received += 1
        return True

    def get_nowait(self) -> EngineEvent | None:
        """Next queued event, or None if nothing is queued."""
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def drain(self) -> list[EngineEvent]:
        """Every queued event, oldest first."""
        events = []
        while (event := self.get_nowait()) is not None:
            events.append(event)
        return events

    async def get(self, timeout: float | None = None) -> EngineEvent | None:
        """
        Wait for the next event.

        Returns:
            The event, or None once closed and empty or on timeout
        """
        if self._closed and self._queue.empty():
            return None
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    async def __aiter__(self) -> AsyncIterator[EngineEvent]:
        while True:
            event = await self.get()
            if event is None:
                break
            yield event

    def close(self) -> None:
        self._closed = True
        # None wakes a pending get()
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            pass


class EventStream:
    """
    Engine event fan-out.

    Attributes:
        max_subscribers: Cap on concurrent subscriptions
    """

    def __init__(self, max_subscribers: int = 100):
        self.max_subscribers = max_subscribers
        self._subscriptions: dict[str, EventSubscription] = {}
        self._listeners: list[EventListener] = []
        self._published = 0
        self._delivered = 0

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "subscriber_count": len(self._subscriptions),
            "listener_count": len(self._listeners),
            "events_published": self._published,
            "events_delivered": self._delivered,
        }

    def subscribe(
        self,
        subscription_id: str,
        filter: EventFilter | None = None,
        max_queue_size: int = 1000,
    ) -> EventSubscription:
        """
        Open a queued subscription.

        Raises:
            ValueError: If the id is taken or the subscriber cap is reached
        """
        if subscription_id in self._subscriptions:
            raise ValueError(f"Subscription {subscription_id} already exists")
        if len(self._subscriptions) >= self.max_subscribers:
            raise ValueError(f"Maximum subscribers ({self.max_subscribers}) reached")

        subscription = EventSubscription(subscription_id, filter=filter, max_queue_size=max_queue_size)
        self._subscriptions[subscription_id] = subscription
        logger.debug(f"Subscription {subscription_id} opened")
        return subscription

    def unsubscribe(self, subscription_id: str) -> bool:
        subscription = self._subscriptions.pop(subscription_id, None)
        if subscription is None:
            return False
        subscription.close()
        logger.debug(f"Subscription {subscription_id} closed")
        return True

    def add_listener(self, listener: EventListener) -> Callable[[], None]:
        """
        Call `listener` synchronously for every event.

        Returns:
            A function that removes the listener
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def publish(self, event: EngineEvent) -> int:
        """
        Deliver an event to every matching subscription and listener.

        A failing listener is logged and skipped.

        Returns:
            Number of subscriptions and listeners that received it
        """
        self._published += 1
        delivered = 0
        for subscription in list(self._subscriptions.values()):
            if subscription.deliver(event):
                delivered += 1
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Event listener failed on {event.event_type.value}: {e}")
                continue
            delivered += 1
        self._delivered += delivered
        return delivered

    def emit(
        self,
        event_type: EngineEventType,
        message: str = "",
        account_id: str | None = None,
        conversation_id: str | None = None,
        **data: Any,
    ) -> int:
        """Build and publish an event in one call."""
        return self.publish(EngineEvent(
            event_type=event_type,
            message=message,
            account_id=account_id,
            conversation_id=conversation_id,
            data=data,
        ))

    def close_all(self) -> None:
        for subscription in self._subscriptions.values():
            subscription.close()
        self._subscriptions.clear()
        self._listeners.clear()


def create_conversation_filter(conversation_id: str) -> EventFilter:
    return EventFilter(conversation_ids={conversation_id})


def create_cobrowse_filter() -> EventFilter:
    """Co-browse lifecycle events and the signals published for the co-browse client."""
    return EventFilter(event_type_prefixes=["cobrowse."])


def create_connection_filter() -> EventFilter:
    return EventFilter(event_type_prefixes=["connection."])


def create_timeline_filter() -> EventFilter:
    """What a transcript view re-renders on."""
    return EventFilter(event_types={
        EngineEventType.MESSAGES_CHANGED,
        EngineEventType.AGENT_TYPING,
        EngineEventType.SESSION_REVEALED,
    })
