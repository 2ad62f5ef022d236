"""
Event Processor

Routes every decoded inbound frame to the component that owns its effect.

Responses are matched on reqId first, then on their typed body (upload
token, file upload URL). Notifications are matched on type:
- conversation changes select the open conversation and its main dialog,
  subscribe to the dialog once, merge participants and hand co-browse
  dialogs to the CobrowseCoordinator
- messaging events are processed strictly in array order and dispatched
  by event kind and content type

Unknown frames are logged and ignored; nothing raised while handling a
frame escapes handle().
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine

from ums_client.cobrowse.coordinator import CobrowseCoordinator
from ums_client.errors import ProtocolError, UmsClientError
from ums_client.events.models import EngineEventType
from ums_client.events.stream import EventStream
from ums_client.forms.coordinator import SecureFormCoordinator
from ums_client.gateway.api import UserProfile
from ums_client.gateway.directory import UserDirectory
from ums_client.messages.models import ClientMessage, MessageType, message_uid, now_ms
from ums_client.messages.store import MessageStore
from ums_client.protocol.builder import FrameBuilder
from ums_client.protocol.frames import (
    AcceptStatusEvent,
    Audience,
    ChannelType,
    ChatStateEvent,
    ContentEvent,
    ContentType,
    ConversationChangeNotification,
    DialogDetails,
    FileUploadUrlBody,
    FileUploadUrlResponse,
    Frame,
    HostedFileMessage,
    MessagingEvent,
    MessagingEventNotification,
    ParticipantRole,
    RequestId,
    ResponseFrame,
    RichContentEvent,
    SECURE_FORM_SUBMIT_PREFIX,
    CONSUMER_MESSAGE_PREFIX,
    UploadTokenResponse,
)
from ums_client.session.models import ConversationState, Participant
from ums_client.storage.local import LocalStateCache
from ums_client.transport.connection import ConnectionManager
from ums_client.transport.subscriptions import CONVERSATIONS_KEY, dialog_key, survey_key

logger = logging.getLogger(__name__)


UploadHandler = Callable[[FileUploadUrlBody], Awaitable[Any]]

# Acks that need no action
IGNORED_REQUESTS = {
    RequestId.GET_CLOCK.value,
    RequestId.SUBSCRIBE_EX_CONVERSATIONS_SURVEYS.value,
    RequestId.SUBSCRIBE_MESSAGING_EVENTS.value,
    RequestId.SET_USER_PROFILE.value,
    RequestId.PUBLISH_FILE.value,
    RequestId.REQUEST_FILE_UPLOAD.value,
}

# Conversation field updates that invalidate the timeline
CONVERSATION_FIELD_UPDATES = {
    RequestId.UPDATE_CONVERSATION_FIELD.value,
    RequestId.CLOSE_CONVERSATION.value,
    RequestId.CLOSE_DIALOG.value,
}


def find_main_dialog(dialogs: list[DialogDetails]) -> DialogDetails | None:
    """First open dialog that is not of type OTHER."""
    for dialog in dialogs:
        if dialog.is_open and not dialog.is_other:
            return dialog
    return None


def find_cobrowse_dialog(dialogs: list[DialogDetails]) -> DialogDetails | None:
    for dialog in dialogs:
        if dialog.channel_type == ChannelType.COBROWSE.value and dialog.is_open:
            return dialog
    return None


class EventProcessor:
    """
    Inbound frame router.

    Attributes:
        account_id: Account the session is connected to
        settle_delay: Debounce before the session is revealed
        first_message_delay: Delay before the buffered first message is flushed
    """

    def __init__(
        self,
        connection: ConnectionManager,
        builder: FrameBuilder,
        state: ConversationState,
        store: MessageStore,
        forms: SecureFormCoordinator,
        cobrowse: CobrowseCoordinator,
        cache: LocalStateCache,
        directory: UserDirectory | None = None,
        events: EventStream | None = None,
        upload_handler: UploadHandler | None = None,
        on_agent_message: Callable[[], None] | None = None,
        account_id: str | None = None,
        settle_delay: float = 0.1,
        first_message_delay: float = 1.0,
    ):
        self._connection = connection
        self._builder = builder
        self._state = state
        self._store = store
        self._forms = forms
        self._cobrowse = cobrowse
        self._cache = cache
        self._directory = directory
        self._events = events
        self._upload_handler = upload_handler
        self._on_agent_message = on_agent_message
        self.account_id = account_id
        self.settle_delay = settle_delay
        self.first_message_delay = first_message_delay
        self._tasks: set[asyncio.Task] = set()
        self._settle_task: asyncio.Task | None = None

    # =========================================================================
    # Entry Point
    # =========================================================================

    async def handle(self, frame: Frame) -> None:
        """Route one inbound frame. Never raises."""
        try:
            if isinstance(frame, ResponseFrame):
                await self._on_response(frame)
            elif isinstance(frame, ConversationChangeNotification):
                await self._on_conversation_change(frame)
            elif isinstance(frame, MessagingEventNotification):
                await self._on_messaging_events(frame)
            else:
                raise ProtocolError(f"Unroutable frame: {getattr(frame, 'type', None)}")
        except ProtocolError as e:
            logger.warning(f"Ignoring frame: {e}")
        except UmsClientError as e:
            logger.error(f"Frame handling failed: {e}")
        except Exception as e:
            logger.error(f"Unexpected error handling {type(frame).__name__}: {e}", exc_info=True)

    # =========================================================================
    # Responses
    # =========================================================================

    async def _on_response(self, frame: ResponseFrame) -> None:
        req_id = frame.req_id or ""
        typed = type(frame) is not ResponseFrame

        if req_id in IGNORED_REQUESTS or req_id.startswith(CONSUMER_MESSAGE_PREFIX):
            pass
        elif req_id == RequestId.INIT_CONNECTION.value:
            if frame.ok:
                await self._connection.send(self._builder.create_get_user_profile())
            else:
                logger.error(f"Init connection rejected with code {frame.code}")
        elif req_id == RequestId.GET_USER_PROFILE.value:
            if frame.ok:
                await self._on_user_profile(frame.body)
        elif req_id == RequestId.SUBSCRIBE_EX_CONVERSATIONS.value:
            logger.debug("Subscribed to conversations")
        elif req_id == RequestId.STEP_UP_AUTHENTICATION.value:
            if frame.ok:
                await self._record_step_up()
        elif req_id in CONVERSATION_FIELD_UPDATES:
            self._store.reset()
            if req_id == RequestId.UPDATE_CONVERSATION_FIELD.value:
                self._state.stage = None
        elif req_id == RequestId.REQUEST_CONVERSATION.value:
            if frame.ok:
                await self._on_conversation_requested()
            else:
                logger.error(f"Conversation request rejected with code {frame.code}")
        elif req_id.startswith(SECURE_FORM_SUBMIT_PREFIX):
            if frame.ok:
                self._forms.on_submit_ack(req_id[len(SECURE_FORM_SUBMIT_PREFIX):])
            else:
                logger.warning(f"Secure form submit {req_id} failed with code {frame.code}")
        elif not typed:
            raise ProtocolError(f"Unknown reqId {req_id!r} (type={frame.type})")

        if isinstance(frame, UploadTokenResponse):
            await self._forms.on_upload_token(req_id, frame.body.token)
        elif isinstance(frame, FileUploadUrlResponse):
            await self._on_upload_url(frame.body)

    async def _on_user_profile(self, body: Any) -> None:
        consumer_id = body.get("userId") if isinstance(body, dict) else None
        if consumer_id:
            self._state.consumer_id = consumer_id
            await self._cache.set_consumer_id(consumer_id)

        if not self._connection.subscriptions.add(CONVERSATIONS_KEY):
            return
        marker = await self._cache.get_consumer_conversation(consumer_id) if consumer_id else None
        if marker:
            logger.info(f"Consumer {consumer_id} has a stepped-up conversation, subscribing to {marker}")
        await self._connection.send(self._builder.create_subscribe_ex_conversations(marker))

    async def _record_step_up(self) -> None:
        consumer_id = self._state.consumer_id
        conversation_id = self._state.conversation_id
        if consumer_id and conversation_id:
            await self._cache.set_consumer_conversation(consumer_id, conversation_id)

    async def _on_conversation_requested(self) -> None:
        profile = await self._cache.get_profile()
        if not profile["use_anonymous"] and profile["first_name"] and profile["last_name"]:
            await self._connection.send(
                self._builder.create_set_user_profile(profile["first_name"], profile["last_name"])
            )
        await self._forms.clear()
        if self._state.first_message:
            self._state.first_message_due = True
            self._spawn(self._delayed_first_message(), name="first_message")

    async def _delayed_first_message(self) -> None:
        await asyncio.sleep(self.first_message_delay)
        await self.flush_first_message()

    async def flush_first_message(self) -> bool:
        """
        Send the buffered first message once a dialog is open.

        Returns:
            True if it was sent; otherwise it stays pending
        """
        text = self._state.first_message
        if not text:
            self._state.first_message_due = False
            return False
        if not (self._state.is_open and self._state.dialog and self._state.conversation_id):
            logger.debug("First message waits for an open dialog")
            return False
        self._state.first_message = None
        self._state.first_message_due = False
        await self._connection.send(
            self._builder.create_text_message(self._state.conversation_id, self._state.dialog.dialog_id, text)
        )
        return True

    async def _on_upload_url(self, body: FileUploadUrlBody) -> None:
        if self._upload_handler is None:
            logger.warning("File upload URL received with no upload handler")
            return
        await self._upload_handler(body)

    # =========================================================================
    # Conversation Changes
    # =========================================================================

    async def _on_conversation_change(self, frame: ConversationChangeNotification) -> None:
        state = self._state
        open_change = frame.find_open_change()
        if open_change is None or open_change.result is None or open_change.result.conversation_details is None:
            had_conversation = state.conversation_id is not None
            self._store.reset()
            state.reset()
            state.is_subscribed = True
            await self._cache.set_conversation_id(None)
            if had_conversation:
                self._emit(EngineEventType.CONVERSATION_CLOSED, "No open conversation")
            self._schedule_settle()
            return

        result = open_change.result
        details = result.conversation_details
        state.is_subscribed = True
        conversation_id = result.conv_id or state.conversation_id
        if conversation_id != state.conversation_id:
            self._store.reset()
            self._emit(EngineEventType.CONVERSATION_OPENED, f"Conversation {conversation_id} open",
                       conversation_id=conversation_id)

        state.conversation_id = conversation_id
        state.last_conversation_id = conversation_id
        await self._cache.set_conversation_id(conversation_id, consumer_id=state.consumer_id)
        credential = self._connection.credential
        if credential and credential.is_authenticated and state.consumer_id and conversation_id:
            await self._cache.set_consumer_conversation(state.consumer_id, conversation_id)

        state.stage = details.stage
        state.dialog = find_main_dialog(details.dialogs)
        await self._merge_participants(details.participants)

        if state.dialog and conversation_id:
            await self._subscribe_dialog(conversation_id, state.dialog)

        cobrowse_dialog = find_cobrowse_dialog(details.dialogs)
        if cobrowse_dialog:
            await self._cobrowse.on_offer(
                cobrowse_dialog,
                sent_ts=frame.body.sent_ts,
                agent_id=state.agent_id or "",
                conversation_id=conversation_id,
            )
        elif self._cobrowse.is_active:
            await self._cobrowse.close()

        if state.first_message_due:
            await self.flush_first_message()
        self._schedule_settle()

    async def _subscribe_dialog(self, conversation_id: str, dialog: DialogDetails) -> None:
        subscriptions = self._connection.subscriptions
        if subscriptions.add(dialog_key(dialog.dialog_id)):
            logger.info(f"Subscribing to dialog {dialog.dialog_id}")
            await self._connection.send(
                self._builder.create_subscribe_messaging_events(conversation_id, dialog.dialog_id)
            )
        if dialog.is_post_survey and subscriptions.add(survey_key(dialog.dialog_id)):
            await self._connection.send(
                self._builder.create_subscribe_survey_events(conversation_id, dialog.dialog_id)
            )

    async def _merge_participants(self, participants: list) -> None:
        for details in participants:
            profile = await self._lookup_profile(details.id)
            participant = Participant(id=details.id, role=details.role)
            if profile:
                participant = Participant(
                    id=details.id,
                    role=details.role,
                    nickname=profile.nickname,
                    picture_url=profile.picture_url,
                    full_name=profile.full_name,
                )
            self._state.participants[details.role] = participant
            if details.role == ParticipantRole.ASSIGNED_AGENT.value:
                self._state.agent_id = details.id

    # =========================================================================
    # Messaging Events
    # =========================================================================

    async def _on_messaging_events(self, frame: MessagingEventNotification) -> None:
        self._state.is_subscribed = True
        for event in frame.body.changes:
            await self._on_event(event)
        self._schedule_settle()

    async def _on_event(self, event: MessagingEvent) -> None:
        content = event.event
        if isinstance(content, ContentEvent):
            if content.content_type == ContentType.SECURE_FORM_INVITATION.value:
                await self._forms.on_invitation(event)
            elif content.content_type == ContentType.SECURE_FORM_SUBMISSION.value:
                await self._forms.on_submission(event)
            else:
                await self._on_content(event, content)
            self._agent_replied(event)
        elif isinstance(content, AcceptStatusEvent):
            self._store.update_status(content.sequence_list, content.status, dialog_id=event.dialog_id)
        elif isinstance(content, RichContentEvent):
            await self._on_rich_content(event, content)
            self._agent_replied(event)
        elif isinstance(content, ChatStateEvent):
            self._on_chat_state(event, content)
        else:
            logger.warning(f"Ignoring unknown event type {content.type!r}")

    async def _on_content(self, event: MessagingEvent, content: ContentEvent) -> None:
        await self._track_originator(event)
        if event.message_audience != Audience.ALL.value:
            return
        message = await self._thread_message(event, quick_replies=_replies(content.quick_replies))
        message.text = content.text
        if isinstance(content.message, HostedFileMessage):
            message.type = MessageType.FILE.value
            message.relative_path = content.message.relative_path
            message.caption = content.message.caption
            message.file_type = content.message.file_type
            message.preview = content.message.preview
        await self._store.append(message)

    async def _on_rich_content(self, event: MessagingEvent, content: RichContentEvent) -> None:
        await self._track_originator(event)
        if event.message_audience != Audience.ALL.value:
            return
        message = await self._thread_message(event, quick_replies=_replies(content.quick_replies))
        message.type = MessageType.RICH_CONTENT.value
        message.content = content.content
        message.text = str(content.content.get("text") or "")
        await self._store.append(message)

    def _on_chat_state(self, event: MessagingEvent, content: ChatStateEvent) -> None:
        if self._state.is_post_survey:
            self._state.agent_chat_state = None
        elif event.is_agent:
            self._state.agent_chat_state = content.chat_state
        else:
            return
        self._emit(EngineEventType.AGENT_TYPING, str(self._state.agent_chat_state),
                   chat_state=self._state.agent_chat_state)

    async def _thread_message(self, event: MessagingEvent, quick_replies: list[Any]) -> ClientMessage:
        return ClientMessage(
            uid=message_uid(event.sequence, event.dialog_id),
            sequence=event.sequence,
            conversation_id=event.conversation_id or self._state.conversation_id,
            dialog_id=event.dialog_id,
            originator_id=event.originator_id,
            role=event.role,
            sender=await self.sender_name(event),
            is_agent=event.is_agent,
            agent_id=event.originator_metadata.id if event.is_agent else self._state.agent_id,
            server_timestamp=event.server_timestamp,
            time_local=event.server_timestamp or now_ms(),
            metadata=event.metadata or [],
            quick_replies=quick_replies,
        )

    async def _track_originator(self, event: MessagingEvent) -> None:
        if event.is_agent:
            self._state.agent_id = event.originator_metadata.id
        elif event.role == ParticipantRole.CONSUMER.value and event.originator_metadata.id:
            if event.originator_metadata.id != self._state.consumer_id:
                self._state.consumer_id = event.originator_metadata.id
                await self._cache.set_consumer_id(event.originator_metadata.id)

    def _agent_replied(self, event: MessagingEvent) -> None:
        if event.is_agent and self._on_agent_message:
            self._on_agent_message()

    async def sender_name(self, event: MessagingEvent) -> str:
        """Agent nickname from the directory, else the originator's role."""
        if event.is_agent and self._directory and self.account_id:
            try:
                return await self._directory.display_name(
                    self.account_id, event.originator_metadata.id, fallback=event.role
                )
            except Exception as e:
                logger.warning(f"Sender lookup failed for {event.originator_metadata.id}: {e}")
        return event.role

    async def _lookup_profile(self, participant_id: str) -> UserProfile | None:
        if not self._directory or not self.account_id:
            return None
        try:
            return await self._directory.get(self.account_id, participant_id)
        except Exception as e:
            logger.warning(f"Profile lookup failed for {participant_id}: {e}")
            return None

    # =========================================================================
    # Settle & Background Tasks
    # =========================================================================

    def _schedule_settle(self) -> None:
        if self._settle_task and not self._settle_task.done():
            self._settle_task.cancel()
        self._settle_task = self._spawn(self._settle(), name="settle")

    async def _settle(self) -> None:
        await asyncio.sleep(self.settle_delay)
        self._state.is_subscribed = True
        self._emit(EngineEventType.SESSION_SUBSCRIBED, "Session subscribed")
        if self._state.conversation_id:
            self._state.show_window = True
            self._emit(EngineEventType.SESSION_REVEALED, "Session revealed")

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background task {task.get_name()} failed: {error}")

    @property
    def has_pending(self) -> bool:
        return bool(self._tasks)

    async def drain(self) -> None:
        """Wait for scheduled work (settle, first message) to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel(self) -> None:
        for task in list(self._tasks):
            task.cancel()

    def _emit(self, event_type: EngineEventType, message: str, **data: Any) -> None:
        if self._events:
            conversation_id = data.pop("conversation_id", self._state.conversation_id)
            self._events.emit(
                event_type,
                message=message,
                account_id=self.account_id,
                conversation_id=conversation_id,
                **data,
            )


def _replies(quick_replies: dict[str, Any] | None) -> list[Any]:
    if isinstance(quick_replies, dict):
        return list(quick_replies.get("replies") or [])
    return []
