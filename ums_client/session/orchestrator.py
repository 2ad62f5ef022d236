"""
Session Orchestrator

Composes the engine's components and exposes the operations a chat UI
drives: initialize, connect, send, request or close a conversation, share
files, submit secure forms, answer co-browse offers and replay scripts.

Ownership:
- ConnectionManager owns the socket and its state machine
- EventProcessor owns inbound routing and mutates ConversationState
- MessageStore owns the timeline
- SecureFormCoordinator / CobrowseCoordinator own their sub-protocols

Usage:
    engine = SessionOrchestrator(settings_from_env())
    await engine.init_state(account_id, skill_id)
    await engine.send_message("hi")
    ...
    await engine.shutdown()
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Coroutine
from uuid import uuid4

from ums_client.auth.broker import Credential, IdentityProvider, TokenBroker
from ums_client.cobrowse.coordinator import CobrowseCoordinator, SignalChannel
from ums_client.config import EngineSettings, settings_from_env
from ums_client.errors import StateError
from ums_client.events.stream import EventStream
from ums_client.forms.coordinator import SecureFormCoordinator
from ums_client.gateway.api import MessagingApi
from ums_client.gateway.directory import (
    FILE_STORAGE_SERVICE,
    MESSAGING_SERVICE,
    TOKENIZER_SERVICE,
    DomainResolver,
    UserDirectory,
    ums_url,
)
from ums_client.messages.models import Bubble
from ums_client.messages.store import MessageStore
from ums_client.protocol.builder import FrameBuilder
from ums_client.protocol.frames import FileUploadUrlBody, MessageStatus, MessagingEvent, Stage
from ums_client.session.models import ConversationState, Session
from ums_client.session.processor import EventProcessor
from ums_client.session.script import ScriptRunner
from ums_client.storage.factory import create_store_from_env
from ums_client.storage.local import LocalStateCache
from ums_client.storage.memory import InMemoryKeyValueStore
from ums_client.storage.ports import KeyValueStore
from ums_client.transport.connection import ConnectionManager, SocketFactory

logger = logging.getLogger(__name__)


def file_type(content_type: str) -> str:
    """Upper-cased subtype of a MIME type ("image/png" -> "PNG")."""
    if "/" not in content_type:
        return ""
    return content_type.split("/", 1)[1].upper()


@dataclass
class PendingUpload:
    """A file waiting for its signed upload URL."""
    file_name: str
    content: bytes
    content_type: str
    preview: str | None = None


class SessionOrchestrator:
    """
    Conversational session engine for one consumer.

    Attributes:
        settings: Engine configuration
        events: Engine event stream the UI observes
        cache: Durable client state
        state: Conversation, dialog and participant state
        messages: Conversation timeline
        connection: Socket lifecycle
        processor: Inbound frame router
        forms: Secure form flow
        cobrowse: Co-browse negotiation
        script: Scripted consumer lines
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        store: KeyValueStore | None = None,
        api: MessagingApi | None = None,
        identity_provider: IdentityProvider | None = None,
        socket_factory: SocketFactory | None = None,
        signal: SignalChannel | None = None,
        events: EventStream | None = None,
        builder: FrameBuilder | None = None,
    ):
        """
        Initialize the engine.

        Args:
            settings: Engine configuration (defaults when omitted)
            store: Key/value store for durable state (in-memory when omitted)
            api: REST gateway (built from settings when omitted)
            identity_provider: Returns the external identity token for the elevated chain
            socket_factory: Opens the consumer socket (websockets when omitted)
            signal: Co-browse signalling channel (engine events when omitted)
            events: Engine event stream
            builder: Frame builder
        """
        self.settings = settings or EngineSettings()
        self.events = events or EventStream()
        self.builder = builder or FrameBuilder(time_zone=self.settings.time_zone)

        self._owns_store = store is None
        self._store = store or InMemoryKeyValueStore()
        self.cache = LocalStateCache(self._store)
        self._owns_api = api is None
        self.api = api or MessagingApi(
            self.settings.api_base_url,
            timeout=self.settings.http_timeout_seconds,
        )
        self.domains = DomainResolver(self.api)
        self.directory = UserDirectory(self.api)
        self.broker = TokenBroker(self.api, self.cache, identity_provider=identity_provider)

        self.state = ConversationState()
        self.connection = ConnectionManager(
            self.builder,
            credential_provider=self._fresh_credential,
            socket_factory=socket_factory,
            events=self.events,
            retries=self.settings.socket_retries,
            retry_delay=self.settings.retry_delay_seconds,
            heartbeat_interval=self.settings.heartbeat_interval_seconds,
            max_queue_size=self.settings.max_queue_size,
        )
        self.messages = MessageStore(
            read_receipt_sender=self._send_read_receipt,
            events=self.events,
            group_messages=self.settings.group_messages,
        )
        self.forms = SecureFormCoordinator(
            self.messages,
            self.cache,
            self.builder,
            self.connection.send,
            sender_name=self._sender_name,
            timeout_ms=self.settings.secure_form_timeout_ms,
        )
        self.cobrowse = CobrowseCoordinator(self.messages, signal=signal, events=self.events)
        self.script = ScriptRunner(self.send_message, interval=self.settings.script_timer_seconds)
        self.processor = EventProcessor(
            self.connection,
            self.builder,
            self.state,
            self.messages,
            self.forms,
            self.cobrowse,
            self.cache,
            directory=self.directory,
            events=self.events,
            upload_handler=self.upload_file,
            on_agent_message=self.script.on_agent_message,
            settle_delay=self.settings.settle_delay_seconds,
            first_message_delay=self.settings.first_message_delay_seconds,
        )
        self.connection.on_message(self.processor.handle)

        self.account_id: str | None = None
        self.skill_id: str | None = None
        self.campaign_id: str | None = None
        self.engagement_id: str | None = None
        self.session: Session | None = None
        self._pending_upload: PendingUpload | None = None
        self._tasks: set[asyncio.Task] = set()

    @classmethod
    async def from_env(cls, **kwargs: Any) -> "SessionOrchestrator":
        """
        Engine configured from UMS_* variables and a local .env file.

        The store comes from UMS_STORE_URL and is closed on shutdown.
        """
        settings = settings_from_env()
        engine = cls(settings, store=await create_store_from_env(load_env_file=False), **kwargs)
        engine._owns_store = True
        return engine

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def init_state(
        self,
        account_id: str,
        skill_id: str,
        first_name: str | None = None,
        last_name: str | None = None,
        use_anonymous: bool | None = None,
        campaign_id: str | None = None,
        engagement_id: str | None = None,
    ) -> None:
        """
        Restore durable state, resolve domains and connect.

        Raises:
            GatewayError: If the domain lookup fails
            AuthError: If the primary credential chain fails
            ConnectionLostError: If the socket cannot be opened
        """
        self.account_id = account_id
        self.skill_id = skill_id
        self.campaign_id = campaign_id
        self.engagement_id = engagement_id
        self.connection.account_id = account_id
        self.processor.account_id = account_id

        self.session = await self._ensure_session()
        self.cobrowse.set_identity(self.session.visitor_id, self.session.session_id)
        await self.cache.set_profile(first_name, last_name, use_anonymous)
        await self.forms.load()

        self.state.conversation_id = await self.cache.get_conversation_id()
        self.state.last_conversation_id = await self.cache.get_last_conversation_id()
        self.state.consumer_id = await self.cache.get_consumer_id()

        services = await self.domains.resolve(account_id)
        self.forms.site_id = account_id
        self.forms.tokenizer_domain = services.get(TOKENIZER_SERVICE)
        logger.info(f"Initialized session for account {account_id}, skill {skill_id}")

        await self.connect()

    async def connect(self, reset: bool = False) -> None:
        """
        Resolve a credential and open the socket.

        Args:
            reset: Discard the cached unauthenticated token first
        """
        if not self.account_id:
            raise StateError("No accountId found")
        credential = await self.broker.get_credential(self.account_id, reset=reset)
        domain = self.domains.require(self.account_id, MESSAGING_SERVICE)
        await self.connection.connect(credential, ums_url(domain, self.account_id))

    async def shutdown(self) -> None:
        """Stop timers, close the socket and release owned resources."""
        self.script.stop()
        for task in list(self._tasks):
            task.cancel()
        self.processor.cancel()
        await self.connection.close()
        if self._owns_api:
            await self.api.close()
        if self._owns_store:
            await self._store.close()
        logger.info(f"Session for account {self.account_id} shut down")

    async def drain(self) -> None:
        """Wait for deferred sends and scheduled work, then for queued frames."""
        while self._tasks or self.processor.has_pending:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            await self.processor.drain()
        await self.connection.flush()

    # =========================================================================
    # Conversation
    # =========================================================================

    async def send_message(self, text: str) -> None:
        """
        Send consumer text, opening a conversation first when none is open.

        Raises:
            ValueError: If the text is empty
            StateError: If there is no socket
        """
        if not text or not text.strip():
            raise ValueError("Message text is empty")
        if not self.connection.has_socket:
            raise StateError("No socket found")

        state = self.state
        if state.is_open and state.dialog and state.conversation_id:
            self._spawn(
                self.connection.send(
                    self.builder.create_text_message(state.conversation_id, state.dialog.dialog_id, text)
                ),
                name="send_message",
            )
            return

        logger.info("No open conversation, buffering first message")
        state.first_message = text
        await self.request_conversation()

    async def request_conversation(
        self,
        campaign_id: str | None = None,
        engagement_id: str | None = None,
    ) -> None:
        if not self.skill_id or self.session is None:
            raise StateError("No skillId or session found")
        await self.connection.send(
            self.builder.create_request_conversation(
                self.skill_id,
                self.session.visitor_id,
                self.session.session_id,
                campaign_id=campaign_id or self.campaign_id,
                engagement_id=engagement_id or self.engagement_id,
            )
        )

    async def close_conversation(self, full: bool = False) -> None:
        """
        Close the main dialog, or with full=True the whole conversation.

        Raises:
            StateError: If there is nothing to close
        """
        state = self.state
        conversation_id = state.conversation_id
        if full:
            if not conversation_id or not state.is_open:
                raise StateError("No open conversation found")
            await self.connection.send(self.builder.create_close_conversation(conversation_id))
            state.reset()
            await self.cache.set_conversation_id(None)
            self._spawn(self._mark_closed(), name="mark_closed")
            return

        if not conversation_id or not state.dialog:
            raise StateError("No conversationId or dialog found")
        await self.connection.send(self.builder.create_close_dialog(conversation_id, state.dialog.dialog_id))

    async def _mark_closed(self) -> None:
        await asyncio.sleep(self.settings.settle_delay_seconds)
        self.state.stage = Stage.CLOSE.value

    async def clear_history(self) -> None:
        """Close the dialog, then replace the cached unauthenticated token."""
        if self.state.conversation_id and self.state.dialog:
            await self.close_conversation()
        self._spawn(self._reset_token(), name="reset_token")

    async def _reset_token(self) -> None:
        await asyncio.sleep(self.settings.history_reset_delay_seconds)
        if self.account_id:
            await self.broker.reset(self.account_id)

    # =========================================================================
    # File Sharing
    # =========================================================================

    async def request_file_upload(
        self,
        file_name: str,
        content: bytes,
        content_type: str,
        preview: str | None = None,
    ) -> None:
        """
        Ask for a signed upload URL; the upload runs when it arrives.

        Raises:
            StateError: If there is no conversation
        """
        if not self.state.conversation_id:
            raise StateError("No conversationId found")
        self._pending_upload = PendingUpload(file_name, content, content_type, preview)
        await self.connection.send(
            self.builder.create_request_file_upload(len(content), file_type(content_type))
        )

    async def upload_file(self, body: FileUploadUrlBody) -> Any:
        """
        PUT the pending file to signed storage and publish it to the dialog.

        Raises:
            StateError: If no file is pending or the URL is not signed
            GatewayError: If the upload fails
        """
        upload = self._pending_upload
        if upload is None:
            raise StateError("No file found")
        conversation_id = self.state.conversation_id
        if not conversation_id or not self.account_id:
            raise StateError("No conversationId found")

        signature = body.query_params.get("temp_url_sig")
        expires = body.query_params.get("temp_url_expires")
        if not signature or not expires:
            raise StateError("Upload URL is not signed")

        domain = self.domains.require(self.account_id, FILE_STORAGE_SERVICE)
        result = await self.api.upload_file(
            self.account_id,
            upload.file_name,
            upload.content,
            upload.content_type,
            signature=str(signature),
            expires=str(expires),
            relative_path=body.relative_path,
            domain=domain,
        )
        self._pending_upload = None
        await self.connection.send(
            self.builder.create_publish_file(
                upload.file_name,
                body.relative_path,
                file_type(upload.content_type),
                upload.preview or "",
                self.state.dialog_id or conversation_id,
                conversation_id,
            )
        )
        logger.info(f"Uploaded {upload.file_name} to {body.relative_path}")
        return result

    # =========================================================================
    # Sub-protocols
    # =========================================================================

    async def submit_secure_form(self, invitation_id: str, submission_id: str) -> None:
        await self.forms.submit(
            invitation_id,
            submission_id,
            self.state.conversation_id,
            self.state.dialog_id,
        )

    async def accept_cobrowse(self) -> bool:
        return await self.cobrowse.accept()

    async def reject_cobrowse(self) -> bool:
        return await self.cobrowse.reject()

    async def end_cobrowse(self) -> bool:
        return await self.cobrowse.close()

    async def run_script(self, lines: list[str]) -> None:
        await self.script.run(lines)

    # =========================================================================
    # View
    # =========================================================================

    async def set_view(self, visible: bool, minimized: bool = False) -> None:
        """Update chat view visibility; focusing it marks agent messages read."""
        self.messages.set_view(visible, minimized)
        if not self.messages.is_focused:
            return
        unread: dict[str, list[int]] = {}
        for message in self.messages.messages:
            if (
                message.is_agent
                and message.status != MessageStatus.READ.value
                and message.sequence is not None
                and message.dialog_id
            ):
                unread.setdefault(message.dialog_id, []).append(message.sequence)
        for dialog_id, sequences in unread.items():
            await self._send_read_receipt(dialog_id, sequences)

    def group(self) -> list[Bubble]:
        return self.messages.group()

    def snapshot(self) -> dict[str, Any]:
        return {
            **self.state.snapshot(),
            "connection": self.connection.state.value,
            "messages": len(self.messages),
            "cobrowse": self.cobrowse.session.service_id if self.cobrowse.session else None,
        }

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _ensure_session(self) -> Session:
        visitor_id, session_id = await self.cache.get_session()
        if not visitor_id or not session_id:
            visitor_id = visitor_id or uuid4().hex
            session_id = session_id or uuid4().hex
            await self.cache.set_session(visitor_id, session_id)
            logger.info(f"Created tracking session {session_id}")
        return Session(visitor_id=visitor_id, session_id=session_id)

    async def _fresh_credential(self, reset: bool) -> Credential:
        if not self.account_id:
            raise StateError("No accountId found")
        return await self.broker.get_credential(self.account_id, reset=reset)

    async def _send_read_receipt(self, dialog_id: str, sequences: list[int]) -> None:
        if not self.connection.has_socket:
            logger.debug(f"No socket for read receipt in dialog {dialog_id}")
            return
        await self.connection.send(self.builder.create_read_receipt(dialog_id, sequences))

    async def _sender_name(self, event: MessagingEvent) -> str:
        return await self.processor.sender_name(event)

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