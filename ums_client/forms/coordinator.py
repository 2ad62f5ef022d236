"""
Secure Form Coordinator

Drives the secure form flow:

1. An agent's invitation arrives as a forms/secure-invitation content event
2. The invitation is persisted and a one-time upload token is requested
3. The token response (reqId = invitation id) yields a signed form URL
   and one timeline message is rendered
4. The consumer submits through the form; the submission is published
   and reconciled with the rendered message

Invitations are persisted under `secureForms` so a reload can resume
pending forms. Expiry is a state on the rendered message, never an error.
"""

import logging
from typing import Any, Awaitable, Callable

from ums_client.errors import StateError
from ums_client.messages.models import ClientMessage, MessageType, message_uid, now_ms
from ums_client.messages.store import MessageStore
from ums_client.protocol.builder import FrameBuilder
from ums_client.protocol.frames import (
    Audience,
    MessagingEvent,
    OneTimeKeys,
    RequestFrame,
    SecureFormMessage,
)
from ums_client.storage.local import LocalStateCache

logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT_MS = 60000

# Form styling passed through to the tokenizer page, already double-encoded
FORM_CSS = (
    "%257B%25221%2522%253A%257B%2522bc%2522%253A%2522%2523FFFFFF%2522%252C%2522f%2522%253A"
    "%2522Arial%252CHelvetica%252Csans-serif%2522%252C%2522c%2522%253A%2522%25236D6E70%2522"
    "%257D%252C%25222%2522%253A%257B%2522bc%2522%253A%2522%25230363ad%2522%252C%2522c%2522"
    "%253A%2522%2523FFFFFF%2522%257D%257D"
)

FrameSender = Callable[[RequestFrame], Awaitable[None]]
SenderName = Callable[[MessagingEvent], Awaitable[str]]


def secure_form_url(
    tokenizer_domain: str,
    site_id: str,
    invitation_id: str,
    write_otk: str,
    read_otk: str,
    lang: str = "en-US",
) -> str:
    """Signed tokenizer URL for one form invitation."""
    base = f"https://{tokenizer_domain}/pcigw"
    return (
        f"{base}/pci_dynamic_le.jsp"
        f"?siteid={site_id}"
        f"&redirect={base}/pci_dynamic_submitted_le.html"
        f"&css={FORM_CSS}"
        f"&hideLogo=false"
        f"&otkJson={site_id}%3A{invitation_id}"
        f"&lang={lang}"
        f"&otk={write_otk}"
        f"&formOtk={read_otk}"
    )


def submitted_text(title: str | None) -> str:
    if title:
        return f"You have submitted secure form: {title}"
    return "You have submitted a secure form"


def invitation_text(sender: str, title: str | None, submitted: bool, expired: bool) -> str:
    """Timeline text for a form invitation in its current state."""
    if submitted:
        return submitted_text(title)
    if expired:
        return "secure form has expired"
    return f"{sender} has sent you a Secure Form:"


async def _role_name(event: MessagingEvent) -> str:
    return event.role


class SecureFormCoordinator:
    """
    Secure form invitations, tokens and submissions.

    Attributes:
        site_id: Account id the tokenizer page is scoped to
        tokenizer_domain: Host of the tokenizer service
        timeout_ms: Invitation lifetime
    """

    def __init__(
        self,
        store: MessageStore,
        cache: LocalStateCache,
        builder: FrameBuilder,
        send: FrameSender,
        sender_name: SenderName | None = None,
        site_id: str = "",
        tokenizer_domain: str | None = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        now: Callable[[], int] = now_ms,
    ):
        """
        Initialize the coordinator.

        Args:
            store: Timeline the form messages are rendered into
            cache: Durable state holding the `secureForms` map
            builder: Frame builder
            send: Publishes a frame on the socket
            sender_name: Display name for an event's originator
            site_id: Account id for the tokenizer page
            tokenizer_domain: Tokenizer host (resolved from the account's domains)
            timeout_ms: Invitation lifetime in milliseconds
            now: Clock in epoch milliseconds
        """
        self._store = store
        self._cache = cache
        self._builder = builder
        self._send = send
        self._sender_name = sender_name or _role_name
        self.site_id = site_id
        self.tokenizer_domain = tokenizer_domain
        self.timeout_ms = timeout_ms
        self._now = now
        self._forms: dict[str, dict[str, Any]] = {}
        self._submissions: dict[str, dict[str, Any]] = {}

    @property
    def forms(self) -> dict[str, dict[str, Any]]:
        return dict(self._forms)

    async def load(self) -> None:
        """Resume invitations persisted by a previous session."""
        self._forms = await self._cache.get_secure_forms()
        if self._forms:
            logger.info(f"Resumed {len(self._forms)} pending secure forms")

    def is_expired(self, server_timestamp: int, now: int | None = None) -> bool:
        """Expired iff now > server_timestamp + timeout."""
        current = self._now() if now is None else now
        return server_timestamp + self.timeout_ms < current

    def build_secure_form_url(self, invitation_id: str, keys: OneTimeKeys) -> str:
        if not self.tokenizer_domain:
            raise StateError("No tokenizer domain found")
        return secure_form_url(
            self.tokenizer_domain,
            self.site_id,
            invitation_id,
            write_otk=keys.write_otk,
            read_otk=keys.read_otk,
        )

    # =========================================================================
    # Inbound
    # =========================================================================

    async def on_invitation(self, event: MessagingEvent) -> None:
        """Persist an invitation and request its upload token, or re-render a resolved one."""
        form = _form_message(event)
        if form is None:
            logger.warning(f"Invitation without form details in dialog {event.dialog_id}")
            return

        invitation_id = form.invitation_id
        if self._forms.get(invitation_id, {}).get("url"):
            await self.render(invitation_id)
            return

        await self._remember(invitation_id, {"event": event.model_dump(by_alias=True, mode="json")})
        self._remember_submission(form)
        await self._send(
            self._builder.create_secure_form_upload_token(form.form_id, invitation_id, event.dialog_id)
        )
        logger.info(f"Requested upload token for secure form {invitation_id}")

    async def on_upload_token(self, invitation_id: str, keys: OneTimeKeys) -> ClientMessage | None:
        """Derive the signed URL for an invitation and render it."""
        if not self._forms.get(invitation_id, {}).get("url"):
            url = self.build_secure_form_url(invitation_id, keys)
            await self._remember(invitation_id, {"url": url})
        return await self.render(invitation_id)

    async def on_submission(self, event: MessagingEvent) -> ClientMessage | None:
        """
        Reconcile a submission event with the rendered invitation.

        With no rendered invitation a complete message is synthesized from
        the event and any cached invitation metadata.
        """
        form = _form_message(event)
        if form is None or not form.submission_id:
            return None

        invitation_id = form.invitation_id
        existing = self._store.find_by_invitation(invitation_id)
        cached = self._invitation_form(invitation_id)
        self._remember_submission(form)

        title = (existing.title if existing else None) or form.title or (cached.title if cached else None)
        text = submitted_text(title)
        if existing:
            existing.text = text
            existing.submitted = True
            self._store.touch()
            return existing

        if event.message_audience != Audience.ALL.value:
            return None

        message = ClientMessage(
            uid=message_uid(event.sequence, event.dialog_id),
            sequence=event.sequence,
            conversation_id=event.conversation_id,
            dialog_id=event.dialog_id,
            originator_id=event.originator_id,
            role=event.role,
            sender=await self._sender_name(event),
            is_agent=event.is_agent,
            type=MessageType.SECURE_FORM_REQUEST.value,
            text=text,
            server_timestamp=event.server_timestamp,
            invitation_id=invitation_id,
            form_id=form.form_id or (cached.form_id if cached else None),
            title=title,
            url=self._forms.get(invitation_id, {}).get("url"),
            submitted=True,
        )
        await self._store.append(message)
        return message

    async def render(self, invitation_id: str) -> ClientMessage | None:
        """Render (or refresh) the timeline message for a persisted invitation."""
        record = self._forms.get(invitation_id)
        if not record or "event" not in record:
            logger.error(f"Cannot find secure form data for {invitation_id}")
            return None

        event = MessagingEvent.model_validate(record["event"])
        form = _form_message(event)
        title = form.title if form else None
        sender = await self._sender_name(event)
        expired = self.is_expired(event.server_timestamp)
        submitted = bool(self._submissions.get(invitation_id, {}).get("submission_id"))
        text = invitation_text(sender, title, submitted, expired)

        existing = self._store.find_by_invitation(invitation_id)
        if existing:
            existing.submitted = submitted
            existing.expired = expired
            existing.text = text
            existing.url = record.get("url") or existing.url
            self._store.touch()
            return existing

        message = ClientMessage(
            uid=message_uid(event.sequence, event.dialog_id),
            sequence=event.sequence,
            conversation_id=event.conversation_id,
            dialog_id=event.dialog_id,
            originator_id=event.originator_id,
            role=event.role,
            sender=sender,
            is_agent=event.is_agent,
            type=MessageType.SECURE_FORM_REQUEST.value,
            text=text,
            server_timestamp=event.server_timestamp,
            invitation_id=invitation_id,
            form_id=form.form_id if form else None,
            title=title,
            url=record.get("url"),
            submitted=submitted,
            expired=expired,
        )
        await self._store.append(message)
        return message

    # =========================================================================
    # Outbound
    # =========================================================================

    async def submit(
        self,
        invitation_id: str,
        submission_id: str,
        conversation_id: str | None,
        dialog_id: str | None,
    ) -> None:
        """
        Publish a completed form.

        Raises:
            StateError: If there is no active conversation or dialog
        """
        if not dialog_id or not conversation_id:
            raise StateError("No dialogId or conversationId found")
        await self._send(
            self._builder.create_secure_form_submit(dialog_id, conversation_id, submission_id, invitation_id)
        )
        message = self._store.find_by_invitation(invitation_id)
        if message:
            message.submitted = True
            self._store.touch()

    def on_submit_ack(self, invitation_id: str) -> None:
        message = self._store.find_by_invitation(invitation_id)
        if message is None:
            return
        message.submitted = True
        message.text = submitted_text(message.title)
        self._store.touch()

    async def clear(self) -> None:
        """Forget persisted invitations."""
        self._forms = {}
        await self._cache.clear_secure_forms()

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _remember(self, invitation_id: str, params: dict[str, Any]) -> None:
        self._forms.setdefault(invitation_id, {}).update(params)
        await self._cache.set_secure_forms(self._forms)

    def _remember_submission(self, form: SecureFormMessage) -> None:
        cached = self._submissions.setdefault(form.invitation_id, {})
        for key, value in (
            ("form_id", form.form_id),
            ("title", form.title),
            ("submission_id", form.submission_id),
        ):
            if value is not None:
                cached[key] = value

    def _invitation_form(self, invitation_id: str) -> SecureFormMessage | None:
        record = self._forms.get(invitation_id)
        if not record or "event" not in record:
            return None
        return _form_message(MessagingEvent.model_validate(record["event"]))


def _form_message(event: MessagingEvent) -> SecureFormMessage | None:
    content = event.event
    message = getattr(content, "message", None)
    if isinstance(message, SecureFormMessage):
        return message
    return None
