"""Tests for SecureFormCoordinator."""

from unittest.mock import AsyncMock

import pytest

from fakes import TOKENIZER_DOMAIN, invitation_event, submission_event
from ums_client.errors import StateError
from ums_client.forms.coordinator import SecureFormCoordinator, secure_form_url
from ums_client.messages.models import MessageType
from ums_client.messages.store import MessageStore
from ums_client.protocol.builder import FrameBuilder
from ums_client.protocol.frames import MessagingEvent, OneTimeKeys

SENT_AT = 1_700_000_000_000
KEYS = OneTimeKeys(readOtk="read", writeOtk="write")


def event(data: dict) -> MessagingEvent:
    return MessagingEvent.model_validate(data)


class Clock:
    def __init__(self, now: int):
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture
def clock() -> Clock:
    return Clock(SENT_AT + 30000)


@pytest.fixture
def store() -> MessageStore:
    return MessageStore()


@pytest.fixture
def send() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def forms(store, cache, send, clock) -> SecureFormCoordinator:
    return SecureFormCoordinator(
        store,
        cache,
        FrameBuilder(),
        send,
        site_id="acc-1",
        tokenizer_domain=TOKENIZER_DOMAIN,
        now=clock,
    )


# =============================================================================
# Invitation & Token
# =============================================================================


class TestInvitation:
    """Invitation persistence and upload token handling."""

    @pytest.mark.asyncio
    async def test_invitation_requests_upload_token(self, forms, send, cache) -> None:
        await forms.on_invitation(event(invitation_event("inv-1")))

        send.assert_awaited_once()
        frame = send.await_args.args[0]
        assert frame.id == "inv-1"
        assert frame.type == "ms.GenerateUploadToken"
        assert frame.body["uploadable"] == {
            "formId": "form-1",
            "invitationId": "inv-1",
            "type": "SecureForm",
            "dialogId": "D1",
        }
        assert "event" in (await cache.get_secure_forms())["inv-1"]

    @pytest.mark.asyncio
    async def test_token_renders_one_message(self, forms, store) -> None:
        await forms.on_invitation(event(invitation_event("inv-1")))

        message = await forms.on_upload_token("inv-1", KEYS)

        assert len(store) == 1
        assert message.type == MessageType.SECURE_FORM_REQUEST.value
        assert message.title == "Card details"
        assert message.text == "ASSIGNED_AGENT has sent you a Secure Form:"
        assert not message.expired
        assert message.url == secure_form_url(TOKENIZER_DOMAIN, "acc-1", "inv-1", write_otk="write", read_otk="read")

    @pytest.mark.asyncio
    async def test_repeated_token_does_not_duplicate(self, forms, store) -> None:
        await forms.on_invitation(event(invitation_event("inv-1")))
        await forms.on_upload_token("inv-1", KEYS)
        await forms.on_upload_token("inv-1", OneTimeKeys(readOtk="r2", writeOtk="w2"))

        assert len(store) == 1
        assert "otk=write" in store.messages[0].url

    @pytest.mark.asyncio
    async def test_sender_name_is_injected(self, store, cache, send, clock) -> None:
        forms = SecureFormCoordinator(
            store, cache, FrameBuilder(), send,
            sender_name=AsyncMock(return_value="Ann"),
            tokenizer_domain=TOKENIZER_DOMAIN,
            now=clock,
        )
        await forms.on_invitation(event(invitation_event("inv-1")))

        message = await forms.on_upload_token("inv-1", KEYS)

        assert message.text == "Ann has sent you a Secure Form:"

    @pytest.mark.asyncio
    async def test_token_without_tokenizer_domain_raises(self, store, cache, send) -> None:
        forms = SecureFormCoordinator(store, cache, FrameBuilder(), send)
        await forms.on_invitation(event(invitation_event("inv-1")))

        with pytest.raises(StateError):
            await forms.on_upload_token("inv-1", KEYS)

    @pytest.mark.asyncio
    async def test_token_for_unknown_invitation_renders_nothing(self, forms, store) -> None:
        assert await forms.on_upload_token("inv-x", KEYS) is None
        assert len(store) == 0


# =============================================================================
# Expiry
# =============================================================================


class TestExpiry:
    """Expiry is a rendered state, never an error."""

    def test_expired_after_timeout(self, forms) -> None:
        assert not forms.is_expired(SENT_AT, now=SENT_AT + 30000)
        assert not forms.is_expired(SENT_AT, now=SENT_AT + 60000)
        assert forms.is_expired(SENT_AT, now=SENT_AT + 61000)

    @pytest.mark.asyncio
    async def test_expired_invitation_renders_expired(self, forms, clock) -> None:
        clock.now = SENT_AT + 61000
        await forms.on_invitation(event(invitation_event("inv-1", server_timestamp=SENT_AT)))

        message = await forms.on_upload_token("inv-1", KEYS)

        assert message.expired
        assert message.text == "secure form has expired"


# =============================================================================
# Submission
# =============================================================================


class TestSubmission:
    """Submit, acknowledgement and submission events."""

    @pytest.mark.asyncio
    async def test_submit_publishes_and_marks(self, forms, store, send) -> None:
        await forms.on_invitation(event(invitation_event("inv-1")))
        await forms.on_upload_token("inv-1", KEYS)

        await forms.submit("inv-1", "sub-1", "C1", "D1")

        frame = send.await_args.args[0]
        assert frame.id == "secure-form-submit-inv-1"
        assert frame.body["event"]["contentType"] == "forms/secure-submission"
        assert store.messages[0].submitted

    @pytest.mark.asyncio
    async def test_submit_without_dialog_raises(self, forms) -> None:
        with pytest.raises(StateError):
            await forms.submit("inv-1", "sub-1", "C1", None)

    @pytest.mark.asyncio
    async def test_ack_sets_submitted_text(self, forms, store) -> None:
        await forms.on_invitation(event(invitation_event("inv-1")))
        await forms.on_upload_token("inv-1", KEYS)

        forms.on_submit_ack("inv-1")

        assert store.messages[0].text == "You have submitted secure form: Card details"

    @pytest.mark.asyncio
    async def test_submission_updates_rendered_message(self, forms, store) -> None:
        await forms.on_invitation(event(invitation_event("inv-1")))
        await forms.on_upload_token("inv-1", KEYS)

        await forms.on_submission(event(submission_event("inv-1", sequence=2)))

        assert len(store) == 1
        assert store.messages[0].submitted

    @pytest.mark.asyncio
    async def test_submission_without_invitation_is_synthesized(self, forms, store) -> None:
        message = await forms.on_submission(event(submission_event("inv-9", "sub-9", sequence=4)))

        assert len(store) == 1
        assert message.submitted
        assert message.invitation_id == "inv-9"
        assert message.uid == "4-D1"
        assert message.text == "You have submitted a secure form"

    @pytest.mark.asyncio
    async def test_hidden_submission_is_not_synthesized(self, forms, store) -> None:
        hidden = submission_event("inv-9", audience="AGENTS_AND_MANAGERS")

        assert await forms.on_submission(event(hidden)) is None
        assert len(store) == 0


# =============================================================================
# Persistence
# =============================================================================


class TestPersistence:
    """Invitations survive a reload."""

    @pytest.mark.asyncio
    async def test_reload_re_renders_without_new_token(self, forms, cache, clock) -> None:
        await forms.on_invitation(event(invitation_event("inv-1")))
        await forms.on_upload_token("inv-1", KEYS)

        store = MessageStore()
        send = AsyncMock()
        reloaded = SecureFormCoordinator(
            store, cache, FrameBuilder(), send, tokenizer_domain=TOKENIZER_DOMAIN, now=clock,
        )
        await reloaded.load()
        await reloaded.on_invitation(event(invitation_event("inv-1")))

        send.assert_not_awaited()
        assert len(store) == 1
        assert "otk=write" in store.messages[0].url

    @pytest.mark.asyncio
    async def test_clear_forgets_invitations(self, forms, cache) -> None:
        await forms.on_invitation(event(invitation_event("inv-1")))

        await forms.clear()

        assert forms.forms == {}
        assert await cache.get_secure_forms() == {}
