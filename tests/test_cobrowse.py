"""Tests for CobrowseCoordinator."""

from unittest.mock import AsyncMock

import pytest

from ums_client.cobrowse.coordinator import COBROWSE_CHANNEL, CobrowseCoordinator, describe_mode
from ums_client.events import EngineEventType, EventStream
from ums_client.messages.models import MessageType
from ums_client.messages.store import MessageStore
from ums_client.protocol.frames import DialogDetails

NOW_MS = 1_700_000_000_000


def offer(service_id: str = "svc-1", mode: str = "COBROWSE", expires: float | None = None) -> DialogDetails:
    meta: dict = {"serviceId": service_id, "mode": mode}
    if expires is not None:
        meta["expires"] = expires
    return DialogDetails.model_validate({
        "dialogId": f"dlg-{service_id}",
        "dialogType": "MAIN",
        "channelType": "COBROWSE",
        "state": "OPEN",
        "metaData": meta,
    })


@pytest.fixture
def store() -> MessageStore:
    return MessageStore()


@pytest.fixture
def signal() -> AsyncMock:
    channel = AsyncMock()
    channel.publish = AsyncMock()
    return channel


@pytest.fixture
def cobrowse(store, signal) -> CobrowseCoordinator:
    coordinator = CobrowseCoordinator(store, signal=signal, now=lambda: NOW_MS)
    coordinator.set_identity("visitor-1", "session-1")
    return coordinator


def signal_names(signal: AsyncMock) -> list[str]:
    return [call.args[1] for call in signal.publish.await_args_list]


# =============================================================================
# Offers
# =============================================================================


class TestOffer:
    """Incoming co-browse dialogs."""

    @pytest.mark.asyncio
    async def test_offer_publishes_signal_and_message(self, cobrowse, store, signal) -> None:
        session = await cobrowse.on_offer(offer(), sent_ts=NOW_MS - 5, agent_id="agent-1", conversation_id="C1")

        assert session.service_id == "svc-1"
        assert not session.expired
        channel, name, payload = signal.publish.await_args.args
        assert channel == COBROWSE_CHANNEL
        assert name == "cobrowseOffered"
        assert payload["agentId"] == "agent-1"
        assert payload["ssid"] == "session-1"
        assert payload["svid"] == "visitor-1"

        message = store.messages[0]
        assert message.type == MessageType.COBROWSE_REQUEST.value
        assert message.server_timestamp == NOW_MS - 5
        assert message.cobrowse_metadata["serviceId"] == "svc-1"

    @pytest.mark.asyncio
    async def test_repeated_offer_is_ignored(self, cobrowse, store, signal) -> None:
        await cobrowse.on_offer(offer())

        assert await cobrowse.on_offer(offer()) is None
        assert len(store) == 1
        assert signal_names(signal) == ["cobrowseOffered"]

    @pytest.mark.asyncio
    async def test_new_offer_closes_previous(self, cobrowse, signal) -> None:
        await cobrowse.on_offer(offer("svc-1"))

        await cobrowse.on_offer(offer("svc-2"))

        assert cobrowse.session.service_id == "svc-2"
        assert signal_names(signal) == ["cobrowseOffered", "cobrowseEnded", "cobrowseOffered"]
        ended = signal.publish.await_args_list[1].args[2]
        assert ended["serviceId"] == "svc-1"

    @pytest.mark.asyncio
    async def test_expiry_is_evaluated_on_arrival(self, cobrowse) -> None:
        session = await cobrowse.on_offer(offer(expires=NOW_MS / 1000 - 1))

        assert session.expired

    @pytest.mark.asyncio
    async def test_events_channel_when_no_signal(self, store) -> None:
        events = EventStream()
        seen = events.subscribe("seen")
        cobrowse = CobrowseCoordinator(store, events=events, now=lambda: NOW_MS)

        await cobrowse.on_offer(offer())

        types = []
        while (event := seen.get_nowait()) is not None:
            types.append(event.event_type)
        assert EngineEventType.COBROWSE_SIGNAL in types
        assert EngineEventType.COBROWSE_OFFERED in types


# =============================================================================
# Answers
# =============================================================================


class TestAnswer:
    """accept, reject and close."""

    @pytest.mark.asyncio
    async def test_accept(self, cobrowse, store, signal) -> None:
        await cobrowse.on_offer(offer(mode="VIDEO_CALL"))

        assert await cobrowse.accept()

        assert cobrowse.session.accepted
        assert signal_names(signal)[-1] == "cobrowseAccepted"
        assert store.messages[-1].text == "you have accepted a video call"

    @pytest.mark.asyncio
    async def test_accept_expired_offer_fails(self, cobrowse, signal) -> None:
        await cobrowse.on_offer(offer(expires=1))

        assert not await cobrowse.accept()
        assert signal_names(signal) == ["cobrowseOffered"]

    @pytest.mark.asyncio
    async def test_accept_without_offer_fails(self, cobrowse) -> None:
        assert not await cobrowse.accept()
        assert not await cobrowse.reject()
        assert not await cobrowse.close()

    @pytest.mark.asyncio
    async def test_reject(self, cobrowse, store, signal) -> None:
        await cobrowse.on_offer(offer(mode="VOICE_CALL"))

        assert await cobrowse.reject()

        assert not cobrowse.is_active
        assert signal_names(signal)[-1] == "cobrowseDeclined"
        assert store.messages[-1].type == MessageType.COBROWSE_DECLINED.value
        assert store.messages[-1].text == "you have declined a voice call"

    @pytest.mark.asyncio
    async def test_close(self, cobrowse, store, signal) -> None:
        await cobrowse.on_offer(offer())
        await cobrowse.accept()

        assert await cobrowse.close()

        assert not cobrowse.is_active
        assert signal_names(signal)[-1] == "cobrowseEnded"
        assert store.messages[-1].text == "your cobrowse session has ended"

    def test_describe_mode(self) -> None:
        assert describe_mode("VIDEO_CALL") == "video call"
        assert describe_mode("VOICE_CALL") == "voice call"
        assert describe_mode(None) == "cobrowse session"
