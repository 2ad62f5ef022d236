"""Tests for engine settings and the engine event stream."""

import pytest

from ums_client.config import EngineSettings, settings_from_env
from ums_client.events import (
    EngineEventType,
    EventStream,
    create_cobrowse_filter,
    create_conversation_filter,
    create_timeline_filter,
)


class TestSettings:
    """Environment-based configuration."""

    def test_defaults(self, monkeypatch) -> None:
        for name in ("UMS_API_BASE_URL", "UMS_SOCKET_RETRIES", "UMS_GROUP_MESSAGES"):
            monkeypatch.delenv(name, raising=False)

        settings = settings_from_env(load_env_file=False)

        assert settings == EngineSettings()
        assert settings.socket_retries == 1
        assert settings.secure_form_timeout_ms == 60000

    def test_overrides(self, monkeypatch) -> None:
        monkeypatch.setenv("UMS_API_BASE_URL", "https://gw.example.com/api")
        monkeypatch.setenv("UMS_SOCKET_RETRIES", "4")
        monkeypatch.setenv("UMS_RETRY_DELAY", "0.5")
        monkeypatch.setenv("UMS_GROUP_MESSAGES", "false")

        settings = settings_from_env(load_env_file=False)

        assert settings.api_base_url == "https://gw.example.com/api"
        assert settings.socket_retries == 4
        assert settings.retry_delay_seconds == 0.5
        assert settings.group_messages is False


class TestEventStream:
    """Filtered fan-out to subscriptions."""

    @pytest.mark.asyncio
    async def test_filters(self) -> None:
        stream = EventStream()
        everything = stream.subscribe("all")
        cobrowse = stream.subscribe("cobrowse", create_cobrowse_filter())
        conversation = stream.subscribe("c1", create_conversation_filter("C1"))

        stream.emit(EngineEventType.COBROWSE_OFFERED, "offered")
        stream.emit(EngineEventType.CONVERSATION_OPENED, "open", conversation_id="C1")

        assert everything.get_nowait().event_type == EngineEventType.COBROWSE_OFFERED
        assert everything.get_nowait().event_type == EngineEventType.CONVERSATION_OPENED
        assert cobrowse.get_nowait().event_type == EngineEventType.COBROWSE_OFFERED
        assert cobrowse.get_nowait() is None
        assert conversation.get_nowait().conversation_id == "C1"
        assert conversation.get_nowait() is None

    @pytest.mark.asyncio
    async def test_duplicate_subscription_raises(self) -> None:
        stream = EventStream()
        stream.subscribe("ui")

        with pytest.raises(ValueError):
            stream.subscribe("ui")

    @pytest.mark.asyncio
    async def test_full_queue_drops(self) -> None:
        stream = EventStream()
        small = stream.subscribe("small", max_queue_size=1)

        stream.emit(EngineEventType.MESSAGES_CHANGED, "1")
        stream.emit(EngineEventType.MESSAGES_CHANGED, "2")

        assert small.stats["events_dropped"] == 1

    @pytest.mark.asyncio
    async def test_close_ends_iteration(self) -> None:
        stream = EventStream()
        subscription = stream.subscribe("ui")
        stream.emit(EngineEventType.AGENT_TYPING, "COMPOSING")

        stream.close_all()

        seen = [event.message async for event in subscription]
        assert seen == ["COMPOSING"]

    @pytest.mark.asyncio
    async def test_drain_and_timeline_filter(self) -> None:
        stream = EventStream()
        timeline = stream.subscribe("timeline", create_timeline_filter())

        stream.emit(EngineEventType.MESSAGES_CHANGED, "1")
        stream.emit(EngineEventType.CONNECTION_STATE, "CONNECTED")
        stream.emit(EngineEventType.AGENT_TYPING, "COMPOSING")

        assert [event.message for event in timeline.drain()] == ["1", "COMPOSING"]
        assert timeline.drain() == []

    @pytest.mark.asyncio
    async def test_listeners(self) -> None:
        stream = EventStream()
        seen: list[str] = []

        def broken(event) -> None:
            raise RuntimeError("render failed")

        stream.add_listener(broken)
        remove = stream.add_listener(lambda event: seen.append(event.message))

        assert stream.emit(EngineEventType.MESSAGES_CHANGED, "1") == 1
        remove()
        stream.emit(EngineEventType.MESSAGES_CHANGED, "2")

        assert seen == ["1"]
        assert stream.stats["listener_count"] == 1
