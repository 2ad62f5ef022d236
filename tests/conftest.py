"""Shared fixtures for the ums_client test suite."""

from collections.abc import AsyncGenerator

import httpx
import pytest

from fakes import FakeGateway, FakeSocket, FakeSocketFactory, connect_engine
from ums_client.config import EngineSettings
from ums_client.gateway.api import MessagingApi
from ums_client.session.orchestrator import SessionOrchestrator
from ums_client.storage.local import LocalStateCache
from ums_client.storage.memory import InMemoryKeyValueStore


@pytest.fixture
def settings() -> EngineSettings:
    """Engine settings with every timer collapsed for fast tests."""
    return EngineSettings(
        api_base_url="http://gateway.test/api",
        socket_retries=1,
        retry_delay_seconds=0,
        heartbeat_interval_seconds=3600,
        settle_delay_seconds=0,
        first_message_delay_seconds=0,
        history_reset_delay_seconds=0,
        script_timer_seconds=0,
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
async def api(gateway: FakeGateway) -> AsyncGenerator[MessagingApi, None]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(gateway.handler))
    yield MessagingApi("http://gateway.test/api", client=client)
    await client.aclose()


@pytest.fixture
def kv_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def cache(kv_store: InMemoryKeyValueStore) -> LocalStateCache:
    return LocalStateCache(kv_store)


@pytest.fixture
def socket_factory() -> FakeSocketFactory:
    return FakeSocketFactory()


@pytest.fixture
async def engine(
    settings: EngineSettings,
    api: MessagingApi,
    kv_store: InMemoryKeyValueStore,
    socket_factory: FakeSocketFactory,
) -> AsyncGenerator[SessionOrchestrator, None]:
    engine = SessionOrchestrator(settings, store=kv_store, api=api, socket_factory=socket_factory)
    yield engine
    await engine.shutdown()


@pytest.fixture
async def connected(engine: SessionOrchestrator, socket_factory: FakeSocketFactory) -> FakeSocket:
    """Socket of an engine that is initialized and subscribed to conversations."""
    return await connect_engine(engine, socket_factory)
