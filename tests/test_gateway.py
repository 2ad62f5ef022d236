"""Tests for the REST gateway, domain resolver and user directory."""

import json

import httpx
import pytest

from fakes import ACCOUNT_ID, MESSAGING_DOMAIN, SWIFT_DOMAIN
from ums_client.errors import GatewayError, StateError
from ums_client.gateway.api import MessagingApi
from ums_client.gateway.directory import (
    MESSAGING_SERVICE,
    DomainResolver,
    UserDirectory,
    ums_url,
)


# =============================================================================
# MessagingApi
# =============================================================================


class TestMessagingApi:
    """Routes, payloads and error mapping."""

    @pytest.mark.asyncio
    async def test_domains(self, api) -> None:
        domains = await api.get_domains(ACCOUNT_ID)

        assert {d.service: d.base_uri for d in domains}["asyncMessagingEnt"] == MESSAGING_DOMAIN

    @pytest.mark.asyncio
    async def test_authorize_posts_id_token(self, api, gateway) -> None:
        token = await api.authorize(ACCOUNT_ID, "ext-jwt")

        assert token == "authorize-token"
        request = gateway.requests[-1]
        assert request.method == "POST"
        assert request.url.path == f"/api/messaging/{ACCOUNT_ID}/authorize"
        assert json.loads(request.content) == {"id_token": "ext-jwt"}

    @pytest.mark.asyncio
    async def test_connector_exchange(self, api) -> None:
        assert await api.exchange_via_connector(ACCOUNT_ID, 1, "authorize-token") == "internal-token"

    @pytest.mark.asyncio
    async def test_error_body_maps_internal_code(self, api, gateway) -> None:
        gateway.fail("/connectors/2", 401, {"internalErrorCode": 1012})

        with pytest.raises(GatewayError) as exc_info:
            await api.exchange_via_connector(ACCOUNT_ID, 2, "identity")

        assert exc_info.value.status_code == 401
        assert exc_info.value.internal_error_code == 1012

    @pytest.mark.asyncio
    async def test_missing_token_raises(self, api, gateway) -> None:
        gateway.fail("/consumer-jwt", 200, {})

        with pytest.raises(GatewayError):
            await api.get_unauth_token(ACCOUNT_ID)

    @pytest.mark.asyncio
    async def test_unexpected_user_list_raises_gateway_error(self, api, gateway) -> None:
        gateway.failures["/users"] = httpx.Response(200, json=[{"id": "agent-1"}])

        with pytest.raises(GatewayError):
            await api.get_users(ACCOUNT_ID)

        gateway.failures["/users"] = httpx.Response(200, json={"users": []})
        with pytest.raises(GatewayError):
            await api.get_users(ACCOUNT_ID)

    @pytest.mark.asyncio
    async def test_non_json_success_body_raises_gateway_error(self, api, gateway) -> None:
        gateway.failures["/users"] = httpx.Response(200, text="<html>maintenance</html>")

        with pytest.raises(GatewayError) as exc_info:
            await api.get_users(ACCOUNT_ID)

        assert exc_info.value.status_code == 200

    @pytest.mark.asyncio
    async def test_transport_failure_raises(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(refuse)) as client:
            api = MessagingApi("http://gateway.test/api", client=client)
            with pytest.raises(GatewayError) as exc_info:
                await api.get_domains(ACCOUNT_ID)

        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_upload_headers(self, api, gateway) -> None:
        await api.upload_file(
            ACCOUNT_ID, "a.txt", b"hello", "text/plain",
            signature="sig", expires="99", relative_path="/p/a.txt", domain=SWIFT_DOMAIN,
        )

        request = gateway.requests[-1]
        assert request.method == "PUT"
        assert request.headers["size"] == "5"
        assert request.headers["relativepath"] == "/p/a.txt"


# =============================================================================
# Directory
# =============================================================================


class TestDomainResolver:
    """Cached service lookup."""

    @pytest.mark.asyncio
    async def test_resolve_is_cached(self, api, gateway) -> None:
        resolver = DomainResolver(api)

        await resolver.resolve(ACCOUNT_ID)
        await resolver.resolve(ACCOUNT_ID)

        assert gateway.paths().count("/domains") == 1
        assert resolver.require(ACCOUNT_ID, MESSAGING_SERVICE) == MESSAGING_DOMAIN

    @pytest.mark.asyncio
    async def test_require_missing_service_raises(self, api) -> None:
        resolver = DomainResolver(api)

        with pytest.raises(StateError):
            resolver.require(ACCOUNT_ID, MESSAGING_SERVICE)

    def test_ums_url(self) -> None:
        assert ums_url("host", "42") == "wss://host/ws_api/account/42/messaging/consumer?v=3"


class TestUserDirectory:
    """Participant profiles."""

    @pytest.mark.asyncio
    async def test_display_name(self, api, gateway) -> None:
        directory = UserDirectory(api)

        assert await directory.display_name(ACCOUNT_ID, "agent-1", "ASSIGNED_AGENT") == "Ann"
        assert await directory.display_name(ACCOUNT_ID, "agent-9", "ASSIGNED_AGENT") == "ASSIGNED_AGENT"
        assert gateway.paths().count("/users") == 1

    @pytest.mark.asyncio
    async def test_failed_lookup_is_not_cached(self, api, gateway) -> None:
        directory = UserDirectory(api)
        gateway.fail("/users", 503)

        assert await directory.get(ACCOUNT_ID, "agent-1") is None

        del gateway.failures["/users"]
        profile = await directory.get(ACCOUNT_ID, "agent-1")
        assert profile.nickname == "Ann"

    @pytest.mark.asyncio
    async def test_malformed_user_list_degrades_to_fallback(self, api, gateway) -> None:
        directory = UserDirectory(api)
        gateway.failures["/users"] = httpx.Response(200, json=[{"id": "agent-1"}])

        assert await directory.display_name(ACCOUNT_ID, "agent-1", "ASSIGNED_AGENT") == "ASSIGNED_AGENT"

        del gateway.failures["/users"]
        assert await directory.display_name(ACCOUNT_ID, "agent-1", "ASSIGNED_AGENT") == "Ann"
