"""Tests for TokenBroker credential resolution."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from fakes import ACCOUNT_ID
from ums_client.auth.broker import CredentialTier, TokenBroker, describe_exchange_error
from ums_client.errors import AuthError, GatewayError


@pytest.fixture
def broker(api, cache) -> TokenBroker:
    return TokenBroker(api, cache)


# =============================================================================
# Primary Chain
# =============================================================================


class TestPrimaryChain:
    """Unauthenticated token, authorize, connector exchange."""

    @pytest.mark.asyncio
    async def test_hops_in_order(self, broker, gateway) -> None:
        credential = await broker.get_credential(ACCOUNT_ID)

        assert credential.token == "internal-token"
        assert credential.tier == CredentialTier.UNAUTHENTICATED_CONSUMER
        assert not credential.is_authenticated
        assert gateway.paths() == ["/consumer-jwt", "/authorize", "/connectors", "/connectors/1"]

    @pytest.mark.asyncio
    async def test_unauth_token_is_cached_durably(self, broker, api, cache, gateway) -> None:
        await broker.get_credential(ACCOUNT_ID)
        assert await cache.get_ext_jwt() == "ext-jwt-1"

        second = TokenBroker(api, cache)
        await second.get_credential(ACCOUNT_ID)

        assert gateway.paths().count("/consumer-jwt") == 1

    @pytest.mark.asyncio
    async def test_reset_issues_new_token(self, broker, cache) -> None:
        await broker.get_credential(ACCOUNT_ID)

        assert await broker.reset(ACCOUNT_ID) == "ext-jwt-2"
        assert await cache.get_ext_jwt() == "ext-jwt-2"

    @pytest.mark.asyncio
    async def test_connectors_fetched_once(self, broker, gateway) -> None:
        await broker.get_credential(ACCOUNT_ID)
        await broker.get_credential(ACCOUNT_ID, reset=True)

        assert gateway.paths().count("/connectors") == 1

    @pytest.mark.asyncio
    async def test_failed_hop_raises_auth_error(self, broker, gateway) -> None:
        gateway.fail("/connectors/1", 401, {"internalErrorCode": 1012})

        with pytest.raises(AuthError) as exc_info:
            await broker.get_credential(ACCOUNT_ID)

        assert exc_info.value.reason == "JWT_EXPIRED"
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_connector_raises(self, broker, gateway) -> None:
        gateway.fail("/connectors", 200, [])

        with pytest.raises(AuthError) as exc_info:
            await broker.get_credential(ACCOUNT_ID)

        assert exc_info.value.reason == "AC_CONNECTOR_NOT_FOUND"

    def test_describe_exchange_error(self) -> None:
        assert describe_exchange_error(GatewayError("x", 401, 9007)).startswith("CUSTOMER_JWT_NOT_VALID")
        assert describe_exchange_error(GatewayError("x", 401, 1011)) == "JWT_MISSING_CLAIMSET"
        assert describe_exchange_error(GatewayError("x", 401, 1025)).startswith("AC_CONNECTOR_TYPE_NOT_FOUND")
        assert describe_exchange_error(GatewayError("x", 403, 2006)) == "CAPTCHA_VERIFICATION_FAILED"
        assert describe_exchange_error(GatewayError("x", 401, 4242)) == "UNKNOWN"
        assert describe_exchange_error(GatewayError("plain", 500)) == "plain [500]"


# =============================================================================
# Elevated Chain
# =============================================================================


class TestElevatedChain:
    """Identity token exchange and the step-up short-circuit."""

    @pytest.mark.asyncio
    async def test_elevated_credential_preferred(self, api, cache, gateway) -> None:
        broker = TokenBroker(api, cache, identity_provider=AsyncMock(return_value="identity"))

        credential = await broker.get_credential(ACCOUNT_ID)

        assert credential.token == "elevated-token"
        assert credential.is_authenticated
        assert not credential.stepped_up
        assert "/connectors/1" in gateway.paths()

    @pytest.mark.asyncio
    async def test_elevated_failure_falls_back(self, api, cache, gateway) -> None:
        gateway.fail("/connectors/2", 401)
        broker = TokenBroker(api, cache, identity_provider=AsyncMock(return_value="identity"))

        credential = await broker.get_credential(ACCOUNT_ID)

        assert credential.token == "internal-token"

    @pytest.mark.asyncio
    async def test_no_identity_token_uses_primary(self, api, cache) -> None:
        broker = TokenBroker(api, cache, identity_provider=AsyncMock(return_value=None))

        credential = await broker.get_credential(ACCOUNT_ID)

        assert credential.token == "internal-token"

    @pytest.mark.asyncio
    async def test_step_up_marker_short_circuits(self, api, cache, gateway) -> None:
        await cache.set_consumer_id("U1")
        await cache.set_consumer_conversation("U1", "C-auth")
        gateway.fail("/authorize", 500)
        broker = TokenBroker(api, cache, identity_provider=AsyncMock(return_value="identity"))

        credential = await broker.get_credential(ACCOUNT_ID)
        await asyncio.sleep(0.01)

        assert credential.token == "elevated-token"
        assert credential.stepped_up

    @pytest.mark.asyncio
    async def test_primary_failure_is_fatal_without_marker(self, api, cache, gateway) -> None:
        gateway.fail("/authorize", 500)
        broker = TokenBroker(api, cache, identity_provider=AsyncMock(return_value="identity"))

        with pytest.raises(AuthError):
            await broker.get_credential(ACCOUNT_ID)
