"""
Token Broker

Executes the multi-hop credential exchange required before the consumer
socket can authenticate.

Primary chain (always runs, failure is fatal):
1. Unauthenticated consumer token, cached durably, refreshed only when absent or reset
2. Authorize token scoped to the account
3. Internal token from the "unauth implicit" connector

Elevated chain (runs concurrently when an external identity token exists,
best-effort): exchange the identity token through the authenticated
connector. When it succeeds and the consumer already holds a stepped-up
conversation marker, the elevated credential is returned without waiting
for the primary chain.

Security: token values are never logged, only which hop ran.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable

from pydantic import BaseModel, Field

from ums_client.errors import AuthError, GatewayError
from ums_client.gateway.api import Connector, MessagingApi
from ums_client.storage.local import LocalStateCache

logger = logging.getLogger(__name__)


UNAUTHENTICATED_CONNECTOR = "unauth implicit"
AUTHENTICATED_CONNECTOR = "DEMOBUILDER"

# Readable reasons for the identity provider's internalErrorCode values
AUTHENTICATION_ERRORS: dict[int, str] = {
    9000: "DEFAULT",
    9001: "SERVER_ERROR",
    9007: "CUSTOMER_JWT_NOT_VALID - failed to validate customer JWT",
    9008: "LP_JWT_NOT_VALID - failed to validate LP JWT",
    9009: "ESAPI_ERROR - esapi validation errors",
    9010: "SERVICE_TIMEOUT - idp controller timed out",
    9011: "CUSTOMER_AUTH_FAILED - validation authcode against customer site failed",
    9012: "INPUT_VALIDATION_ERROR - input is not valid",
    9013: "AUTHENTICATION_TIMEOUT - the customer endpoint auth call timed out",
    9014: "AUTHENTICATE_EXCEPTION - authentication encountered unexpected error",
    9015: "UNSUPPORTED_AUTH_TYPE - connector type is not supported",
    1001: "PARSE_ERROR - failed to parse JWT",
    1003: "NO_SUCH_ALGORITHM",
    1004: "JOSE_EXCEPTION - failed to decrypt JWE",
    1005: "INVALID_KEY_SPEC",
    1006: "UNSUPPORTED_ENCODING",
    1007: "SNMP_INIT_FAILED",
    1008: "JWT_NOT_VALID - input is not in JWT format",
    1009: "JWT_PARSING_ERROR",
    1010: "LP_JWT_PARSING_ERROR",
    1011: "JWT_MISSING_CLAIMSET",
    1012: "JWT_EXPIRED",
    1022: "AC_CLIENT_INIT_FAILED",
    1023: "AC_CONNECTOR_FAILED - failed to fetch connector configuration",
    1024: "AC_CONNECTOR_NOT_FOUND - no connector found",
    1025: "AC_CONNECTOR_TYPE_NOT_FOUND - connector found but the type is not supported",
    1026: "SDE_PARSE_EXCEPTION",
    1027: "RSA_DECRYPTOR_INIT_ERROR",
    1028: "RSA_VERIFIER_INIT_ERROR - the customer public key is not valid",
    1029: "AES_SECRET_DECODING_ERROR - failed to decode hex AES secret",
    1030: "ENCRYPTION_INIT_FAILED",
    1031: "ENCRYPTION_FAILED",
    1032: "DECRYPTION_INIT_FAILED",
    1033: "DECRYPTION_DECODE_EXCEPTION",
    1034: "DECRYPTION_EXCEPTION",
    1036: "DEPENDENCY_TESTER_INIT_FAILED - failed to create health service dependency tester",
    1037: "LE_AUTH_DESERIALIZER_FAILED - failed to deserialize auth data",
    1038: "JWK_PARSE_FAILED - failed to parse JWK data",
    1039: "SITE_SETTINGS_TYPE_NOT_FOUND - site settings not found",
    1040: "SITE_SETTINGS_JWK_NOT_FOUND - site settings JWK not found",
    1041: "JWK_ID_NOT_FOUND - JWK kid was not found",
    1042: "MULTIPLE_JWK_WITHOUT_KID_HEADER - no kid header while multiple JWKs are configured",
    1043: "SSL_INIT_FAILED",
    1044: "CASSANDRA_CLIENT_INIT_FAILED",
    1045: "BLACKLIST_UPDATE_FAILED",
    1046: "BLACKLIST_READ_FAILED",
    1047: "BLACKLIST_ADD_FAILED",
    1048: "BLACKLIST_REMOVE_FAILED",
    1049: "UN_AUTH_JWT_FOUND_IN_BLACKLIST",
    1050: "AC_PROVISION_DATA_NOT_FOUND - no provision feature found",
    2001: "NON_AUTH_JWT_REFRESH_EXPIRED",
    2002: "NON_AUTH_JWT_INVALID_SIGNATURE",
    2004: "NON_AUTH_JWT_WRONG_ACCOUNT_ID",
    2005: "NON_AUTH_JWT_MESSAGING_FEATURE_OFF",
    2006: "CAPTCHA_VERIFICATION_FAILED",
    2007: "CAPTCHA_VERIFICATION_SERVICE_ERROR",
}


class CredentialTier(str, Enum):
    """Trust tiers a credential can belong to."""
    UNAUTHENTICATED_CONSUMER = "unauthenticated_consumer"
    AUTHENTICATED_CONSUMER = "authenticated_consumer"
    BRAND = "brand"


class Credential(BaseModel):
    """Bearer credential for the socket's init frame."""
    token: str = Field(..., repr=False, description="JWT presented in ConsumerAuthentication")
    tier: CredentialTier = Field(default=CredentialTier.UNAUTHENTICATED_CONSUMER)
    stepped_up: bool = Field(
        default=False,
        description="Returned early because the consumer already holds a stepped-up conversation",
    )

    @property
    def is_authenticated(self) -> bool:
        return self.tier != CredentialTier.UNAUTHENTICATED_CONSUMER


IdentityProvider = Callable[[], Awaitable[str | None]]


def describe_exchange_error(error: GatewayError) -> str:
    """Readable reason for a failed connector exchange."""
    if error.internal_error_code is not None:
        return AUTHENTICATION_ERRORS.get(error.internal_error_code, "UNKNOWN")
    return str(error)


class TokenBroker:
    """
    Resolves socket credentials for an account.

    Attributes:
        identity_tier: Tier assigned to credentials from the elevated chain
    """

    def __init__(
        self,
        api: MessagingApi,
        cache: LocalStateCache,
        identity_provider: IdentityProvider | None = None,
        identity_tier: CredentialTier = CredentialTier.AUTHENTICATED_CONSUMER,
        unauthenticated_connector: str = UNAUTHENTICATED_CONNECTOR,
        authenticated_connector: str = AUTHENTICATED_CONNECTOR,
    ):
        """
        Initialize the broker.

        Args:
            api: REST gateway
            cache: Durable state (holds the unauthenticated token and step-up markers)
            identity_provider: Returns the external identity token, or None when anonymous
            identity_tier: Tier for elevated credentials (consumer or brand context)
            unauthenticated_connector: Connector name for the primary chain
            authenticated_connector: Connector name for the elevated chain
        """
        self._api = api
        self._cache = cache
        self._identity_provider = identity_provider
        self.identity_tier = identity_tier
        self._unauth_connector = unauthenticated_connector
        self._auth_connector = authenticated_connector
        self._connectors: dict[str, list[Connector]] = {}
        self._connector_lock = asyncio.Lock()
        self._unauth_token: str | None = None

    # =========================================================================
    # Hops
    # =========================================================================

    async def get_connectors(self, account_id: str, use_cache: bool = True) -> list[Connector]:
        """Connector list for an account, fetched once and shared by both chains."""
        async with self._connector_lock:
            if use_cache and account_id in self._connectors:
                return self._connectors[account_id]
            try:
                connectors = await self._api.get_connectors(account_id)
            except GatewayError as e:
                raise AuthError("Connector lookup failed", reason=str(e), status_code=e.status_code) from e
            self._connectors[account_id] = connectors
            return connectors

    async def find_connector(self, account_id: str, name: str) -> Connector:
        """
        Look up a connector by name (case-insensitive).

        Raises:
            AuthError: If no connector has that name
        """
        for connector in await self.get_connectors(account_id):
            if connector.name.lower() == name.lower():
                return connector
        raise AuthError(f"No {name} connector found", reason="AC_CONNECTOR_NOT_FOUND")

    async def get_unauth_token(self, account_id: str, reset: bool = False) -> str:
        """
        Unauthenticated consumer token, reusing the cached one unless reset.

        Raises:
            AuthError: If issuance fails
        """
        if not reset:
            cached = self._unauth_token or await self._cache.get_ext_jwt()
            if cached:
                self._unauth_token = cached
                return cached

        self._unauth_token = None
        await self._cache.clear_ext_jwt()
        try:
            token = await self._api.get_unauth_token(account_id)
        except GatewayError as e:
            raise AuthError("Unauthenticated token issuance failed", reason=str(e), status_code=e.status_code) from e

        self._unauth_token = token
        await self._cache.set_ext_jwt(token)
        logger.info(f"Issued new unauthenticated token for account {account_id}")
        return token

    async def authorize(self, account_id: str, token: str) -> str:
        try:
            return await self._api.authorize(account_id, token)
        except GatewayError as e:
            raise AuthError("Authorize hop failed", reason=str(e), status_code=e.status_code) from e

    async def exchange(self, account_id: str, connector_name: str, token: str) -> str:
        """
        Exchange a token through a named connector.

        Raises:
            AuthError: With the backend's readable reason when the exchange fails
        """
        connector = await self.find_connector(account_id, connector_name)
        try:
            return await self._api.exchange_via_connector(account_id, connector.id, token)
        except GatewayError as e:
            reason = describe_exchange_error(e)
            logger.error(f"Connector exchange via '{connector_name}' failed: {reason}")
            raise AuthError(
                f"Connector exchange via '{connector_name}' failed",
                reason=reason,
                status_code=e.status_code,
            ) from e

    # =========================================================================
    # Chains
    # =========================================================================

    async def _primary_chain(self, account_id: str, reset: bool) -> str:
        ext_jwt = await self.get_unauth_token(account_id, reset=reset)
        authorized = await self.authorize(account_id, ext_jwt)
        return await self.exchange(account_id, self._unauth_connector, authorized)

    async def _elevated_chain(self, account_id: str) -> str | None:
        if self._identity_provider is None:
            return None
        try:
            identity_token = await self._identity_provider()
        except Exception as e:
            logger.warning(f"External identity provider failed: {e}")
            return None
        if not identity_token:
            logger.debug("No external identity token available")
            return None
        try:
            return await self.exchange(account_id, self._auth_connector, identity_token)
        except AuthError as e:
            logger.warning(f"Elevated credential unavailable: {e}")
            return None

    @staticmethod
    def _observe_detached(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Primary credential chain failed after step-up short-circuit: {error}")

    async def get_credential(self, account_id: str, reset: bool = False) -> Credential:
        """
        Resolve the socket credential for an account.

        Args:
            account_id: Account to authenticate against
            reset: Discard the cached unauthenticated token first

        Returns:
            The elevated credential when available, else the primary one

        Raises:
            AuthError: If the primary chain fails and no step-up short-circuit applies
        """
        primary = asyncio.create_task(
            self._primary_chain(account_id, reset),
            name=f"primary_credential_{account_id}",
        )
        elevated_token: str | None = None
        try:
            elevated_token = await self._elevated_chain(account_id)
        except BaseException:
            primary.cancel()
            raise

        if elevated_token:
            consumer_id = await self._cache.get_consumer_id()
            marker = await self._cache.get_consumer_conversation(consumer_id) if consumer_id else None
            if marker:
                logger.info(f"Consumer {consumer_id} holds a stepped-up conversation, using elevated credential")
                primary.add_done_callback(self._observe_detached)
                return Credential(token=elevated_token, tier=self.identity_tier, stepped_up=True)

        primary_token = await primary
        if elevated_token:
            return Credential(token=elevated_token, tier=self.identity_tier)
        return Credential(token=primary_token, tier=CredentialTier.UNAUTHENTICATED_CONSUMER)

    async def reset(self, account_id: str) -> str:
        """Discard the cached unauthenticated token and issue a fresh one."""
        return await self.get_unauth_token(account_id, reset=True)
