"""
Messaging REST Gateway

httpx client for the REST collaborators the session engine consumes:
domain resolution, connector listing and exchange, unauthenticated token
issuance, authorize, user directory listing and the signed file upload.

All routes live under {base_url}/messaging/{account_id}. Non-2xx responses
and transport failures are raised as GatewayError; token values are never
logged.
"""

import logging
from typing import Any

import httpx
from pydantic import BaseModel, Field, ValidationError

from ums_client.errors import GatewayError

logger = logging.getLogger(__name__)


class Domain(BaseModel):
    """Base URI of one backend service for an account."""
    service: str
    account: str | None = None
    base_uri: str = Field(..., alias="baseURI")

    class Config:
        populate_by_name = True


class Connector(BaseModel):
    """Named integration endpoint used for credential exchange."""
    id: str | int
    name: str
    type: int | str | None = None

    class Config:
        extra = "allow"


class UserProfile(BaseModel):
    """Directory entry for a participant."""
    pid: str
    nickname: str | None = None
    picture_url: str | None = Field(default=None, alias="pictureUrl")
    full_name: str | None = Field(default=None, alias="fullName")

    class Config:
        populate_by_name = True
        extra = "allow"


class MessagingApi:
    """
    REST gateway client.

    Features:
    - One pooled httpx.AsyncClient per gateway
    - Backend error bodies mapped onto GatewayError.internal_error_code
    - Optional injected client (tests pass one built on httpx.MockTransport)
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the gateway.

        Args:
            base_url: Gateway base URL (e.g. http://localhost:3000/api)
            timeout: Per-request timeout in seconds
            client: Preconfigured client to use instead of creating one
        """
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _url(self, account_id: str, path: str = "") -> str:
        return f"{self._base_url}/messaging/{account_id}{path}"

    @staticmethod
    def _parse_list(model: type[BaseModel], data: Any, action: str) -> list[Any]:
        if data is None:
            return []
        if not isinstance(data, list):
            raise GatewayError(f"{action} returned {type(data).__name__}, expected a list")
        try:
            return [model.model_validate(item) for item in data]
        except ValidationError as e:
            logger.error(f"{action} returned an unexpected body: {e}")
            raise GatewayError(f"{action} returned an unexpected body") from e

    async def _request(self, method: str, url: str, action: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.error(f"{action} timed out: {e}")
            raise GatewayError(f"{action} timed out") from e
        except httpx.RequestError as e:
            logger.error(f"{action} request error: {e}")
            raise GatewayError(f"{action} request failed: {e}") from e

        if response.is_success:
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError as e:
                logger.error(f"{action} returned a non-JSON body: {e}")
                raise GatewayError(f"{action} returned a non-JSON body", status_code=response.status_code) from e

        error_data: dict[str, Any] = {}
        try:
            parsed = response.json()
            if isinstance(parsed, dict):
                error_data = parsed
        except ValueError as parse_err:
            logger.debug(f"Could not parse error response as JSON: {parse_err}")

        internal_code = error_data.get("internalErrorCode")
        logger.warning(
            f"{action} failed: status={response.status_code}, internalErrorCode={internal_code}"
        )
        raise GatewayError(
            f"{action} failed",
            status_code=response.status_code,
            internal_error_code=int(internal_code) if internal_code is not None else None,
        )

    # =========================================================================
    # Domains & Directory
    # =========================================================================

    async def get_domains(self, account_id: str) -> list[Domain]:
        data = await self._request("GET", self._url(account_id, "/domains"), "Get domains")
        if isinstance(data, dict):
            data = data.get("baseURIs", [])
        return self._parse_list(Domain, data, "Get domains")

    async def get_users(self, account_id: str) -> list[UserProfile]:
        data = await self._request("GET", self._url(account_id, "/users"), "Get users")
        return self._parse_list(UserProfile, data, "Get users")

    # =========================================================================
    # Token Hops
    # =========================================================================

    async def get_connectors(self, account_id: str) -> list[Connector]:
        data = await self._request("GET", self._url(account_id, "/connectors"), "Get connectors")
        return self._parse_list(Connector, data, "Get connectors")

    async def get_unauth_token(self, account_id: str, signed: bool = False) -> str:
        """
        Issue an unauthenticated consumer token.

        Args:
            account_id: Account to issue for
            signed: Request a JWS instead of a JWT
        """
        path = "/consumer-jws" if signed else "/consumer-jwt"
        data = await self._request("GET", self._url(account_id, path), "Get unauth token")
        return self._token(data, "Get unauth token")

    async def authorize(self, account_id: str, id_token: str) -> str:
        """Exchange a consumer token for an account-scoped authorize token."""
        data = await self._request(
            "POST",
            self._url(account_id, "/authorize"),
            "Authorize token",
            json={"id_token": id_token},
        )
        return self._token(data, "Authorize token")

    async def exchange_via_connector(self, account_id: str, connector_id: str | int, id_token: str) -> str:
        """Exchange a token through a named integration connector."""
        data = await self._request(
            "POST",
            self._url(account_id, f"/connectors/{connector_id}"),
            "Connector exchange",
            json={"id_token": id_token},
        )
        return self._token(data, "Connector exchange")

    @staticmethod
    def _token(data: Any, action: str) -> str:
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise GatewayError(f"{action} returned no token")
        return str(token)

    # =========================================================================
    # File Upload
    # =========================================================================

    async def upload_file(
        self,
        account_id: str,
        file_name: str,
        content: bytes,
        content_type: str,
        signature: str,
        expires: str,
        relative_path: str,
        domain: str,
    ) -> Any:
        """PUT a file to the signed storage location the socket handed out."""
        return await self._request(
            "PUT",
            self._url(account_id, "/upload-file"),
            "Upload file",
            files={"file": (file_name, content, content_type)},
            headers={
                "sig": signature,
                "exp": str(expires),
                "size": str(len(content)),
                "relativepath": relative_path,
                "domain": domain,
            },
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
