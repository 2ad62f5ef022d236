"""
Domain Resolver and User Directory

Cached lookups over the REST gateway:
- DomainResolver maps an account's service list to {service: host}
- UserDirectory resolves participant ids to display profiles

Directory lookups run in the background of event processing, so failures
degrade to a role label instead of propagating.
"""

import logging

from ums_client.errors import GatewayError, StateError
from ums_client.gateway.api import Domain, MessagingApi, UserProfile

logger = logging.getLogger(__name__)


# Service names the engine needs
MESSAGING_SERVICE = "asyncMessagingEnt"
FILE_STORAGE_SERVICE = "swift"
TOKENIZER_SERVICE = "tokenizer"


def format_services(domains: list[Domain]) -> dict[str, str]:
    """Map a domain list to {service: base_uri}."""
    return {domain.service: domain.base_uri for domain in domains if domain.service}


def ums_url(domain: str, account_id: str) -> str:
    """Consumer socket URL for an account."""
    return f"wss://{domain}/ws_api/account/{account_id}/messaging/consumer?v=3"


class DomainResolver:
    """Resolves and caches per-service hosts for an account."""

    def __init__(self, api: MessagingApi):
        self._api = api
        self._services: dict[str, dict[str, str]] = {}

    async def resolve(self, account_id: str, refresh: bool = False) -> dict[str, str]:
        """
        Resolve service hosts for an account.

        Raises:
            GatewayError: If the domain lookup fails
        """
        if refresh or account_id not in self._services:
            domains = await self._api.get_domains(account_id)
            self._services[account_id] = format_services(domains)
            logger.info(f"Resolved {len(domains)} service domains for account {account_id}")
        return self._services[account_id]

    def get(self, account_id: str, service: str) -> str | None:
        return self._services.get(account_id, {}).get(service)

    def require(self, account_id: str, service: str) -> str:
        """
        Cached host for a service.

        Raises:
            StateError: If domains were not resolved or the service is absent
        """
        host = self.get(account_id, service)
        if not host:
            raise StateError(f"No {service} domain found for account {account_id}")
        return host


class UserDirectory:
    """
    Participant id → display profile.

    The user list is fetched once per account and cached; a failed fetch
    is not cached so the next lookup retries.
    """

    def __init__(self, api: MessagingApi):
        self._api = api
        self._users: dict[str, dict[str, UserProfile]] = {}

    async def list_users(self, account_id: str) -> dict[str, UserProfile]:
        if account_id in self._users:
            return self._users[account_id]
        try:
            users = await self._api.get_users(account_id)
        except GatewayError as e:
            logger.warning(f"User directory unavailable for {account_id}: {e}")
            return {}
        self._users[account_id] = {user.pid: user for user in users}
        return self._users[account_id]

    async def get(self, account_id: str, participant_id: str) -> UserProfile | None:
        users = await self.list_users(account_id)
        return users.get(participant_id)

    async def display_name(self, account_id: str, participant_id: str, fallback: str) -> str:
        """Nickname for a participant, or the fallback label."""
        profile = await self.get(account_id, participant_id)
        if profile and profile.nickname:
            return profile.nickname
        return fallback
