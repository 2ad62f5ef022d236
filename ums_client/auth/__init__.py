# Authentication
# Multi-hop credential exchange for the three trust tiers

from ums_client.auth.broker import (
    TokenBroker,
    Credential,
    CredentialTier,
    IdentityProvider,
    AUTHENTICATION_ERRORS,
    UNAUTHENTICATED_CONNECTOR,
    AUTHENTICATED_CONNECTOR,
    describe_exchange_error,
)

__all__ = [
    "TokenBroker",
    "Credential",
    "CredentialTier",
    "IdentityProvider",
    "AUTHENTICATION_ERRORS",
    "UNAUTHENTICATED_CONNECTOR",
    "AUTHENTICATED_CONNECTOR",
    "describe_exchange_error",
]
