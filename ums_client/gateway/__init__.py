# REST Gateway
# httpx client for domains, tokens, users and file upload, plus cached resolvers

from ums_client.gateway.api import (
    MessagingApi,
    Domain,
    Connector,
    UserProfile,
)
from ums_client.gateway.directory import (
    DomainResolver,
    UserDirectory,
    format_services,
    ums_url,
    MESSAGING_SERVICE,
    FILE_STORAGE_SERVICE,
    TOKENIZER_SERVICE,
)

__all__ = [
    "MessagingApi",
    "Domain",
    "Connector",
    "UserProfile",
    "DomainResolver",
    "UserDirectory",
    "format_services",
    "ums_url",
    "MESSAGING_SERVICE",
    "FILE_STORAGE_SERVICE",
    "TOKENIZER_SERVICE",
]
