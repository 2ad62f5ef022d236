"""
Storage Port

The durable key/value contract behind LocalStateCache. The engine keeps
everything a browser would keep in localStorage here: the ext/consumer
JWTs, the open conversation id, the step-up marker, pending secure forms
and the tracking identity. Adapters (memory, SQLAlchemy, Redis) are
picked by the storage factory and injected into the engine.
"""

from abc import ABC, abstractmethod

from ums_client.errors import UmsClientError


class KeyValueStore(ABC):
    """
    String key/value storage with optional per-key expiry.

    Values are strings; structured values are JSON-encoded by the caller.
    """

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """
        Get a value.

        Args:
            key: Storage key

        Returns:
            The stored value, or None if absent or expired
        """
        ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        """
        Store a value, replacing any previous one.

        Args:
            key: Storage key
            value: String value
            ttl_seconds: Expire the key after this many seconds (None = never)

        Raises:
            StorageError: If the write fails
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Remove a key.

        Returns:
            True if the key existed
        """
        ...

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]:
        """List live keys starting with a prefix."""
        ...

    async def close(self) -> None:
        """Release connections held by the adapter."""
        return None


# =============================================================================
# Exceptions
# =============================================================================

class StorageError(UmsClientError):
    """A backend failed to persist a value."""
    pass
