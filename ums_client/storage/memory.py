"""
In-Memory Storage Adapter

Development and testing implementation of KeyValueStore.
State is lost on process exit.
"""

import asyncio
from datetime import datetime, timedelta, timezone

from .ports import KeyValueStore


class InMemoryKeyValueStore(KeyValueStore):
    """
    Dictionary-backed key/value store.

    Expired keys are dropped lazily on access.
    """

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})
        self._expires: dict[str, datetime] = {}
        self._lock = asyncio.Lock()

    def _expired(self, key: str) -> bool:
        expires_at = self._expires.get(key)
        return expires_at is not None and expires_at <= datetime.now(timezone.utc)

    def _purge(self, key: str) -> None:
        if self._expired(key):
            self._values.pop(key, None)
            self._expires.pop(key, None)

    async def get(self, key: str) -> str | None:
        async with self._lock:
            self._purge(key)
            return self._values.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        async with self._lock:
            self._values[key] = value
            if ttl_seconds is not None:
                self._expires[key] = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
            else:
                self._expires.pop(key, None)

    async def delete(self, key: str) -> bool:
        async with self._lock:
            self._purge(key)
            self._expires.pop(key, None)
            return self._values.pop(key, None) is not None

    async def keys(self, prefix: str = "") -> list[str]:
        async with self._lock:
            for key in list(self._values):
                self._purge(key)
            return sorted(k for k in self._values if k.startswith(prefix))

    def snapshot(self) -> dict[str, str]:
        """Copy of live values (for tests)."""
        return {k: v for k, v in self._values.items() if not self._expired(k)}
