"""
Redis Storage Adapter

Redis-based implementation of KeyValueStore, for deployments where several
engine processes share client state. Uses redis.asyncio; per-key expiry maps
directly onto Redis TTLs.

Key pattern:
- {prefix}:kv:{key} -> value
"""

from __future__ import annotations

from redis.asyncio import Redis
from redis.exceptions import RedisError

from .ports import KeyValueStore, StorageError


class RedisKeyValueStore(KeyValueStore):
    """
    Redis-backed key/value store.

    All keys are namespaced by a prefix for multi-tenant isolation.
    """

    def __init__(
        self,
        redis: Redis,
        key_prefix: str = "ums",
        default_ttl_seconds: int | None = None,
    ) -> None:
        """
        Initialize Redis key/value store.

        Args:
            redis: Redis async client
            key_prefix: Prefix for all keys
            default_ttl_seconds: TTL applied when set() gets none
        """
        self._redis = redis
        self._prefix = key_prefix
        self._ttl = default_ttl_seconds

    def _key(self, key: str) -> str:
        return f"{self._prefix}:kv:{key}"

    @staticmethod
    def _decode(value: bytes | str | None) -> str | None:
        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def get(self, key: str) -> str | None:
        return self._decode(await self._redis.get(self._key(key)))

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self._ttl
        try:
            if ttl is not None and ttl <= 0:
                # Redis rejects non-positive expiry; the value is already stale
                await self._redis.delete(self._key(key))
                return
            await self._redis.set(self._key(key), value, ex=ttl)
        except RedisError as e:
            raise StorageError(f"Failed to write {key}: {e}") from e

    async def delete(self, key: str) -> bool:
        return bool(await self._redis.delete(self._key(key)))

    async def keys(self, prefix: str = "") -> list[str]:
        namespace = self._key("")
        found: list[str] = []
        async for raw in self._redis.scan_iter(match=f"{namespace}{prefix}*"):
            name = self._decode(raw) or ""
            found.append(name[len(namespace):])
        return sorted(found)

    async def close(self) -> None:
        await self._redis.aclose()
