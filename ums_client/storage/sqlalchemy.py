"""
SQLAlchemy Storage Adapter

Async SQLAlchemy 2.0 implementation of KeyValueStore for persistence that
survives restarts. Uses async engine and session for all operations.

Compatible with:
- SQLite (aiosqlite)
- PostgreSQL (asyncpg)
"""

from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ums_client.storage.models import KeyValueModel
from ums_client.storage.ports import KeyValueStore, StorageError


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SqlAlchemyKeyValueStore(KeyValueStore):
    """SQL-backed key/value store."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: AsyncEngine | None = None,
    ) -> None:
        """
        Initialize with session factory.

        Args:
            session_factory: Async session factory
            engine: Engine to dispose on close (when this store owns it)
        """
        self._session_factory = session_factory
        self._engine = engine

    async def get(self, key: str) -> str | None:
        async with self._session_factory() as session:
            model = await session.get(KeyValueModel, key)
            if model is None:
                return None
            if model.expires_at is not None and model.expires_at <= _now():
                await session.delete(model)
                await session.commit()
                return None
            return model.value

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        expires_at = _now() + timedelta(seconds=ttl_seconds) if ttl_seconds is not None else None
        try:
            async with self._session_factory() as session:
                model = await session.get(KeyValueModel, key)
                if model is None:
                    session.add(KeyValueModel(key=key, value=value, expires_at=expires_at, updated_at=_now()))
                else:
                    model.value = value
                    model.expires_at = expires_at
                    model.updated_at = _now()
                await session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to write {key}: {e}") from e

    async def delete(self, key: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(KeyValueModel).where(KeyValueModel.key == key)
            )
            await session.commit()
            return result.rowcount > 0

    async def keys(self, prefix: str = "") -> list[str]:
        async with self._session_factory() as session:
            stmt = select(KeyValueModel.key, KeyValueModel.expires_at).where(
                KeyValueModel.key.startswith(prefix, autoescape=True)
            )
            result = await session.execute(stmt)
            now = _now()
            return sorted(
                key for key, expires_at in result.all()
                if expires_at is None or expires_at > now
            )

    async def purge_expired(self) -> int:
        """Delete expired rows; returns the number removed."""
        async with self._session_factory() as session:
            result = await session.execute(
                delete(KeyValueModel).where(
                    KeyValueModel.expires_at.is_not(None),
                    KeyValueModel.expires_at <= _now(),
                )
            )
            await session.commit()
            return result.rowcount

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
