"""
Storage Factory

Builds the KeyValueStore the engine persists client state through, from
a single store URL:

    memory://                          process-local, lost on exit
    sqlite:///ums.db                   aiosqlite, survives restarts
    postgresql://user:pw@host/ums      asyncpg, shared between processes
    redis://host:6379/0                redis.asyncio, shared with native TTLs

Usage:
    store = await create_store_from_env()
    engine = SessionOrchestrator(settings_from_env(), store=store)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum

from dotenv import load_dotenv
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .memory import InMemoryKeyValueStore
from .models import Base
from .ports import KeyValueStore
from .sqlalchemy import SqlAlchemyKeyValueStore

logger = logging.getLogger(__name__)


class StorageBackend(str, Enum):
    MEMORY = "memory"
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    REDIS = "redis"


_SCHEMES: dict[str, StorageBackend] = {
    "memory": StorageBackend.MEMORY,
    "sqlite": StorageBackend.SQLITE,
    "sqlite+aiosqlite": StorageBackend.SQLITE,
    "postgres": StorageBackend.POSTGRESQL,
    "postgresql": StorageBackend.POSTGRESQL,
    "postgresql+asyncpg": StorageBackend.POSTGRESQL,
    "redis": StorageBackend.REDIS,
    "rediss": StorageBackend.REDIS,
}

# SQLAlchemy needs the async driver spelled out in the URL
_ASYNC_DRIVERS = {
    StorageBackend.SQLITE: "sqlite+aiosqlite",
    StorageBackend.POSTGRESQL: "postgresql+asyncpg",
}


def backend_for_url(url: str) -> StorageBackend:
    """
    Raises:
        ValueError: If the URL scheme is not a supported store
    """
    scheme, sep, _ = url.partition("://")
    backend = _SCHEMES.get(scheme.lower()) if sep else None
    if backend is None:
        raise ValueError(f"Unsupported store URL: {url}")
    return backend


@dataclass
class StorageSettings:
    """
    Where and how client state is persisted.

    Attributes:
        url: Store URL; its scheme selects the backend
        key_prefix: Redis key namespace
        default_ttl_seconds: Redis expiry for keys written without one
        pool_size: PostgreSQL pool size
        echo_sql: Log SQL statements
        create_tables: Create the key/value table on startup
    """
    url: str = "memory://"
    key_prefix: str = "ums"
    default_ttl_seconds: int | None = None
    pool_size: int = 5
    echo_sql: bool = False
    create_tables: bool = True

    @property
    def backend(self) -> StorageBackend:
        return backend_for_url(self.url)

    def sqlalchemy_url(self) -> str:
        """The store URL rewritten for the backend's async driver."""
        _, _, rest = self.url.partition("://")
        return f"{_ASYNC_DRIVERS[self.backend]}://{rest}"


def settings_from_env(load_env_file: bool = False) -> StorageSettings:
    """
    Create StorageSettings from environment variables.

    Environment variables:
        UMS_STORE_URL: Store URL (default memory://)
        UMS_STORE_KEY_PREFIX: Redis key namespace
        UMS_STORE_TTL: Redis default expiry in seconds
        UMS_STORE_POOL_SIZE: PostgreSQL pool size
        UMS_STORE_ECHO_SQL: "true" to log SQL
        UMS_STORE_CREATE_TABLES: "false" to skip table creation
    """
    if load_env_file:
        load_dotenv()

    ttl = os.getenv("UMS_STORE_TTL")
    return StorageSettings(
        url=os.getenv("UMS_STORE_URL", "memory://"),
        key_prefix=os.getenv("UMS_STORE_KEY_PREFIX", "ums"),
        default_ttl_seconds=int(ttl) if ttl else None,
        pool_size=int(os.getenv("UMS_STORE_POOL_SIZE", "5")),
        echo_sql=os.getenv("UMS_STORE_ECHO_SQL", "").lower() == "true",
        create_tables=os.getenv("UMS_STORE_CREATE_TABLES", "true").lower() != "false",
    )


async def create_store(settings: StorageSettings) -> KeyValueStore:
    """
    Open the store the settings describe.

    Raises:
        ValueError: If the store URL is not supported
    """
    backend = settings.backend
    logger.info(f"Opening {backend.value} client-state store")

    if backend == StorageBackend.MEMORY:
        return InMemoryKeyValueStore()

    if backend == StorageBackend.REDIS:
        from redis.asyncio import Redis
        from .redis import RedisKeyValueStore

        return RedisKeyValueStore(
            Redis.from_url(settings.url),
            key_prefix=settings.key_prefix,
            default_ttl_seconds=settings.default_ttl_seconds,
        )

    engine_kwargs: dict = {"echo": settings.echo_sql}
    if backend == StorageBackend.POSTGRESQL:
        engine_kwargs["pool_size"] = settings.pool_size
    engine = create_async_engine(settings.sqlalchemy_url(), **engine_kwargs)

    if settings.create_tables:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    return SqlAlchemyKeyValueStore(
        async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False),
        engine=engine,
    )


async def create_store_from_env(load_env_file: bool = True) -> KeyValueStore:
    return await create_store(settings_from_env(load_env_file=load_env_file))


async def create_sqlite_store(path: str = ":memory:") -> KeyValueStore:
    """SQLite store at `path`; used by tests and single-user tools."""
    return await create_store(StorageSettings(url=f"sqlite:///{path}"))
