# Storage Layer
# Durable client state for the session engine, behind one async key/value port
#
# - KeyValueStore: the port every adapter implements
# - InMemoryKeyValueStore / SqlAlchemyKeyValueStore / RedisKeyValueStore: adapters
# - create_store*: adapter selection from a store URL
# - LocalStateCache: typed accessors for the keys the engine uses

from .ports import (
    KeyValueStore,
    StorageError,
)
from .memory import InMemoryKeyValueStore
from .factory import (
    StorageSettings,
    StorageBackend,
    backend_for_url,
    create_store,
    create_store_from_env,
    create_sqlite_store,
    settings_from_env,
)
from .local import LocalStateCache

__all__ = [
    # Port
    "KeyValueStore",
    "StorageError",
    # Adapters
    "InMemoryKeyValueStore",
    "LocalStateCache",
    # Factory
    "StorageSettings",
    "StorageBackend",
    "backend_for_url",
    "create_store",
    "create_store_from_env",
    "create_sqlite_store",
    "settings_from_env",
]
