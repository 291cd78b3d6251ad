"""
Storage layer: the backend-agnostic store contract, its error model and
the concrete SQLite, Redis and in-memory backends.
"""

from .errors import (
    ErrorCode,
    StoreError,
    ConnectionFailedError,
    RecordNotFoundError,
    InvalidSyntaxError,
    UnknownStoreError,
    from_sqlite_error,
    from_redis_error,
)
from .storage_interfaces import AbstractStore
from .sqlite_base import SQLiteConnectionPool, PoolTimedOut, PoolClosed, init_sqlite_schema
from .sqlite_store import SQLiteStore
from .redis_store import RedisStore
from .memory_store import MemoryStore
from .factory import create_store

__all__ = [
    # Error model
    "ErrorCode",
    "StoreError",
    "ConnectionFailedError",
    "RecordNotFoundError",
    "InvalidSyntaxError",
    "UnknownStoreError",
    "from_sqlite_error",
    "from_redis_error",
    # Contract
    "AbstractStore",
    # Backends
    "SQLiteConnectionPool",
    "PoolTimedOut",
    "PoolClosed",
    "init_sqlite_schema",
    "SQLiteStore",
    "RedisStore",
    "MemoryStore",
    "create_store",
]
