# homeserver_identity/storage/factory.py
import logging

from .storage_interfaces import AbstractStore
from .memory_store import MemoryStore
from .redis_store import RedisStore
from .sqlite_store import SQLiteStore
from ..settings import Settings

logger = logging.getLogger(__name__)


def create_store(settings: Settings) -> AbstractStore:
    """
    Build the store selected by ``settings.storage_backend``.

    The returned store is not initialized yet; callers own its lifecycle
    and must await ``initialize()`` / ``teardown()``.
    """
    backend = settings.storage_backend.lower()
    if backend == "sqlite":
        store: AbstractStore = SQLiteStore(
            db_path=settings.sqlite_db_path,
            server_name=settings.server_name,
            pool_size=settings.sqlite_pool_size,
            pool_timeout=settings.sqlite_pool_timeout_seconds
        )
    elif backend == "redis":
        store = RedisStore(
            server_name=settings.server_name,
            host=settings.redis_host,
            port=settings.redis_port,
            db=settings.redis_db,
            password=settings.redis_password,
            ssl=settings.redis_ssl,
            key_prefix=settings.redis_key_prefix,
            pool_size=settings.redis_pool_size,
            pool_timeout=settings.redis_pool_timeout_seconds
        )
    elif backend == "memory":
        logger.warning("Memory storage backend selected. Nothing will survive a restart.")
        store = MemoryStore(server_name=settings.server_name)
    else:
        raise ValueError(f"Unsupported storage_backend: {settings.storage_backend}")

    logger.info(f"Storage backend '{backend}' selected ({store.get_type()}).")
    return store
