"""
Backend selection.

The backend is chosen once per process from the StorageConfig and shared by
every caller until close_storage() is called.
"""

import asyncio
import logging

from moontv_storage.models.config import StorageConfig, StorageType
from moontv_storage.utils.retry import RetryPolicy

from .base import StorageBackend
from .clients import close_clients
from .config_manager import load_config_from_env

log = logging.getLogger(__name__)

_storage: StorageBackend | None = None
_storage_lock = asyncio.Lock()


def create_storage(config: StorageConfig) -> StorageBackend:
    """Builds a new backend for ``config``; clients connect lazily on first use."""
    policy = RetryPolicy(
        attempts=config.retry_attempts,
        base_delay=config.retry_base_delay,
        max_delay=config.retry_max_delay,
    )

    if config.storage_type == StorageType.REDIS:
        from .redis_storage import RedisStorage

        return RedisStorage(config.redis_url, retry_policy=policy)
    if config.storage_type == StorageType.UPSTASH:
        from .upstash import UpstashStorage

        return UpstashStorage(
            config.upstash_url, config.upstash_token, retry_policy=policy
        )
    if config.storage_type == StorageType.RELATIONAL:
        from .sqlite_storage import SQLiteStorage

        return SQLiteStorage(config.sqlite_path, retry_policy=policy)

    from .memory import MemoryStorage

    log.warning(
        "[yellow]Using in-memory storage; data will be lost when the process "
        "exits.[/yellow]"
    )
    return MemoryStorage()


async def get_storage(config: StorageConfig | None = None) -> StorageBackend:
    """
    Gets or creates the process-wide backend.

    ``config`` is only used on the first call; later calls return the existing
    backend. Without a config the environment is read.
    """
    global _storage
    async with _storage_lock:
        if _storage is None:
            config = config or load_config_from_env()
            _storage = create_storage(config)
            log.debug(f"Storage backend initialized: {_storage.describe()}")
        return _storage


async def close_storage() -> None:
    """Closes the process-wide backend and the shared clients behind it."""
    global _storage
    async with _storage_lock:
        if _storage is not None:
            await _storage.close()
            _storage = None
    await close_clients()
