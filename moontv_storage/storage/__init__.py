"""
Storage Layer.

This package holds the StorageBackend contract, its memory, Redis, REST-Redis
and relational implementations, backend selection and the configuration loader.
"""

from .base import StorageBackend
from .config_manager import ConfigManager, load_config_from_env
from .factory import close_storage, create_storage, get_storage
from .memory import MemoryStorage

__all__ = [
    "ConfigManager",
    "MemoryStorage",
    "StorageBackend",
    "close_storage",
    "create_storage",
    "get_storage",
    "load_config_from_env",
]
