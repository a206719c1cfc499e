"""
Data Models Layer.

This package contains Pydantic models that define the stored records, the admin
configuration aggregate and the storage configuration.
"""

from .admin import (
    AdminConfig,
    CustomCategory,
    SiteConfig,
    SourceEntry,
    UserConfig,
    UserEntry,
)
from .config import StorageConfig, StorageType
from .records import (
    SEARCH_HISTORY_LIMIT,
    Favorite,
    PlayRecord,
    SkipConfig,
    UserRole,
)

__all__ = [
    "SEARCH_HISTORY_LIMIT",
    "AdminConfig",
    "CustomCategory",
    "Favorite",
    "PlayRecord",
    "SiteConfig",
    "SkipConfig",
    "SourceEntry",
    "StorageConfig",
    "StorageType",
    "UserConfig",
    "UserEntry",
    "UserRole",
]
