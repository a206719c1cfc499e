"""
Application-facing facade over the configured StorageBackend.

Callers address records by ``(username, source, id)``; the facade builds the
composite key and forwards to the backend. Operations a backend does not
support degrade to neutral defaults, while connectivity failures propagate.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import Optional, TypeVar

from moontv_storage.exceptions import CorruptRecordError, UnsupportedOperationError
from moontv_storage.models import (
    AdminConfig,
    CustomCategory,
    Favorite,
    PlayRecord,
    SiteConfig,
    SkipConfig,
    SourceEntry,
    StorageConfig,
    UserEntry,
    UserRole,
)
from moontv_storage.storage import keys
from moontv_storage.storage.base import StorageBackend
from moontv_storage.storage.factory import close_storage, get_storage

log = logging.getLogger(__name__)

T = TypeVar("T")


class DbManager:
    """Typed pass-through from application calls to the storage backend."""

    def __init__(self, storage: StorageBackend):
        self.storage = storage

    async def _optional(self, name: str, call: Awaitable[T], default: T) -> T:
        try:
            return await call
        except UnsupportedOperationError:
            log.debug(f"{self.storage.name} does not support {name}; using default.")
            return default

    async def _read_one(self, name: str, call: Awaitable[Optional[T]]) -> Optional[T]:
        try:
            return await self._optional(name, call, None)
        except CorruptRecordError as e:
            log.warning(f"[yellow]Treating unreadable record as absent: {e}[/yellow]")
            return None

    # ---------- Play records ----------

    async def get_play_record(
        self, username: str, source: str, item_id: str
    ) -> Optional[PlayRecord]:
        key = keys.composite_key(source, item_id)
        return await self._read_one(
            "get_play_record", self.storage.get_play_record(username, key)
        )

    async def save_play_record(
        self, username: str, source: str, item_id: str, record: PlayRecord
    ) -> None:
        key = keys.composite_key(source, item_id)
        await self.storage.set_play_record(username, key, record)

    async def get_all_play_records(self, username: str) -> dict[str, PlayRecord]:
        return await self.storage.get_all_play_records(username)

    async def delete_play_record(
        self, username: str, source: str, item_id: str
    ) -> None:
        key = keys.composite_key(source, item_id)
        await self.storage.delete_play_record(username, key)

    # ---------- Favorites ----------

    async def get_favorite(
        self, username: str, source: str, item_id: str
    ) -> Optional[Favorite]:
        key = keys.composite_key(source, item_id)
        return await self._read_one(
            "get_favorite", self.storage.get_favorite(username, key)
        )

    async def save_favorite(
        self, username: str, source: str, item_id: str, favorite: Favorite
    ) -> None:
        key = keys.composite_key(source, item_id)
        await self.storage.set_favorite(username, key, favorite)

    async def get_all_favorites(self, username: str) -> dict[str, Favorite]:
        return await self.storage.get_all_favorites(username)

    async def delete_favorite(self, username: str, source: str, item_id: str) -> None:
        key = keys.composite_key(source, item_id)
        await self.storage.delete_favorite(username, key)

    async def is_favorited(self, username: str, source: str, item_id: str) -> bool:
        return await self.get_favorite(username, source, item_id) is not None

    # ---------- Users ----------

    async def register_user(self, username: str, password: str) -> None:
        await self.storage.register_user(username, password)

    async def verify_user(self, username: str, password: str) -> bool:
        return await self.storage.verify_user(username, password)

    async def check_user_exist(self, username: str) -> bool:
        return await self.storage.check_user_exist(username)

    async def change_password(self, username: str, new_password: str) -> None:
        await self.storage.change_password(username, new_password)

    async def delete_user(self, username: str) -> None:
        await self.storage.delete_user(username)

    async def get_all_users(self) -> list[str]:
        return await self._optional("get_all_users", self.storage.get_all_users(), [])

    # ---------- Search history ----------

    async def get_search_history(self, username: str) -> list[str]:
        return await self.storage.get_search_history(username)

    async def add_search_history(self, username: str, keyword: str) -> None:
        await self.storage.add_search_history(username, keyword)

    async def delete_search_history(
        self, username: str, keyword: Optional[str] = None
    ) -> None:
        await self.storage.delete_search_history(username, keyword)

    # ---------- Legacy admin config ----------

    async def get_admin_config(self) -> Optional[AdminConfig]:
        return await self._read_one("get_admin_config", self.storage.get_admin_config())

    async def save_admin_config(self, config: AdminConfig) -> None:
        await self._optional(
            "set_admin_config", self.storage.set_admin_config(config), None
        )

    # ---------- Skip configs ----------

    async def get_skip_config(
        self, username: str, source: str, item_id: str
    ) -> Optional[SkipConfig]:
        return await self._read_one(
            "get_skip_config", self.storage.get_skip_config(username, source, item_id)
        )

    async def get_skip_config_or_default(
        self, username: str, source: str, item_id: str
    ) -> SkipConfig:
        """Returns the stored skip config, or a disabled one when none is stored."""
        config = await self.get_skip_config(username, source, item_id)
        return config if config is not None else SkipConfig.disabled()

    async def set_skip_config(
        self, username: str, source: str, item_id: str, config: SkipConfig
    ) -> None:
        await self._optional(
            "set_skip_config",
            self.storage.set_skip_config(username, source, item_id, config),
            None,
        )

    async def delete_skip_config(
        self, username: str, source: str, item_id: str
    ) -> None:
        await self._optional(
            "delete_skip_config",
            self.storage.delete_skip_config(username, source, item_id),
            None,
        )

    async def get_all_skip_configs(self, username: str) -> dict[str, SkipConfig]:
        return await self._optional(
            "get_all_skip_configs", self.storage.get_all_skip_configs(username), {}
        )

    # ---------- Normalized admin config ----------

    async def get_site_config(self) -> Optional[SiteConfig]:
        return await self._read_one("get_site_config", self.storage.get_site_config())

    async def set_site_config(self, config: SiteConfig) -> None:
        await self._optional("set_site_config", self.storage.set_site_config(config), None)

    async def get_source_config(self) -> Optional[list[SourceEntry]]:
        return await self._read_one(
            "get_source_config", self.storage.get_source_config()
        )

    async def set_source_config(self, sources: list[SourceEntry]) -> None:
        await self._optional(
            "set_source_config", self.storage.set_source_config(sources), None
        )

    async def get_custom_categories(self) -> Optional[list[CustomCategory]]:
        return await self._read_one(
            "get_custom_categories", self.storage.get_custom_categories()
        )

    async def set_custom_categories(self, categories: list[CustomCategory]) -> None:
        await self._optional(
            "set_custom_categories",
            self.storage.set_custom_categories(categories),
            None,
        )

    async def get_allow_register(self) -> bool:
        return await self._optional(
            "get_allow_register", self.storage.get_allow_register(), False
        )

    async def set_allow_register(self, allow: bool) -> None:
        await self._optional(
            "set_allow_register", self.storage.set_allow_register(allow), None
        )

    async def get_user_role(self, username: str) -> Optional[UserRole]:
        return await self._optional(
            "get_user_role", self.storage.get_user_role(username), None
        )

    async def set_user_role(self, username: str, role: UserRole) -> None:
        await self._optional(
            "set_user_role", self.storage.set_user_role(username, role), None
        )

    async def delete_user_role(self, username: str) -> None:
        await self._optional(
            "delete_user_role", self.storage.delete_user_role(username), None
        )

    async def get_user_banned(self, username: str) -> bool:
        return await self._optional(
            "get_user_banned", self.storage.get_user_banned(username), False
        )

    async def set_user_banned(self, username: str, banned: bool) -> None:
        await self._optional(
            "set_user_banned", self.storage.set_user_banned(username, banned), None
        )

    async def get_all_users_with_roles(self) -> list[UserEntry]:
        return await self._optional(
            "get_all_users_with_roles", self.storage.get_all_users_with_roles(), []
        )

    async def migrate_from_legacy(self) -> bool:
        return await self._optional(
            "migrate_from_legacy", self.storage.migrate_from_legacy(), False
        )

    async def get_admin_config_from_separated(self) -> Optional[AdminConfig]:
        # Corrupt fields propagate; only a missing SiteConfig means "not initialized".
        return await self._optional(
            "get_admin_config_from_separated",
            self.storage.get_admin_config_from_separated(),
            None,
        )

    async def set_admin_config_separated(self, config: AdminConfig) -> None:
        await self._optional(
            "set_admin_config_separated",
            self.storage.set_admin_config_separated(config),
            None,
        )


_db_manager: DbManager | None = None
_db_manager_lock = asyncio.Lock()


async def get_db_manager(config: StorageConfig | None = None) -> DbManager:
    """Gets or creates the process-wide DbManager over the configured backend."""
    global _db_manager
    async with _db_manager_lock:
        if _db_manager is None:
            _db_manager = DbManager(await get_storage(config))
        return _db_manager


async def reset_db_manager() -> None:
    """Drops the process-wide DbManager and closes its backend."""
    global _db_manager
    async with _db_manager_lock:
        _db_manager = None
    await close_storage()
