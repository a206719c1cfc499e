"""
Abstract StorageBackend interface for user data and admin configuration.

Every backend implements the same set of coroutines. Absence is never an error:
single reads return None (or a documented default) and bulk reads return an
empty collection. A backend that cannot support an operation raises
UnsupportedOperationError instead of leaving the method out.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from moontv_storage.models import (
    AdminConfig,
    CustomCategory,
    Favorite,
    PlayRecord,
    SiteConfig,
    SkipConfig,
    SourceEntry,
    UserConfig,
    UserEntry,
    UserRole,
)

log = logging.getLogger(__name__)


class StorageBackend(ABC):
    """
    Uniform contract over every backing store.

    Play records and favorites are addressed by a composite ``source+id`` key;
    skip configs take ``source`` and ``id`` separately.
    """

    name = "abstract"

    # ---------- Play records ----------

    @abstractmethod
    async def get_play_record(self, username: str, key: str) -> Optional[PlayRecord]:
        """Returns the record stored under ``key`` or None."""

    @abstractmethod
    async def set_play_record(
        self, username: str, key: str, record: PlayRecord
    ) -> None:
        """Stores ``record``, replacing any previous value."""

    @abstractmethod
    async def get_all_play_records(self, username: str) -> dict[str, PlayRecord]:
        """Returns every play record of the user, keyed by composite key."""

    @abstractmethod
    async def delete_play_record(self, username: str, key: str) -> None:
        """Removes a play record. Missing records are ignored."""

    # ---------- Favorites ----------

    @abstractmethod
    async def get_favorite(self, username: str, key: str) -> Optional[Favorite]:
        pass

    @abstractmethod
    async def set_favorite(self, username: str, key: str, favorite: Favorite) -> None:
        pass

    @abstractmethod
    async def get_all_favorites(self, username: str) -> dict[str, Favorite]:
        pass

    @abstractmethod
    async def delete_favorite(self, username: str, key: str) -> None:
        pass

    # ---------- Skip configs ----------

    @abstractmethod
    async def get_skip_config(
        self, username: str, source: str, item_id: str
    ) -> Optional[SkipConfig]:
        pass

    @abstractmethod
    async def set_skip_config(
        self, username: str, source: str, item_id: str, config: SkipConfig
    ) -> None:
        pass

    @abstractmethod
    async def get_all_skip_configs(self, username: str) -> dict[str, SkipConfig]:
        pass

    @abstractmethod
    async def delete_skip_config(
        self, username: str, source: str, item_id: str
    ) -> None:
        pass

    # ---------- Search history ----------

    @abstractmethod
    async def get_search_history(self, username: str) -> list[str]:
        """Returns the keywords, most recent first."""

    @abstractmethod
    async def add_search_history(self, username: str, keyword: str) -> None:
        """
        Moves ``keyword`` to the front of the history, dropping any earlier
        occurrence and anything past SEARCH_HISTORY_LIMIT entries.
        """

    @abstractmethod
    async def delete_search_history(
        self, username: str, keyword: Optional[str] = None
    ) -> None:
        """Removes one keyword, or the whole history when ``keyword`` is None."""

    # ---------- Users ----------

    @abstractmethod
    async def register_user(self, username: str, password: str) -> None:
        pass

    @abstractmethod
    async def verify_user(self, username: str, password: str) -> bool:
        pass

    @abstractmethod
    async def check_user_exist(self, username: str) -> bool:
        pass

    @abstractmethod
    async def change_password(self, username: str, new_password: str) -> None:
        pass

    @abstractmethod
    async def delete_user(self, username: str) -> None:
        """
        Removes the user's credential together with their search history, play
        records, favorites, skip configs, role and ban flag.
        """

    @abstractmethod
    async def get_all_users(self) -> list[str]:
        """
        Returns the sorted names of every user with a credential, a role or a
        ban flag.
        """

    # ---------- Legacy admin config ----------

    @abstractmethod
    async def get_admin_config(self) -> Optional[AdminConfig]:
        """Reads the legacy single-blob admin config."""

    @abstractmethod
    async def set_admin_config(self, config: AdminConfig) -> None:
        pass

    @abstractmethod
    async def delete_admin_config(self) -> None:
        pass

    # ---------- Normalized admin config ----------

    @abstractmethod
    async def get_site_config(self) -> Optional[SiteConfig]:
        pass

    @abstractmethod
    async def set_site_config(self, config: SiteConfig) -> None:
        pass

    @abstractmethod
    async def get_source_config(self) -> Optional[list[SourceEntry]]:
        pass

    @abstractmethod
    async def set_source_config(self, sources: list[SourceEntry]) -> None:
        pass

    @abstractmethod
    async def get_custom_categories(self) -> Optional[list[CustomCategory]]:
        pass

    @abstractmethod
    async def set_custom_categories(self, categories: list[CustomCategory]) -> None:
        pass

    @abstractmethod
    async def get_allow_register(self) -> bool:
        pass

    @abstractmethod
    async def set_allow_register(self, allow: bool) -> None:
        pass

    @abstractmethod
    async def get_user_role(self, username: str) -> Optional[UserRole]:
        """Returns the stored role, or None when the user has the default role."""

    @abstractmethod
    async def set_user_role(self, username: str, role: UserRole) -> None:
        """
        Stores a role. The default ``user`` role is never written: setting it
        removes any stored role instead.
        """

    @abstractmethod
    async def delete_user_role(self, username: str) -> None:
        pass

    @abstractmethod
    async def get_user_banned(self, username: str) -> bool:
        pass

    @abstractmethod
    async def set_user_banned(self, username: str, banned: bool) -> None:
        """Stores the ban flag. Unbanning removes the record."""

    # ---------- Composite operations ----------

    async def get_all_users_with_roles(self) -> list[UserEntry]:
        """Lists every known user with the role and ban state resolved."""
        users = []
        for username in await self.get_all_users():
            role = await self.get_user_role(username) or UserRole.USER
            banned = await self.get_user_banned(username)
            users.append(UserEntry(username=username, role=role, banned=banned))
        return users

    async def migrate_from_legacy(self) -> bool:
        """
        Moves the legacy ``admin:config`` blob into the normalized layout.

        Returns True when a migration was performed.
        """
        from .migration import migrate_legacy_config

        return await migrate_legacy_config(self)

    async def get_admin_config_from_separated(self) -> Optional[AdminConfig]:
        """
        Assembles the AdminConfig aggregate from the normalized fields.

        Returns None while SiteConfig is absent, i.e. the normalized layout has
        not been initialized yet.
        """
        site_config = await self.get_site_config()
        if site_config is None:
            return None

        sources = await self.get_source_config()
        categories = await self.get_custom_categories()
        return AdminConfig(
            site_config=site_config,
            user_config=UserConfig(
                allow_register=await self.get_allow_register(),
                users=await self.get_all_users_with_roles(),
            ),
            source_config=sources or [],
            custom_categories=categories or [],
        )

    async def set_admin_config_separated(self, config: AdminConfig) -> None:
        """Decomposes ``config`` into the normalized per-field records."""
        await self.set_site_config(config.site_config)
        await self.set_source_config(config.source_config)
        await self.set_custom_categories(config.custom_categories)
        await self.set_allow_register(config.user_config.allow_register)

        for user in config.user_config.users:
            if user.role.is_default:
                await self.delete_user_role(user.username)
            else:
                await self.set_user_role(user.username, user.role)
            await self.set_user_banned(user.username, user.banned)

    # ---------- Lifecycle ----------

    async def close(self) -> None:
        """Releases resources owned by the backend."""

    def describe(self) -> dict[str, Any]:
        """Returns backend status details for display."""
        return {"type": self.name}
