"""
Shared implementation of the StorageBackend contract for key-value stores.

Subclasses only provide a handful of raw string primitives (get, set, delete,
scan, list operations); this module owns the key layout, value encoding and
every higher-level operation. Objects are stored as JSON, booleans as
``"true"``/``"false"`` and passwords/roles as plain strings, which is the format
older deployments wrote.
"""

from __future__ import annotations

import json
import logging
from abc import abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, Optional, TypeVar

from pydantic import BaseModel, TypeAdapter

from moontv_storage.exceptions import CorruptRecordError
from moontv_storage.models import (
    SEARCH_HISTORY_LIMIT,
    AdminConfig,
    CustomCategory,
    Favorite,
    PlayRecord,
    SiteConfig,
    SkipConfig,
    SourceEntry,
    UserRole,
)
from moontv_storage.utils.circuit_breaker import CircuitBreaker
from moontv_storage.utils.retry import RetryPolicy, with_retry

from . import keys
from .base import StorageBackend

log = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

SOURCE_LIST = TypeAdapter(list[SourceEntry])
CATEGORY_LIST = TypeAdapter(list[CustomCategory])


def encode_json(value: Any) -> str:
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", by_alias=True)
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def encode_bool(value: bool) -> str:
    return "true" if value else "false"


def decode_bool(raw: Optional[str]) -> bool:
    return raw is not None and raw.strip().lower() in ("true", "1")


def decode_text(raw: str) -> str:
    """Unwraps a JSON-quoted string; plain text is returned as-is."""
    if len(raw) >= 2 and raw[0] == raw[-1] == '"':
        try:
            value = json.loads(raw)
        except ValueError:
            return raw
        if isinstance(value, str):
            return value
    return raw


def decode_model(key: str, raw: str, model: type[M]) -> M:
    try:
        return model.model_validate_json(raw)
    except ValueError as e:
        raise CorruptRecordError(key, str(e)) from e


def decode_list(key: str, raw: str, adapter: TypeAdapter) -> list:
    try:
        return adapter.validate_json(raw)
    except ValueError as e:
        raise CorruptRecordError(key, str(e)) from e


class KeyValueStorage(StorageBackend):
    """
    StorageBackend over a Redis-like string/list store.

    Remote subclasses pass a RetryPolicy (and optionally a CircuitBreaker) and
    route each primitive through ``_call``.
    """

    name = "keyvalue"

    def __init__(
        self,
        retry_policy: RetryPolicy | None = None,
        breaker: CircuitBreaker | None = None,
    ):
        self._retry_policy = retry_policy or RetryPolicy()
        self._breaker = breaker

    async def _call(
        self, description: str, operation: Callable[[], Awaitable[T]]
    ) -> T:
        """Runs one store command with the backend's retry and circuit policy."""
        if self._breaker is None:
            guarded = operation
        else:

            async def guarded() -> T:
                async with self._breaker:
                    return await operation()

        return await with_retry(
            guarded, self._retry_policy, description=f"{self.name} {description}"
        )

    # ---------- Primitives ----------

    @abstractmethod
    async def _get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def _mget(self, keys_: list[str]) -> list[Optional[str]]:
        pass

    @abstractmethod
    async def _set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    async def _delete(self, *keys_: str) -> None:
        pass

    @abstractmethod
    async def _exists(self, key: str) -> bool:
        pass

    @abstractmethod
    async def _scan(self, pattern: str) -> list[str]:
        """Returns every key matching a Redis-style MATCH pattern."""

    @abstractmethod
    async def _lrange(self, key: str) -> list[str]:
        pass

    @abstractmethod
    async def _lrem(self, key: str, value: str) -> None:
        """Removes every occurrence of ``value`` from the list."""

    @abstractmethod
    async def _push_front_capped(self, key: str, value: str, limit: int) -> None:
        """
        Atomically removes ``value`` from the list, prepends it and trims the
        list to ``limit`` entries.
        """

    # ---------- Helpers ----------

    async def _get_model(self, key: str, model: type[M]) -> Optional[M]:
        raw = await self._get(key)
        return None if raw is None else decode_model(key, raw, model)

    async def _collect(self, prefix: str, model: type[M]) -> dict[str, M]:
        """
        Reads every record under ``prefix``, keyed by the part after the prefix.

        Keys deleted between the scan and the read are skipped, as are values that
        fail to parse.
        """
        found = await self._scan(keys.prefix_pattern(prefix))
        if not found:
            return {}

        values = await self._mget(found)
        result: dict[str, M] = {}
        for full_key, raw in zip(found, values):
            if raw is None:
                continue
            try:
                result[full_key[len(prefix) :]] = decode_model(full_key, raw, model)
            except CorruptRecordError as e:
                log.warning(f"Skipping unreadable record: {e}")
        return result

    async def _delete_prefix(self, prefix: str) -> int:
        found = await self._scan(keys.prefix_pattern(prefix))
        if found:
            await self._delete(*found)
        return len(found)

    # ---------- Play records ----------

    async def get_play_record(self, username: str, key: str) -> Optional[PlayRecord]:
        return await self._get_model(keys.play_record_key(username, key), PlayRecord)

    async def set_play_record(
        self, username: str, key: str, record: PlayRecord
    ) -> None:
        await self._set(keys.play_record_key(username, key), encode_json(record))

    async def get_all_play_records(self, username: str) -> dict[str, PlayRecord]:
        return await self._collect(
            keys.user_prefix(username, keys.PLAY_RECORD), PlayRecord
        )

    async def delete_play_record(self, username: str, key: str) -> None:
        await self._delete(keys.play_record_key(username, key))

    # ---------- Favorites ----------

    async def get_favorite(self, username: str, key: str) -> Optional[Favorite]:
        return await self._get_model(keys.favorite_key(username, key), Favorite)

    async def set_favorite(self, username: str, key: str, favorite: Favorite) -> None:
        await self._set(keys.favorite_key(username, key), encode_json(favorite))

    async def get_all_favorites(self, username: str) -> dict[str, Favorite]:
        return await self._collect(keys.user_prefix(username, keys.FAVORITE), Favorite)

    async def delete_favorite(self, username: str, key: str) -> None:
        await self._delete(keys.favorite_key(username, key))

    # ---------- Skip configs ----------

    async def get_skip_config(
        self, username: str, source: str, item_id: str
    ) -> Optional[SkipConfig]:
        return await self._get_model(
            keys.skip_config_key(username, source, item_id), SkipConfig
        )

    async def set_skip_config(
        self, username: str, source: str, item_id: str, config: SkipConfig
    ) -> None:
        await self._set(
            keys.skip_config_key(username, source, item_id), encode_json(config)
        )

    async def get_all_skip_configs(self, username: str) -> dict[str, SkipConfig]:
        return await self._collect(
            keys.user_prefix(username, keys.SKIP_CONFIG), SkipConfig
        )

    async def delete_skip_config(
        self, username: str, source: str, item_id: str
    ) -> None:
        await self._delete(keys.skip_config_key(username, source, item_id))

    # ---------- Search history ----------

    async def get_search_history(self, username: str) -> list[str]:
        return await self._lrange(keys.search_history_key(username))

    async def add_search_history(self, username: str, keyword: str) -> None:
        await self._push_front_capped(
            keys.search_history_key(username), str(keyword), SEARCH_HISTORY_LIMIT
        )

    async def delete_search_history(
        self, username: str, keyword: Optional[str] = None
    ) -> None:
        key = keys.search_history_key(username)
        if keyword:
            await self._lrem(key, str(keyword))
        else:
            await self._delete(key)

    # ---------- Users ----------

    async def register_user(self, username: str, password: str) -> None:
        await self._set(keys.password_key(username), password)

    async def verify_user(self, username: str, password: str) -> bool:
        stored = await self._get(keys.password_key(username))
        if stored is None:
            return False
        # Older deployments wrote JSON-quoted passwords.
        return stored == password or decode_text(stored) == password

    async def check_user_exist(self, username: str) -> bool:
        return await self._exists(keys.password_key(username))

    async def change_password(self, username: str, new_password: str) -> None:
        await self._set(keys.password_key(username), new_password)

    async def delete_user(self, username: str) -> None:
        await self._delete(
            keys.password_key(username),
            keys.search_history_key(username),
            keys.role_key(username),
            keys.banned_key(username),
        )
        removed = 0
        for kind in (keys.PLAY_RECORD, keys.FAVORITE, keys.SKIP_CONFIG):
            removed += await self._delete_prefix(keys.user_prefix(username, kind))
        log.debug(f"Deleted user '{username}' and {removed} records.")

    async def get_all_users(self) -> list[str]:
        usernames: set[str] = set()
        for kind in (keys.PASSWORD, keys.ROLE, keys.BANNED):
            for key in await self._scan(keys.user_field_pattern(kind)):
                username = keys.username_from_field_key(key)
                if username:
                    usernames.add(username)
        return sorted(usernames)

    # ---------- Legacy admin config ----------

    async def get_admin_config(self) -> Optional[AdminConfig]:
        return await self._get_model(keys.ADMIN_CONFIG_KEY, AdminConfig)

    async def set_admin_config(self, config: AdminConfig) -> None:
        await self._set(keys.ADMIN_CONFIG_KEY, encode_json(config))

    async def delete_admin_config(self) -> None:
        await self._delete(keys.ADMIN_CONFIG_KEY)

    # ---------- Normalized admin config ----------

    async def get_site_config(self) -> Optional[SiteConfig]:
        return await self._get_model(keys.SITE_CONFIG_KEY, SiteConfig)

    async def set_site_config(self, config: SiteConfig) -> None:
        await self._set(keys.SITE_CONFIG_KEY, encode_json(config))

    async def get_source_config(self) -> Optional[list[SourceEntry]]:
        raw = await self._get(keys.SOURCE_CONFIG_KEY)
        if raw is None:
            return None
        return decode_list(keys.SOURCE_CONFIG_KEY, raw, SOURCE_LIST)

    async def set_source_config(self, sources: list[SourceEntry]) -> None:
        await self._set(
            keys.SOURCE_CONFIG_KEY,
            encode_json(SOURCE_LIST.dump_python(sources, mode="json", by_alias=True)),
        )

    async def get_custom_categories(self) -> Optional[list[CustomCategory]]:
        raw = await self._get(keys.CATEGORIES_KEY)
        if raw is None:
            return None
        return decode_list(keys.CATEGORIES_KEY, raw, CATEGORY_LIST)

    async def set_custom_categories(self, categories: list[CustomCategory]) -> None:
        await self._set(
            keys.CATEGORIES_KEY,
            encode_json(
                CATEGORY_LIST.dump_python(categories, mode="json", by_alias=True)
            ),
        )

    async def get_allow_register(self) -> bool:
        return decode_bool(await self._get(keys.ALLOW_REGISTER_KEY))

    async def set_allow_register(self, allow: bool) -> None:
        await self._set(keys.ALLOW_REGISTER_KEY, encode_bool(allow))

    async def get_user_role(self, username: str) -> Optional[UserRole]:
        raw = await self._get(keys.role_key(username))
        if raw is None:
            return None
        try:
            role = UserRole(decode_text(raw))
        except ValueError:
            log.warning(f"Ignoring unknown role '{raw}' for user '{username}'.")
            return None
        return None if role.is_default else role

    async def set_user_role(self, username: str, role: UserRole) -> None:
        role = UserRole(role)
        if role.is_default:
            await self.delete_user_role(username)
        else:
            await self._set(keys.role_key(username), role.value)

    async def delete_user_role(self, username: str) -> None:
        await self._delete(keys.role_key(username))

    async def get_user_banned(self, username: str) -> bool:
        return decode_bool(await self._get(keys.banned_key(username)))

    async def set_user_banned(self, username: str, banned: bool) -> None:
        if banned:
            await self._set(keys.banned_key(username), encode_bool(True))
        else:
            await self._delete(keys.banned_key(username))
