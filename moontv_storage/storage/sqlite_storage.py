"""
Relational storage backend on SQLite (the same schema works on D1-style hosted
SQLite).

Per-user records share one table keyed by ``(username, kind, record_key)``; the
primary key doubles as the index that replaces a key-value prefix scan.
Site-wide settings are stored under the same key names the key-value backends
use, so exports and migrations line up.
"""

import asyncio
import logging
import sqlite3
from collections.abc import Callable, Iterator
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Any, Optional, TypeVar

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
from moontv_storage.utils.retry import RetryPolicy, with_retry

from . import keys
from .base import StorageBackend
from .kv import CATEGORY_LIST, SOURCE_LIST, decode_list, decode_model, encode_json

log = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    username TEXT PRIMARY KEY NOT NULL,
    password TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE IF NOT EXISTS user_roles (
    username TEXT PRIMARY KEY NOT NULL,
    role TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS user_bans (
    username TEXT PRIMARY KEY NOT NULL
);
CREATE TABLE IF NOT EXISTS user_records (
    username TEXT NOT NULL,
    kind TEXT NOT NULL,
    record_key TEXT NOT NULL,
    value TEXT NOT NULL,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (username, kind, record_key)
);
CREATE TABLE IF NOT EXISTS search_history (
    username TEXT NOT NULL,
    keyword TEXT NOT NULL,
    seq INTEGER NOT NULL,
    PRIMARY KEY (username, keyword)
);
CREATE INDEX IF NOT EXISTS idx_search_history_order
    ON search_history(username, seq DESC);
CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY NOT NULL,
    value TEXT NOT NULL
);
"""


class DatabaseBusyError(Exception):
    """The database stayed locked by another writer; safe to retry."""

    transient = True


class SQLiteStorage(StorageBackend):
    """
    StorageBackend over a SQLite database file.

    Blocking sqlite3 calls run in worker threads, at most ``pool_size`` at a time.
    """

    name = "relational"

    def __init__(
        self,
        db_path: str | Path,
        pool_size: int = 5,
        retry_policy: RetryPolicy | None = None,
    ):
        self.db_path = Path(db_path)
        self._retry_policy = retry_policy or RetryPolicy()
        self._connection_semaphore = asyncio.Semaphore(pool_size)
        self._initialize_db()

    # ---------- Connection handling ----------

    def _get_connection(self) -> sqlite3.Connection:
        """Opens a connection in autocommit mode; writes use _transaction()."""
        try:
            conn = sqlite3.connect(
                self.db_path, timeout=30, isolation_level=None, check_same_thread=False
            )
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            return conn
        except sqlite3.Error as e:
            log.error(f"Failed to open database '{self.db_path}': {e}")
            raise

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Yields a connection inside BEGIN IMMEDIATE ... COMMIT."""
        with closing(self._get_connection()) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _initialize_db(self) -> None:
        if self.db_path.parent and not self.db_path.parent.exists():
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with closing(self._get_connection()) as conn:
            conn.executescript(SCHEMA)
        log.debug(f"Relational store ready at '{self.db_path}'.")

    async def _run(self, description: str, func: Callable[..., T], *args: Any) -> T:
        """Runs a synchronous database function in the pool, with retries."""

        def guarded() -> T:
            try:
                return func(*args)
            except sqlite3.OperationalError as e:
                message = str(e).lower()
                if "locked" in message or "busy" in message:
                    raise DatabaseBusyError(str(e)) from e
                raise

        async def attempt() -> T:
            async with self._connection_semaphore:
                return await asyncio.to_thread(guarded)

        return await with_retry(
            attempt, self._retry_policy, description=f"{self.name} {description}"
        )

    def _query_one(self, sql: str, params: tuple) -> Optional[tuple]:
        with closing(self._get_connection()) as conn:
            return conn.execute(sql, params).fetchone()

    def _query_all(self, sql: str, params: tuple = ()) -> list[tuple]:
        with closing(self._get_connection()) as conn:
            return conn.execute(sql, params).fetchall()

    def _write(self, sql: str, params: tuple) -> None:
        with self._transaction() as conn:
            conn.execute(sql, params)

    # ---------- Per-user records ----------

    async def _get_record(self, username: str, kind: str, key: str, model):
        keys.require_username(username)
        row = await self._run(
            f"get {kind}",
            self._query_one,
            "SELECT value FROM user_records"
            " WHERE username = ? AND kind = ? AND record_key = ?",
            (username, kind, key),
        )
        if row is None:
            return None
        return decode_model(keys.user_key(username, kind, key), row[0], model)

    async def _set_record(self, username: str, kind: str, key: str, value) -> None:
        keys.require_username(username)
        await self._run(
            f"set {kind}",
            self._write,
            "INSERT INTO user_records (username, kind, record_key, value)"
            " VALUES (?, ?, ?, ?)"
            " ON CONFLICT(username, kind, record_key)"
            " DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP",
            (username, kind, key, encode_json(value)),
        )

    async def _get_records(self, username: str, kind: str, model) -> dict:
        keys.require_username(username)
        rows = await self._run(
            f"list {kind}",
            self._query_all,
            "SELECT record_key, value FROM user_records"
            " WHERE username = ? AND kind = ? ORDER BY record_key",
            (username, kind),
        )
        result = {}
        for record_key, value in rows:
            try:
                result[record_key] = decode_model(
                    keys.user_key(username, kind, record_key), value, model
                )
            except CorruptRecordError as e:
                log.warning(f"Skipping unreadable record: {e}")
        return result

    async def _delete_record(self, username: str, kind: str, key: str) -> None:
        keys.require_username(username)
        await self._run(
            f"delete {kind}",
            self._write,
            "DELETE FROM user_records WHERE username = ? AND kind = ? AND record_key = ?",
            (username, kind, key),
        )

    async def get_play_record(self, username: str, key: str) -> Optional[PlayRecord]:
        return await self._get_record(username, keys.PLAY_RECORD, key, PlayRecord)

    async def set_play_record(
        self, username: str, key: str, record: PlayRecord
    ) -> None:
        await self._set_record(username, keys.PLAY_RECORD, key, record)

    async def get_all_play_records(self, username: str) -> dict[str, PlayRecord]:
        return await self._get_records(username, keys.PLAY_RECORD, PlayRecord)

    async def delete_play_record(self, username: str, key: str) -> None:
        await self._delete_record(username, keys.PLAY_RECORD, key)

    async def get_favorite(self, username: str, key: str) -> Optional[Favorite]:
        return await self._get_record(username, keys.FAVORITE, key, Favorite)

    async def set_favorite(self, username: str, key: str, favorite: Favorite) -> None:
        await self._set_record(username, keys.FAVORITE, key, favorite)

    async def get_all_favorites(self, username: str) -> dict[str, Favorite]:
        return await self._get_records(username, keys.FAVORITE, Favorite)

    async def delete_favorite(self, username: str, key: str) -> None:
        await self._delete_record(username, keys.FAVORITE, key)

    async def get_skip_config(
        self, username: str, source: str, item_id: str
    ) -> Optional[SkipConfig]:
        return await self._get_record(
            username, keys.SKIP_CONFIG, keys.composite_key(source, item_id), SkipConfig
        )

    async def set_skip_config(
        self, username: str, source: str, item_id: str, config: SkipConfig
    ) -> None:
        await self._set_record(
            username, keys.SKIP_CONFIG, keys.composite_key(source, item_id), config
        )

    async def get_all_skip_configs(self, username: str) -> dict[str, SkipConfig]:
        return await self._get_records(username, keys.SKIP_CONFIG, SkipConfig)

    async def delete_skip_config(
        self, username: str, source: str, item_id: str
    ) -> None:
        await self._delete_record(
            username, keys.SKIP_CONFIG, keys.composite_key(source, item_id)
        )

    # ---------- Search history ----------

    async def get_search_history(self, username: str) -> list[str]:
        keys.require_username(username)
        rows = await self._run(
            "get search history",
            self._query_all,
            "SELECT keyword FROM search_history WHERE username = ? ORDER BY seq DESC",
            (username,),
        )
        return [row[0] for row in rows]

    def _add_search_history_sync(self, username: str, keyword: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                "DELETE FROM search_history WHERE username = ? AND keyword = ?",
                (username, keyword),
            )
            (next_seq,) = conn.execute(
                "SELECT COALESCE(MAX(seq), 0) + 1 FROM search_history"
                " WHERE username = ?",
                (username,),
            ).fetchone()
            conn.execute(
                "INSERT INTO search_history (username, keyword, seq) VALUES (?, ?, ?)",
                (username, keyword, next_seq),
            )
            conn.execute(
                "DELETE FROM search_history WHERE username = ? AND seq NOT IN ("
                " SELECT seq FROM search_history WHERE username = ?"
                " ORDER BY seq DESC LIMIT ?)",
                (username, username, SEARCH_HISTORY_LIMIT),
            )

    async def add_search_history(self, username: str, keyword: str) -> None:
        keys.require_username(username)
        await self._run(
            "add search history", self._add_search_history_sync, username, str(keyword)
        )

    async def delete_search_history(
        self, username: str, keyword: Optional[str] = None
    ) -> None:
        keys.require_username(username)
        if keyword:
            await self._run(
                "delete search history",
                self._write,
                "DELETE FROM search_history WHERE username = ? AND keyword = ?",
                (username, str(keyword)),
            )
        else:
            await self._run(
                "clear search history",
                self._write,
                "DELETE FROM search_history WHERE username = ?",
                (username,),
            )

    # ---------- Users ----------

    async def register_user(self, username: str, password: str) -> None:
        keys.require_username(username)
        await self._run(
            "register user",
            self._write,
            "INSERT INTO users (username, password) VALUES (?, ?)"
            " ON CONFLICT(username) DO UPDATE SET password = excluded.password",
            (username, password),
        )

    async def verify_user(self, username: str, password: str) -> bool:
        keys.require_username(username)
        row = await self._run(
            "verify user",
            self._query_one,
            "SELECT password FROM users WHERE username = ?",
            (username,),
        )
        return row is not None and str(row[0]) == password

    async def check_user_exist(self, username: str) -> bool:
        keys.require_username(username)
        row = await self._run(
            "check user",
            self._query_one,
            "SELECT 1 FROM users WHERE username = ?",
            (username,),
        )
        return row is not None

    async def change_password(self, username: str, new_password: str) -> None:
        keys.require_username(username)
        await self._run(
            "change password",
            self._write,
            "UPDATE users SET password = ? WHERE username = ?",
            (new_password, username),
        )

    def _delete_user_sync(self, username: str) -> None:
        with self._transaction() as conn:
            for table in ("users", "user_roles", "user_bans", "search_history"):
                conn.execute(
                    f"DELETE FROM {table} WHERE username = ?",  # noqa: S608
                    (username,),
                )
            cursor = conn.execute(
                "DELETE FROM user_records WHERE username = ?", (username,)
            )
            log.debug(f"Deleted user '{username}' and {cursor.rowcount} records.")

    async def delete_user(self, username: str) -> None:
        keys.require_username(username)
        await self._run("delete user", self._delete_user_sync, username)

    async def get_all_users(self) -> list[str]:
        rows = await self._run(
            "list users",
            self._query_all,
            "SELECT username FROM users"
            " UNION SELECT username FROM user_roles"
            " UNION SELECT username FROM user_bans"
            " ORDER BY username",
        )
        return [row[0] for row in rows]

    # ---------- Settings ----------

    async def _get_setting(self, key: str) -> Optional[str]:
        row = await self._run(
            f"get {key}",
            self._query_one,
            "SELECT value FROM settings WHERE key = ?",
            (key,),
        )
        return None if row is None else row[0]

    async def _set_setting(self, key: str, value: str) -> None:
        await self._run(
            f"set {key}",
            self._write,
            "INSERT INTO settings (key, value) VALUES (?, ?)"
            " ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )

    async def get_admin_config(self) -> Optional[AdminConfig]:
        raw = await self._get_setting(keys.ADMIN_CONFIG_KEY)
        return None if raw is None else decode_model(keys.ADMIN_CONFIG_KEY, raw, AdminConfig)

    async def set_admin_config(self, config: AdminConfig) -> None:
        await self._set_setting(keys.ADMIN_CONFIG_KEY, encode_json(config))

    async def delete_admin_config(self) -> None:
        await self._run(
            "delete admin config",
            self._write,
            "DELETE FROM settings WHERE key = ?",
            (keys.ADMIN_CONFIG_KEY,),
        )

    async def get_site_config(self) -> Optional[SiteConfig]:
        raw = await self._get_setting(keys.SITE_CONFIG_KEY)
        return None if raw is None else decode_model(keys.SITE_CONFIG_KEY, raw, SiteConfig)

    async def set_site_config(self, config: SiteConfig) -> None:
        await self._set_setting(keys.SITE_CONFIG_KEY, encode_json(config))

    async def get_source_config(self) -> Optional[list[SourceEntry]]:
        raw = await self._get_setting(keys.SOURCE_CONFIG_KEY)
        if raw is None:
            return None
        return decode_list(keys.SOURCE_CONFIG_KEY, raw, SOURCE_LIST)

    async def set_source_config(self, sources: list[SourceEntry]) -> None:
        await self._set_setting(
            keys.SOURCE_CONFIG_KEY,
            encode_json(SOURCE_LIST.dump_python(sources, mode="json", by_alias=True)),
        )

    async def get_custom_categories(self) -> Optional[list[CustomCategory]]:
        raw = await self._get_setting(keys.CATEGORIES_KEY)
        if raw is None:
            return None
        return decode_list(keys.CATEGORIES_KEY, raw, CATEGORY_LIST)

    async def set_custom_categories(self, categories: list[CustomCategory]) -> None:
        await self._set_setting(
            keys.CATEGORIES_KEY,
            encode_json(
                CATEGORY_LIST.dump_python(categories, mode="json", by_alias=True)
            ),
        )

    async def get_allow_register(self) -> bool:
        return (await self._get_setting(keys.ALLOW_REGISTER_KEY)) == "true"

    async def set_allow_register(self, allow: bool) -> None:
        await self._set_setting(keys.ALLOW_REGISTER_KEY, "true" if allow else "false")

    # ---------- Roles and bans ----------

    async def get_user_role(self, username: str) -> Optional[UserRole]:
        keys.require_username(username)
        row = await self._run(
            "get role",
            self._query_one,
            "SELECT role FROM user_roles WHERE username = ?",
            (username,),
        )
        if row is None:
            return None
        try:
            role = UserRole(row[0])
        except ValueError:
            log.warning(f"Ignoring unknown role '{row[0]}' for user '{username}'.")
            return None
        return None if role.is_default else role

    async def set_user_role(self, username: str, role: UserRole) -> None:
        role = UserRole(role)
        if role.is_default:
            await self.delete_user_role(username)
            return
        keys.require_username(username)
        await self._run(
            "set role",
            self._write,
            "INSERT INTO user_roles (username, role) VALUES (?, ?)"
            " ON CONFLICT(username) DO UPDATE SET role = excluded.role",
            (username, role.value),
        )

    async def delete_user_role(self, username: str) -> None:
        keys.require_username(username)
        await self._run(
            "delete role",
            self._write,
            "DELETE FROM user_roles WHERE username = ?",
            (username,),
        )

    async def get_user_banned(self, username: str) -> bool:
        keys.require_username(username)
        row = await self._run(
            "get ban",
            self._query_one,
            "SELECT 1 FROM user_bans WHERE username = ?",
            (username,),
        )
        return row is not None

    async def set_user_banned(self, username: str, banned: bool) -> None:
        keys.require_username(username)
        if banned:
            sql = "INSERT OR IGNORE INTO user_bans (username) VALUES (?)"
        else:
            sql = "DELETE FROM user_bans WHERE username = ?"
        await self._run("set ban", self._write, sql, (username,))

    # ---------- Lifecycle ----------

    def _vacuum_sync(self) -> None:
        with closing(self._get_connection()) as conn:
            conn.execute("VACUUM;")
            conn.execute("ANALYZE;")

    async def vacuum(self) -> None:
        """Rebuilds the database file to reclaim space from deleted users."""
        await self._run("vacuum", self._vacuum_sync)
        log.info("Relational store optimized successfully.")

    def describe(self) -> dict[str, Any]:
        return {"type": self.name, "path": str(self.db_path)}
