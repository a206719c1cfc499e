"""
In-process storage backend, used for local development and tests.
"""

import asyncio
from typing import Any, Optional

from . import keys
from .kv import KeyValueStorage


class MemoryStorage(KeyValueStorage):
    """
    Keeps every key in process memory. Data is lost when the process exits.
    """

    name = "memory"

    def __init__(self):
        super().__init__()
        self._strings: dict[str, str] = {}
        self._lists: dict[str, list[str]] = {}
        self._lock = asyncio.Lock()

    async def _get(self, key: str) -> Optional[str]:
        return self._strings.get(key)

    async def _mget(self, keys_: list[str]) -> list[Optional[str]]:
        return [self._strings.get(k) for k in keys_]

    async def _set(self, key: str, value: str) -> None:
        self._lists.pop(key, None)
        self._strings[key] = value

    async def _delete(self, *keys_: str) -> None:
        for key in keys_:
            self._strings.pop(key, None)
            self._lists.pop(key, None)

    async def _exists(self, key: str) -> bool:
        return key in self._strings or key in self._lists

    async def _scan(self, pattern: str) -> list[str]:
        regex = keys.glob_to_regex(pattern)
        return sorted(
            k for k in (*self._strings, *self._lists) if regex.match(k)
        )

    async def _lrange(self, key: str) -> list[str]:
        return list(self._lists.get(key, []))

    async def _lrem(self, key: str, value: str) -> None:
        async with self._lock:
            items = [v for v in self._lists.get(key, []) if v != value]
            if items:
                self._lists[key] = items
            else:
                self._lists.pop(key, None)

    async def _push_front_capped(self, key: str, value: str, limit: int) -> None:
        async with self._lock:
            items = [v for v in self._lists.get(key, []) if v != value]
            self._strings.pop(key, None)
            self._lists[key] = [value, *items][:limit]

    async def close(self) -> None:
        self._strings.clear()
        self._lists.clear()

    def describe(self) -> dict[str, Any]:
        return {
            "type": self.name,
            "keys": len(self._strings) + len(self._lists),
        }
