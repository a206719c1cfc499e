"""
Redis storage backend.

Talks to any Redis-protocol server through ``redis.asyncio``. The key layout is
shared with the other key-value backends, so data can move between them.
"""

from __future__ import annotations

from typing import Any, Optional

import redis.asyncio as aioredis

from moontv_storage.utils.circuit_breaker import CircuitBreaker
from moontv_storage.utils.retry import RetryPolicy

from .clients import get_redis_client, redact_url
from .kv import KeyValueStorage

SCAN_COUNT = 200


class RedisStorage(KeyValueStorage):
    """
    StorageBackend over a Redis server.

    The client is the process-wide one from ``clients.get_redis_client`` unless
    one is injected (tests pass a fake client here).
    """

    name = "redis"

    def __init__(
        self,
        url: str = "redis://localhost:6379",
        client: aioredis.Redis | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        super().__init__(retry_policy, CircuitBreaker("Redis"))
        self._url = url
        self._client = client

    async def _redis(self) -> aioredis.Redis:
        if self._client is None:
            self._client = await get_redis_client(self._url)
        return self._client

    async def _get(self, key: str) -> Optional[str]:
        client = await self._redis()
        return await self._call("GET", lambda: client.get(key))

    async def _mget(self, keys_: list[str]) -> list[Optional[str]]:
        client = await self._redis()
        return await self._call("MGET", lambda: client.mget(keys_))

    async def _set(self, key: str, value: str) -> None:
        client = await self._redis()
        await self._call("SET", lambda: client.set(key, value))

    async def _delete(self, *keys_: str) -> None:
        if not keys_:
            return
        client = await self._redis()
        await self._call("DEL", lambda: client.delete(*keys_))

    async def _exists(self, key: str) -> bool:
        client = await self._redis()
        return await self._call("EXISTS", lambda: client.exists(key)) == 1

    async def _scan(self, pattern: str) -> list[str]:
        client = await self._redis()

        async def scan() -> list[str]:
            found = set()
            async for key in client.scan_iter(match=pattern, count=SCAN_COUNT):
                found.add(key)
            return sorted(found)

        return await self._call("SCAN", scan)

    async def _lrange(self, key: str) -> list[str]:
        client = await self._redis()
        return await self._call("LRANGE", lambda: client.lrange(key, 0, -1))

    async def _lrem(self, key: str, value: str) -> None:
        client = await self._redis()
        await self._call("LREM", lambda: client.lrem(key, 0, value))

    async def _push_front_capped(self, key: str, value: str, limit: int) -> None:
        client = await self._redis()

        async def push() -> None:
            async with client.pipeline(transaction=True) as pipe:
                pipe.lrem(key, 0, value)
                pipe.lpush(key, value)
                pipe.ltrim(key, 0, limit - 1)
                await pipe.execute()

        await self._call("MULTI LREM/LPUSH/LTRIM", push)

    async def close(self) -> None:
        # The shared client is owned by clients.close_clients().
        self._client = None

    def describe(self) -> dict[str, Any]:
        return {
            "type": self.name,
            "url": redact_url(self._url),
            "circuit": self._breaker.state.value,
        }
