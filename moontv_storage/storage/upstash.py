"""
REST-based Redis backend (Upstash-compatible HTTP API).

Each command is POSTed as a JSON array (``["SET", "key", "value"]``) to the
database URL with a bearer token; the reply is ``{"result": ...}`` or
``{"error": "..."}``. Transactions go to the ``/multi-exec`` endpoint.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import aiohttp

from moontv_storage.utils.circuit_breaker import CircuitBreaker
from moontv_storage.utils.retry import RetryPolicy

from .clients import get_http_session
from .kv import KeyValueStorage

log = logging.getLogger(__name__)

SCAN_COUNT = 200

# HTTP statuses that indicate a temporary problem on the provider side
TRANSIENT_STATUSES = frozenset({429, 500, 502, 503, 504})


class UpstashError(Exception):
    """An error reply from the REST API."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status
        self.transient = status in TRANSIENT_STATUSES


class UpstashStorage(KeyValueStorage):
    """StorageBackend over an Upstash-style Redis REST endpoint."""

    name = "upstash"

    def __init__(
        self,
        url: str,
        token: str,
        session: aiohttp.ClientSession | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        super().__init__(retry_policy, CircuitBreaker("Upstash"))
        self._url = url.rstrip("/")
        self._token = token
        self._session = session

    async def _http(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = await get_http_session()
        return self._session

    async def _post(self, path: str, payload: list) -> Any:
        session = await self._http()
        async with session.post(
            self._url + path,
            json=payload,
            headers={"Authorization": f"Bearer {self._token}"},
        ) as r:
            try:
                body = await r.json(content_type=None)
            except ValueError:
                body = None

            if r.status == 401 or r.status == 403:
                raise UpstashError("The REST token was rejected.", r.status)
            if r.status >= 400:
                message = body.get("error") if isinstance(body, dict) else None
                raise UpstashError(
                    message or f"HTTP {r.status} from the REST store.", r.status
                )
            if body is None:
                raise UpstashError("The REST store returned a non-JSON reply.", 502)
            return body

    async def _command(self, *args: Any) -> Any:
        """Sends one command and returns its result."""

        async def send() -> Any:
            body = await self._post("", [str(a) for a in args])
            if not isinstance(body, dict):
                raise UpstashError(f"Unexpected reply to {args[0]}: {body!r}")
            if "error" in body:
                raise UpstashError(body["error"])
            return body.get("result")

        return await self._call(str(args[0]), send)

    async def _transaction(self, *commands: list[Any]) -> list[Any]:
        """Runs ``commands`` atomically through the multi-exec endpoint."""

        async def send() -> list[Any]:
            body = await self._post(
                "/multi-exec", [[str(a) for a in cmd] for cmd in commands]
            )
            if isinstance(body, dict) and "error" in body:
                raise UpstashError(body["error"])
            results = []
            for reply in body:
                if "error" in reply:
                    raise UpstashError(reply["error"])
                results.append(reply.get("result"))
            return results

        return await self._call("MULTI-EXEC", send)

    # ---------- Primitives ----------

    async def _get(self, key: str) -> Optional[str]:
        return await self._command("GET", key)

    async def _mget(self, keys_: list[str]) -> list[Optional[str]]:
        if not keys_:
            return []
        return await self._command("MGET", *keys_)

    async def _set(self, key: str, value: str) -> None:
        await self._command("SET", key, value)

    async def _delete(self, *keys_: str) -> None:
        if keys_:
            await self._command("DEL", *keys_)

    async def _exists(self, key: str) -> bool:
        return int(await self._command("EXISTS", key) or 0) == 1

    async def _scan(self, pattern: str) -> list[str]:
        found: set[str] = set()
        cursor = "0"
        while True:
            cursor, batch = await self._command(
                "SCAN", cursor, "MATCH", pattern, "COUNT", SCAN_COUNT
            )
            found.update(batch)
            if str(cursor) == "0":
                return sorted(found)

    async def _lrange(self, key: str) -> list[str]:
        return [str(v) for v in await self._command("LRANGE", key, 0, -1) or []]

    async def _lrem(self, key: str, value: str) -> None:
        await self._command("LREM", key, 0, value)

    async def _push_front_capped(self, key: str, value: str, limit: int) -> None:
        await self._transaction(
            ["LREM", key, 0, value],
            ["LPUSH", key, value],
            ["LTRIM", key, 0, limit - 1],
        )

    async def close(self) -> None:
        # The shared session is owned by clients.close_clients().
        self._session = None

    def describe(self) -> dict[str, Any]:
        return {
            "type": self.name,
            "url": self._url,
            "circuit": self._breaker.state.value,
        }
