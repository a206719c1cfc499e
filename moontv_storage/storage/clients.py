"""
Process-wide client singletons for the remote backends.

Clients are created lazily on first use and shared by every caller for the
lifetime of the process. close_clients() tears them down so tests (and a
graceful shutdown) can start from a clean slate.
"""

import asyncio
import logging

import aiohttp
import redis.asyncio as aioredis

log = logging.getLogger(__name__)

_redis_clients: dict[str, aioredis.Redis] = {}
_http_session: aiohttp.ClientSession | None = None
_clients_lock = asyncio.Lock()


async def get_redis_client(url: str) -> aioredis.Redis:
    """Gets or creates the shared Redis client for ``url``."""
    async with _clients_lock:
        client = _redis_clients.get(url)
        if client is None:
            client = aioredis.from_url(
                url,
                decode_responses=True,
                socket_connect_timeout=10,
                health_check_interval=30,
            )
            _redis_clients[url] = client
            log.debug(f"Created Redis client for {redact_url(url)}")
    return client


async def get_http_session() -> aiohttp.ClientSession:
    """Gets or creates the shared aiohttp session used by the REST backend."""
    global _http_session
    async with _clients_lock:
        if _http_session and not _http_session.closed:
            return _http_session

        connector = aiohttp.TCPConnector(
            limit=32,
            ttl_dns_cache=300,
            keepalive_timeout=30,
            enable_cleanup_closed=True,
        )
        _http_session = aiohttp.ClientSession(
            connector=connector,
            timeout=aiohttp.ClientTimeout(total=30, connect=10, sock_read=20),
            headers={"Accept-Encoding": "gzip, deflate"},
        )
        log.debug("Created shared HTTP session for the REST store.")
    return _http_session


async def close_clients() -> None:
    """Closes every shared client."""
    global _http_session
    async with _clients_lock:
        for url, client in list(_redis_clients.items()):
            await client.aclose()
            log.debug(f"Closed Redis client for {redact_url(url)}")
        _redis_clients.clear()

        if _http_session and not _http_session.closed:
            await _http_session.close()
            log.debug("Closed shared HTTP session.")
        _http_session = None


def redact_url(url: str) -> str:
    """Hides the password part of a connection URL."""
    scheme, sep, rest = url.partition("://")
    if not sep or "@" not in rest:
        return url
    credentials, _, host = rest.rpartition("@")
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:***@{host}" if user else f"{scheme}://***@{host}"
