import aiohttp
import fakeredis
import fakeredis.aioredis
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from redis import exceptions as redis_exceptions

from moontv_storage.models import (
    AdminConfig,
    CustomCategory,
    Favorite,
    PlayRecord,
    SiteConfig,
    SourceEntry,
    UserConfig,
    UserEntry,
    UserRole,
)
from moontv_storage.storage.memory import MemoryStorage
from moontv_storage.storage.redis_storage import RedisStorage
from moontv_storage.storage.sqlite_storage import SQLiteStorage
from moontv_storage.storage.upstash import UpstashStorage
from moontv_storage.utils.retry import RetryPolicy

UPSTASH_TOKEN = "test-token"

FAST_RETRY = RetryPolicy(attempts=3, base_delay=0, max_delay=0)


def make_upstash_app(client) -> web.Application:
    """
    A minimal stand-in for the Upstash REST API backed by a fake Redis.

    ``app["fail_next"]`` makes the next N requests answer 503.
    """
    app = web.Application()
    app["fail_next"] = 0
    app["requests"] = 0

    def check(request: web.Request):
        request.app["requests"] += 1
        if request.headers.get("Authorization") != f"Bearer {UPSTASH_TOKEN}":
            return web.json_response({"error": "Unauthorized"}, status=401)
        if request.app["fail_next"] > 0:
            request.app["fail_next"] -= 1
            return web.json_response({"error": "Service Unavailable"}, status=503)
        return None

    async def command(request: web.Request) -> web.Response:
        if (denied := check(request)) is not None:
            return denied
        args = await request.json()
        try:
            result = await client.execute_command(*args)
        except redis_exceptions.ResponseError as e:
            return web.json_response({"error": str(e)}, status=400)
        return web.json_response({"result": result})

    async def multi_exec(request: web.Request) -> web.Response:
        if (denied := check(request)) is not None:
            return denied
        commands = await request.json()
        async with client.pipeline(transaction=True) as pipe:
            for args in commands:
                pipe.execute_command(*args)
            results = await pipe.execute()
        return web.json_response([{"result": r} for r in results])

    app.router.add_post("/", command)
    app.router.add_post("/multi-exec", multi_exec)
    return app


@pytest.fixture
def fake_redis():
    return fakeredis.aioredis.FakeRedis(
        server=fakeredis.FakeServer(), decode_responses=True
    )


@pytest.fixture
async def upstash_server(fake_redis):
    server = TestServer(make_upstash_app(fake_redis))
    await server.start_server()
    yield server
    await server.close()


@pytest.fixture
async def http_session():
    session = aiohttp.ClientSession()
    yield session
    await session.close()


@pytest.fixture
def memory_storage():
    return MemoryStorage()


@pytest.fixture
def sqlite_storage(tmp_path):
    return SQLiteStorage(tmp_path / "moontv.sqlite", retry_policy=FAST_RETRY)


@pytest.fixture
def redis_storage(fake_redis):
    return RedisStorage(client=fake_redis, retry_policy=FAST_RETRY)


@pytest.fixture
def upstash_storage(upstash_server, http_session):
    return UpstashStorage(
        str(upstash_server.make_url("/")),
        UPSTASH_TOKEN,
        session=http_session,
        retry_policy=FAST_RETRY,
    )


@pytest.fixture(params=["memory", "relational", "redis", "upstash"])
def backend(request):
    """Every backend, so behavior tests run against all of them."""
    fixture_name = {
        "memory": "memory_storage",
        "relational": "sqlite_storage",
        "redis": "redis_storage",
        "upstash": "upstash_storage",
    }[request.param]
    return request.getfixturevalue(fixture_name)


def make_play_record(title: str = "Spirited Away", **overrides) -> PlayRecord:
    data = {
        "title": title,
        "source_name": "Example Source",
        "year": "2001",
        "cover": "https://img.example/cover.jpg",
        "index": 1,
        "total_episodes": 1,
        "play_time": 120,
        "total_time": 7500,
        "save_time": 1_700_000_000_000,
        "search_title": title,
    }
    data.update(overrides)
    return PlayRecord(**data)


def make_favorite(title: str = "Spirited Away", **overrides) -> Favorite:
    data = {
        "title": title,
        "source_name": "Example Source",
        "year": "2001",
        "cover": "",
        "total_episodes": 1,
        "save_time": 1_700_000_000_000,
    }
    data.update(overrides)
    return Favorite(**data)


def sample_admin_config() -> AdminConfig:
    return AdminConfig(
        site_config=SiteConfig(
            site_name="MoonTV",
            announcement="hello",
            search_downstream_max_page=3,
            config_file='{"api_site": {}}',
        ),
        user_config=UserConfig(
            allow_register=True,
            users=[
                UserEntry(username="alice", role=UserRole.OWNER),
                UserEntry(username="bob", role=UserRole.USER, banned=True),
            ],
        ),
        source_config=[
            SourceEntry(key="src", name="Source", api="https://api.example/vod"),
        ],
        custom_categories=[
            CustomCategory(name="Anime", type="tv", query="anime"),
        ],
    )
