import pytest
from conftest import make_favorite, make_play_record

from moontv_storage.core import db_manager as db_manager_module
from moontv_storage.core.db_manager import DbManager, get_db_manager, reset_db_manager
from moontv_storage.exceptions import (
    StorageUnavailableError,
    UnsupportedOperationError,
)
from moontv_storage.models import SkipConfig, StorageConfig, UserRole
from moontv_storage.storage import keys
from moontv_storage.storage.memory import MemoryStorage


@pytest.fixture
def db(backend):
    return DbManager(backend)


async def test_favorites_scenario(db):
    assert await db.is_favorited("alice", "src", "1") is False

    await db.save_favorite("alice", "src", "1", make_favorite("One"))
    await db.save_favorite("alice", "src", "2", make_favorite("Two"))

    assert await db.is_favorited("alice", "src", "1")
    assert set(await db.get_all_favorites("alice")) == {"src+1", "src+2"}

    await db.delete_favorite("alice", "src", "1")
    assert not await db.is_favorited("alice", "src", "1")
    assert set(await db.get_all_favorites("alice")) == {"src+2"}


async def test_play_records_by_source_and_id(db):
    await db.save_play_record("alice", "src", "9", make_play_record(index=4))

    record = await db.get_play_record("alice", "src", "9")
    assert record.index == 4
    assert set(await db.get_all_play_records("alice")) == {"src+9"}

    await db.delete_play_record("alice", "src", "9")
    assert await db.get_play_record("alice", "src", "9") is None


async def test_skip_config_default(db):
    assert await db.get_skip_config_or_default("alice", "src", "1") == (
        SkipConfig.disabled()
    )
    config = SkipConfig(enable=True, intro_time=30, outro_time=-60)
    await db.set_skip_config("alice", "src", "1", config)
    assert await db.get_skip_config_or_default("alice", "src", "1") == config


async def test_user_operations(db):
    await db.register_user("alice", "pw")
    assert await db.check_user_exist("alice")
    assert await db.verify_user("alice", "pw")

    await db.change_password("alice", "new")
    assert await db.verify_user("alice", "new")

    await db.set_user_role("alice", UserRole.ADMIN)
    assert await db.get_all_users() == ["alice"]
    assert (await db.get_all_users_with_roles())[0].role == UserRole.ADMIN

    await db.delete_user("alice")
    assert await db.get_all_users() == []


class NoExtrasStorage(MemoryStorage):
    """A backend without skip configs, user listing or a normalized layout."""

    async def get_skip_config(self, username, source, item_id):
        raise UnsupportedOperationError("skip configs")

    async def set_skip_config(self, username, source, item_id, config):
        raise UnsupportedOperationError("skip configs")

    async def get_all_skip_configs(self, username):
        raise UnsupportedOperationError("skip configs")

    async def get_all_users(self):
        raise UnsupportedOperationError("user listing")

    async def get_site_config(self):
        raise UnsupportedOperationError("normalized config")

    async def get_allow_register(self):
        raise UnsupportedOperationError("normalized config")

    async def migrate_from_legacy(self):
        raise UnsupportedOperationError("normalized config")


async def test_unsupported_operations_degrade_to_defaults():
    db = DbManager(NoExtrasStorage())

    assert await db.get_skip_config("alice", "src", "1") is None
    assert await db.get_skip_config_or_default("alice", "src", "1") == (
        SkipConfig.disabled()
    )
    await db.set_skip_config("alice", "src", "1", SkipConfig(enable=True))
    assert await db.get_all_skip_configs("alice") == {}
    assert await db.get_all_users() == []
    assert await db.get_site_config() is None
    assert await db.get_allow_register() is False
    assert await db.migrate_from_legacy() is False


class DownStorage(MemoryStorage):
    async def get_all_favorites(self, username):
        raise StorageUnavailableError("store is down")

    async def get_skip_config(self, username, source, item_id):
        raise StorageUnavailableError("store is down")


async def test_connectivity_errors_propagate():
    db = DbManager(DownStorage())

    with pytest.raises(StorageUnavailableError):
        await db.get_all_favorites("alice")
    with pytest.raises(StorageUnavailableError):
        await db.get_skip_config("alice", "src", "1")


async def test_corrupt_single_read_is_treated_as_absent(memory_storage, caplog):
    db = DbManager(memory_storage)
    await memory_storage._set(keys.favorite_key("alice", "src+1"), "][")

    assert await db.get_favorite("alice", "src", "1") is None
    assert not await db.is_favorited("alice", "src", "1")
    assert "unreadable record" in caplog.text


async def test_process_wide_instance(tmp_path):
    await reset_db_manager()
    config = StorageConfig(
        storage_type="relational", sqlite_path=str(tmp_path / "db.sqlite")
    )
    try:
        first = await get_db_manager(config)
        second = await get_db_manager()
        assert first is second
        assert first.storage.name == "relational"
    finally:
        await reset_db_manager()
    assert db_manager_module._db_manager is None
