import pytest
from conftest import sample_admin_config

from moontv_storage.models import SiteConfig, UserRole
from moontv_storage.storage.memory import MemoryStorage


async def test_migrates_legacy_blob(backend):
    await backend.set_admin_config(sample_admin_config())

    assert await backend.migrate_from_legacy() is True

    assert await backend.get_admin_config() is None
    site = await backend.get_site_config()
    assert site.announcement == "hello"
    assert site.config_file == '{"api_site": {}}'
    assert [s.key for s in await backend.get_source_config()] == ["src"]
    assert [c.query for c in await backend.get_custom_categories()] == ["anime"]
    assert await backend.get_allow_register() is True
    assert await backend.get_user_role("alice") == UserRole.OWNER
    assert await backend.get_user_role("bob") is None
    assert await backend.get_user_banned("bob") is True


async def snapshot(backend):
    return (
        await backend.get_admin_config(),
        await backend.get_admin_config_from_separated(),
        await backend.get_allow_register(),
        await backend.get_all_users_with_roles(),
    )


async def test_second_run_is_a_no_op(backend):
    await backend.set_admin_config(sample_admin_config())
    assert await backend.migrate_from_legacy() is True
    after_first_run = await snapshot(backend)

    assert await backend.migrate_from_legacy() is False
    assert await snapshot(backend) == after_first_run


async def test_nothing_to_migrate(backend):
    assert await backend.migrate_from_legacy() is False

    assert await backend.get_site_config() is None
    assert await backend.get_source_config() is None
    assert await backend.get_custom_categories() is None
    assert await backend.get_all_users() == []


async def test_nothing_to_migrate_writes_no_keys(memory_storage):
    assert await memory_storage.migrate_from_legacy() is False
    assert await memory_storage._scan("*") == []


async def test_existing_site_config_blocks_migration(memory_storage, caplog):
    await memory_storage.set_site_config(SiteConfig(site_name="Current"))
    await memory_storage.set_admin_config(sample_admin_config())

    assert await memory_storage.migrate_from_legacy() is False
    assert (await memory_storage.get_site_config()).site_name == "Current"
    assert await memory_storage.get_admin_config() is not None
    assert "leaving the legacy" in caplog.text


class FailingStorage(MemoryStorage):
    """Fails once while writing user roles, like a dropped connection."""

    def __init__(self):
        super().__init__()
        self.fail_role_writes = True

    async def set_user_role(self, username, role):
        if self.fail_role_writes:
            self.fail_role_writes = False
            raise ConnectionError("connection dropped")
        await super().set_user_role(username, role)


async def test_interrupted_migration_resumes_on_retry():
    storage = FailingStorage()
    await storage.set_admin_config(sample_admin_config())

    with pytest.raises(ConnectionError):
        await storage.migrate_from_legacy()

    # Nothing marks the migration as done yet, so the legacy blob remains.
    assert await storage.get_site_config() is None
    assert await storage.get_admin_config() is not None

    assert await storage.migrate_from_legacy() is True
    assert await storage.get_user_role("alice") == UserRole.OWNER
    assert await storage.get_admin_config() is None
