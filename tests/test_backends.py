"""Behavior shared by every StorageBackend implementation."""

import asyncio

import pytest
from conftest import make_favorite, make_play_record, sample_admin_config

from moontv_storage.exceptions import InvalidUsernameError
from moontv_storage.models import (
    SiteConfig,
    SkipConfig,
    SourceEntry,
    UserEntry,
    UserRole,
)


class TestPlayRecords:
    async def test_set_get_and_overwrite(self, backend):
        await backend.set_play_record("alice", "src+1", make_play_record(index=1))
        await backend.set_play_record("alice", "src+1", make_play_record(index=3))

        record = await backend.get_play_record("alice", "src+1")
        assert record is not None
        assert record.index == 3
        assert record.title == "Spirited Away"

    async def test_missing_record_is_none(self, backend):
        assert await backend.get_play_record("alice", "src+404") is None

    async def test_get_all_is_keyed_by_composite_key(self, backend):
        await backend.set_play_record("alice", "src+1", make_play_record("One"))
        await backend.set_play_record("alice", "other+2", make_play_record("Two"))

        records = await backend.get_all_play_records("alice")
        assert set(records) == {"src+1", "other+2"}
        assert records["other+2"].title == "Two"

    async def test_delete_is_idempotent(self, backend):
        await backend.set_play_record("alice", "src+1", make_play_record())
        await backend.delete_play_record("alice", "src+1")
        await backend.delete_play_record("alice", "src+1")
        assert await backend.get_all_play_records("alice") == {}

    async def test_users_are_isolated(self, backend):
        await backend.set_play_record("alice", "src+1", make_play_record())
        assert await backend.get_all_play_records("bob") == {}
        assert await backend.get_play_record("bob", "src+1") is None

    async def test_glob_characters_in_username_do_not_widen_scans(self, backend):
        await backend.set_play_record("ab", "src+1", make_play_record())
        await backend.set_play_record("a*", "src+2", make_play_record())

        assert set(await backend.get_all_play_records("a*")) == {"src+2"}
        assert set(await backend.get_all_play_records("a?")) == set()


class TestFavorites:
    async def test_round_trip(self, backend):
        await backend.set_favorite("alice", "src+9", make_favorite("Nine"))
        favorite = await backend.get_favorite("alice", "src+9")
        assert favorite is not None and favorite.title == "Nine"
        assert set(await backend.get_all_favorites("alice")) == {"src+9"}

        await backend.delete_favorite("alice", "src+9")
        assert await backend.get_favorite("alice", "src+9") is None

    async def test_concurrent_writes_keep_one_value(self, backend):
        titles = [f"Title {i}" for i in range(10)]
        await asyncio.gather(
            *(
                backend.set_favorite("alice", "src+1", make_favorite(title))
                for title in titles
            )
        )

        favorite = await backend.get_favorite("alice", "src+1")
        assert favorite.title in titles
        assert set(await backend.get_all_favorites("alice")) == {"src+1"}

    async def test_favorites_and_play_records_do_not_mix(self, backend):
        await backend.set_favorite("alice", "src+1", make_favorite())
        assert await backend.get_all_play_records("alice") == {}


class TestSkipConfigs:
    async def test_round_trip(self, backend):
        config = SkipConfig(enable=True, intro_time=85, outro_time=-120)
        await backend.set_skip_config("alice", "src", "7", config)

        assert await backend.get_skip_config("alice", "src", "7") == config
        assert await backend.get_all_skip_configs("alice") == {"src+7": config}

        await backend.delete_skip_config("alice", "src", "7")
        assert await backend.get_skip_config("alice", "src", "7") is None


class TestSearchHistory:
    async def test_most_recent_first_without_duplicates(self, backend):
        for keyword in ["a", "b", "c", "a"]:
            await backend.add_search_history("alice", keyword)
        assert await backend.get_search_history("alice") == ["a", "c", "b"]

    async def test_capped_at_twenty(self, backend):
        for i in range(25):
            await backend.add_search_history("alice", f"k{i}")

        history = await backend.get_search_history("alice")
        assert len(history) == 20
        assert history[0] == "k24"
        assert history[-1] == "k5"

    async def test_delete_one_and_clear(self, backend):
        for keyword in ["a", "b", "c"]:
            await backend.add_search_history("alice", keyword)

        await backend.delete_search_history("alice", "b")
        assert await backend.get_search_history("alice") == ["c", "a"]

        await backend.delete_search_history("alice")
        assert await backend.get_search_history("alice") == []

    async def test_empty_history(self, backend):
        assert await backend.get_search_history("nobody") == []


class TestUsers:
    async def test_register_and_verify(self, backend):
        assert not await backend.check_user_exist("alice")
        await backend.register_user("alice", "secret")

        assert await backend.check_user_exist("alice")
        assert await backend.verify_user("alice", "secret")
        assert not await backend.verify_user("alice", "wrong")
        assert not await backend.verify_user("bob", "secret")

    async def test_password_is_compared_verbatim(self, backend):
        await backend.register_user("alice", '"secret"')

        assert await backend.verify_user("alice", '"secret"')
        assert not await backend.verify_user("alice", "other")

    async def test_change_password(self, backend):
        await backend.register_user("alice", "old")
        await backend.change_password("alice", "new")
        assert await backend.verify_user("alice", "new")
        assert not await backend.verify_user("alice", "old")

    async def test_delete_user_cascades(self, backend):
        await backend.register_user("alice", "pw")
        await backend.set_play_record("alice", "src+1", make_play_record())
        await backend.set_favorite("alice", "src+1", make_favorite())
        await backend.set_skip_config("alice", "src", "1", SkipConfig(enable=True))
        await backend.add_search_history("alice", "kw")
        await backend.set_user_role("alice", UserRole.ADMIN)
        await backend.set_user_banned("alice", True)
        await backend.register_user("bob", "pw")
        await backend.set_play_record("bob", "src+1", make_play_record())

        await backend.delete_user("alice")

        assert not await backend.check_user_exist("alice")
        assert await backend.get_all_play_records("alice") == {}
        assert await backend.get_all_favorites("alice") == {}
        assert await backend.get_all_skip_configs("alice") == {}
        assert await backend.get_search_history("alice") == []
        assert await backend.get_user_role("alice") is None
        assert not await backend.get_user_banned("alice")
        assert await backend.get_all_users() == ["bob"]
        assert set(await backend.get_all_play_records("bob")) == {"src+1"}

    async def test_get_all_users_includes_role_and_ban_only_users(self, backend):
        await backend.register_user("carol", "pw")
        await backend.register_user("alice", "pw")
        await backend.set_user_role("dave", UserRole.OWNER)
        await backend.set_user_banned("bob", True)

        assert await backend.get_all_users() == ["alice", "bob", "carol", "dave"]

    async def test_empty_username_is_rejected(self, backend):
        with pytest.raises(InvalidUsernameError):
            await backend.get_all_play_records("")
        with pytest.raises(InvalidUsernameError):
            await backend.add_search_history("", "kw")


class TestRolesAndBans:
    async def test_default_role_is_never_stored(self, backend):
        await backend.set_user_role("alice", UserRole.ADMIN)
        assert await backend.get_user_role("alice") == UserRole.ADMIN

        await backend.set_user_role("alice", UserRole.USER)
        assert await backend.get_user_role("alice") is None
        assert await backend.get_all_users() == []

    async def test_unban_removes_the_flag(self, backend):
        await backend.set_user_banned("alice", True)
        assert await backend.get_user_banned("alice")

        await backend.set_user_banned("alice", False)
        assert not await backend.get_user_banned("alice")
        assert await backend.get_all_users() == []

    async def test_users_with_roles(self, backend):
        await backend.register_user("alice", "pw")
        await backend.register_user("bob", "pw")
        await backend.set_user_role("alice", UserRole.OWNER)
        await backend.set_user_banned("bob", True)

        assert await backend.get_all_users_with_roles() == [
            UserEntry(username="alice", role=UserRole.OWNER, banned=False),
            UserEntry(username="bob", role=UserRole.USER, banned=True),
        ]


class TestAdminConfig:
    async def test_legacy_blob_round_trip(self, backend):
        assert await backend.get_admin_config() is None

        config = sample_admin_config()
        await backend.set_admin_config(config)
        assert await backend.get_admin_config() == config

        await backend.delete_admin_config()
        assert await backend.get_admin_config() is None

    async def test_separated_is_none_before_initialization(self, backend):
        assert await backend.get_admin_config_from_separated() is None

    async def test_separated_round_trip(self, backend):
        config = sample_admin_config()
        for user in config.user_config.users:
            await backend.register_user(user.username, "pw")

        await backend.set_admin_config_separated(config)

        assert await backend.get_admin_config_from_separated() == config
        assert await backend.get_allow_register()
        assert await backend.get_user_role("bob") is None

    async def test_allow_register_defaults_to_false(self, backend):
        assert not await backend.get_allow_register()
        await backend.set_allow_register(True)
        assert await backend.get_allow_register()

    async def test_site_config_keeps_unknown_fields(self, backend):
        site = SiteConfig.model_validate({"SiteName": "X", "FluidSearch": True})
        await backend.set_site_config(site)

        stored = await backend.get_site_config()
        assert stored.site_name == "X"
        assert stored.model_dump(by_alias=True)["FluidSearch"] is True

    async def test_source_and_category_lists(self, backend):
        assert await backend.get_source_config() is None
        assert await backend.get_custom_categories() is None

        sources = [SourceEntry(key="a", name="A", api="https://a", origin="config")]
        await backend.set_source_config(sources)
        assert await backend.get_source_config() == sources

        await backend.set_custom_categories([])
        assert await backend.get_custom_categories() == []
