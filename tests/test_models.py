import pytest
from pydantic import ValidationError

from moontv_storage.models import (
    AdminConfig,
    PlayRecord,
    SkipConfig,
    StorageConfig,
    StorageType,
    UserRole,
)


def test_play_record_reads_stored_json():
    record = PlayRecord.model_validate_json(
        '{"title":"T","source_name":"S","year":2001,"cover":"","index":2,'
        '"total_episodes":12,"play_time":30,"total_time":1400,'
        '"save_time":1700000000000,"search_title":"T","extra":"ignored"}'
    )
    assert record.year == "2001"
    assert record.index == 2


def test_play_record_index_is_one_based():
    with pytest.raises(ValidationError):
        PlayRecord(
            title="T",
            source_name="S",
            index=0,
            total_episodes=1,
            play_time=0,
            total_time=0,
            save_time=0,
        )


def test_skip_config_outro_is_an_offset_from_the_end():
    assert SkipConfig(enable=True, intro_time=10, outro_time=-30).outro_time == -30
    with pytest.raises(ValidationError):
        SkipConfig(enable=True, outro_time=5)
    with pytest.raises(ValidationError):
        SkipConfig(enable=True, intro_time=-1)


def test_skip_config_disabled():
    assert SkipConfig.disabled() == SkipConfig(enable=False, intro_time=0, outro_time=0)


def test_user_role_default():
    assert UserRole.USER.is_default
    assert not UserRole.ADMIN.is_default


def test_admin_config_uses_stored_field_names():
    config = AdminConfig.model_validate(
        {
            "SiteConfig": {"SiteName": "Moon", "SearchDownstreamMaxPage": 4},
            "UserConfig": {
                "AllowRegister": True,
                "Users": [{"username": "alice", "role": "owner"}],
            },
            "SourceConfig": [
                {"key": "k", "name": "N", "api": "https://a", "from": "config"}
            ],
            "CustomCategories": [{"type": "movie", "query": "hot"}],
        }
    )
    assert config.site_config.site_name == "Moon"
    assert config.user_config.users[0].role == UserRole.OWNER
    assert config.source_config[0].origin == "config"
    assert config.custom_categories[0].origin == "custom"
    assert config.custom_categories[0].merge_key == "hot:movie"

    dumped = config.to_storage()
    assert dumped["SourceConfig"][0]["from"] == "config"
    assert dumped["UserConfig"]["AllowRegister"] is True


def test_admin_config_folds_top_level_config_file():
    config = AdminConfig.model_validate(
        {"ConfigFile": '{"a": 1}', "SiteConfig": {"SiteName": "Moon"}}
    )
    assert config.config_file == '{"a": 1}'
    assert config.site_config.site_name == "Moon"
    assert "ConfigFile" not in config.to_storage()
    assert config.to_storage()["SiteConfig"]["ConfigFile"] == '{"a": 1}'


def test_admin_config_without_site_config_gets_defaults():
    config = AdminConfig.model_validate({"ConfigFile": "{}"})
    assert config.site_config.site_name == "MoonTV"
    assert config.config_file == "{}"


@pytest.mark.parametrize(
    "value, expected",
    [
        ("memory", StorageType.MEMORY),
        ("localstorage", StorageType.MEMORY),
        ("keyvalue-remote", StorageType.REDIS),
        ("Redis", StorageType.REDIS),
        ("keyvalue-rest", StorageType.UPSTASH),
        ("d1", StorageType.RELATIONAL),
        (" relational ", StorageType.RELATIONAL),
    ],
)
def test_storage_type_aliases(value, expected):
    assert StorageType.parse(value) is expected


def test_unknown_storage_type():
    with pytest.raises(ValueError, match="Unknown storage type"):
        StorageType.parse("mongo")


def test_storage_config_requires_upstash_credentials():
    with pytest.raises(ValidationError):
        StorageConfig(storage_type="upstash", upstash_url="https://x")
    config = StorageConfig(
        storage_type="keyvalue-rest", upstash_url="https://x", upstash_token="t"
    )
    assert config.storage_type is StorageType.UPSTASH


def test_storage_config_retry_bounds():
    with pytest.raises(ValidationError):
        StorageConfig(retry_attempts=0)
    with pytest.raises(ValidationError):
        StorageConfig(retry_base_delay=-1)
