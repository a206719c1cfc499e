import pytest
from conftest import make_play_record

from moontv_storage.exceptions import CorruptRecordError
from moontv_storage.storage import keys


async def test_bulk_read_skips_corrupt_entries(memory_storage, caplog):
    await memory_storage.set_play_record("alice", "src+1", make_play_record())
    await memory_storage._set(keys.play_record_key("alice", "src+2"), "{not json")

    records = await memory_storage.get_all_play_records("alice")

    assert set(records) == {"src+1"}
    assert "Skipping unreadable record" in caplog.text


async def test_single_read_raises_on_corrupt_entry(memory_storage):
    key = keys.play_record_key("alice", "src+2")
    await memory_storage._set(key, '{"title": "missing fields"}')

    with pytest.raises(CorruptRecordError) as exc_info:
        await memory_storage.get_play_record("alice", "src+2")
    assert exc_info.value.key == key


async def test_reads_json_quoted_password_and_role(memory_storage):
    # Values written through a JSON-encoding client arrive quoted.
    await memory_storage._set(keys.password_key("alice"), '"secret"')
    await memory_storage._set(keys.role_key("alice"), '"admin"')

    assert await memory_storage.verify_user("alice", "secret")
    assert (await memory_storage.get_user_role("alice")).value == "admin"


async def test_unknown_role_reads_as_default(memory_storage):
    await memory_storage._set(keys.role_key("alice"), "superuser")
    assert await memory_storage.get_user_role("alice") is None


async def test_close_drops_all_data(memory_storage):
    await memory_storage.register_user("alice", "pw")
    assert memory_storage.describe() == {"type": "memory", "keys": 1}

    await memory_storage.close()
    assert not await memory_storage.check_user_exist("alice")
