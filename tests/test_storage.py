import os

from school_cbt.services.storage import FileStore, MemoryStore


def test_file_store_round_trip(tmp_path):
    store = FileStore(str(tmp_path / "data"))

    assert store.get("school_cbt_active_session") is None
    store.set("school_cbt_active_session", '{"a": 1}')
    assert store.get("school_cbt_active_session") == '{"a": 1}'

    store.set("school_cbt_active_session", '{"a": 2}')
    assert store.get("school_cbt_active_session") == '{"a": 2}'

    store.delete("school_cbt_active_session")
    store.delete("school_cbt_active_session")
    assert store.get("school_cbt_active_session") is None


def test_file_store_keys_cannot_escape_data_dir(tmp_path):
    data_dir = tmp_path / "data"
    store = FileStore(str(data_dir))
    store.set("../outside:key", "x")

    assert os.listdir(tmp_path) == ["data"]
    assert store.get("../outside:key") == "x"


def test_memory_store():
    store = MemoryStore()
    store.set("k", "v")
    assert store.get("k") == "v"
    store.delete("k")
    store.delete("k")
    assert store.get("k") is None
