import json
import os

import pytest

from jobtracker.adapters.storage_inmemory import InMemoryStorageAdapter
from jobtracker.adapters.storage_json_file import JsonFileStorageAdapter
from jobtracker.core.managers.history_store import HistoryStore

from fakes import record


class TestJsonFileStorage:
    def test_creates_directory(self, tmp_path):
        target = tmp_path / "nested" / "state"
        JsonFileStorageAdapter(target)
        assert target.is_dir()

    def test_set_get_delete(self, tmp_path):
        storage = JsonFileStorageAdapter(tmp_path)
        assert storage.get("jobs_history") is None
        storage.set("jobs_history", '[{"id": "a"}]')
        assert storage.get("jobs_history") == '[{"id": "a"}]'
        assert (tmp_path / "jobs_history.json").exists()
        storage.delete("jobs_history")
        assert storage.get("jobs_history") is None
        storage.delete("jobs_history")

    def test_overwrite_leaves_no_temp_files(self, tmp_path):
        storage = JsonFileStorageAdapter(tmp_path)
        for i in range(3):
            storage.set("k", str(i))
        assert storage.get("k") == "2"
        assert sorted(os.listdir(tmp_path)) == ["k.json"]

    def test_key_is_sanitized(self, tmp_path):
        storage = JsonFileStorageAdapter(tmp_path)
        storage.set("../escape/key", "x")
        assert storage.get("../escape/key") == "x"
        assert [p.name for p in tmp_path.iterdir()] == [".._escape_key.json"]

    def test_empty_key_rejected(self, tmp_path):
        with pytest.raises(ValueError):
            JsonFileStorageAdapter(tmp_path).set("", "x")

    @pytest.mark.asyncio
    async def test_history_survives_restart(self, tmp_path):
        first = HistoryStore(JsonFileStorageAdapter(tmp_path))
        await first.upsert(record("a", "Completed", result="Success"))
        await first.upsert(record("b", "Running", progress=40))

        data = json.loads((tmp_path / "jobs_history.json").read_text(encoding="utf-8"))
        assert [item["id"] for item in data] == ["b", "a"]

        second = HistoryStore(JsonFileStorageAdapter(tmp_path))
        assert await second.load() == 2
        assert (await second.get("b")).progress == 40


def test_in_memory_storage():
    storage = InMemoryStorageAdapter({"k": "v"})
    assert storage.get("k") == "v"
    storage.set("k", "w")
    assert storage.get("k") == "w"
    assert storage.writes == 1
    storage.delete("k")
    storage.delete("k")
    assert storage.get("k") is None
