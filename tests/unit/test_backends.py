# =============================================================================
# tests/unit/test_backends.py
# Unit Tests for the local storage backends and backend selection
# =============================================================================

import asyncio
import json

import pytest

from planner_core.offline.backends import (
    BackendKind,
    CapabilityProbe,
    FileKeyValueBackend,
    MemoryKeyValueBackend,
    SQLiteBackend,
    probe_capabilities,
    probe_indexed_backend,
    select_backend_kind,
)
from planner_core.offline import backends


class TestSelectBackendKind:
    """Pure mapping from probe results to a backend"""

    def test_indexed_when_supported_and_responsive(self):
        probe = CapabilityProbe(indexed_supported=True, indexed_responsive=True, flat_writable=True)
        assert select_backend_kind(probe) is BackendKind.INDEXED

    def test_flat_when_indexed_unresponsive(self):
        probe = CapabilityProbe(indexed_supported=True, indexed_responsive=False, flat_writable=True)
        assert select_backend_kind(probe) is BackendKind.FLAT

    def test_memory_when_nothing_available(self):
        assert select_backend_kind(CapabilityProbe()) is BackendKind.MEMORY


class TestProbing:
    """Capability probes are bounded and never raise"""

    async def test_probe_real_directory(self, config):
        probe = await probe_capabilities(config)

        assert probe.indexed_supported
        assert probe.indexed_responsive
        assert probe.flat_writable

    async def test_hung_indexed_probe_times_out(self, tmp_path, monkeypatch):
        """A probe that never answers is reported unusable"""
        def _hang(directory):
            import time
            time.sleep(0.5)
            return True

        monkeypatch.setattr(backends, "_probe_sqlite_sync", _hang)
        assert await probe_indexed_backend(tmp_path, timeout=0.05) is False

    async def test_failing_indexed_probe_is_false(self, tmp_path, monkeypatch):
        def _broken(directory):
            raise OSError("read-only file system")

        monkeypatch.setattr(backends, "_probe_sqlite_sync", _broken)
        assert await probe_indexed_backend(tmp_path) is False


@pytest.fixture(params=["sqlite", "file", "memory"])
async def backend(request, tmp_path):
    """Every backend behind the same contract"""
    if request.param == "sqlite":
        instance = SQLiteBackend(tmp_path / "test.db")
    elif request.param == "file":
        instance = FileKeyValueBackend(tmp_path / "kv")
    else:
        instance = MemoryKeyValueBackend()
    await instance.open()
    yield instance
    await instance.close()


class TestBackendContract:
    """Behaviour shared by all backends"""

    async def test_put_get_and_upsert(self, backend):
        await backend.put("tasks", "1", {"id": 1, "title": "First"})
        await backend.put("tasks", "1", {"id": 1, "title": "Renamed"})

        assert await backend.get("tasks", "1") == {"id": 1, "title": "Renamed"}
        assert len(await backend.get_all("tasks")) == 1

    async def test_get_all_keeps_insertion_order(self, backend):
        for key in ["b", "a", "c"]:
            await backend.put("tasks", key, {"id": key})
        await backend.put("tasks", "b", {"id": "b", "updated": True})

        assert [r["id"] for r in await backend.get_all("tasks")] == ["b", "a", "c"]

    async def test_delete_reports_whether_removed(self, backend):
        await backend.put("expenses", "9", {"id": 9})

        assert await backend.delete("expenses", "9") is True
        assert await backend.delete("expenses", "9") is False
        assert await backend.get("expenses", "9") is None

    async def test_find_by_field(self, backend):
        await backend.put("tasks", "1", {"id": 1, "category": "work"})
        await backend.put("tasks", "2", {"id": 2, "category": "health"})
        await backend.put("tasks", "3", {"id": 3, "category": "work"})

        found = await backend.find_by_field("tasks", "category", "work")
        assert [r["id"] for r in found] == [1, 3]

    async def test_replace_and_clear_collection(self, backend):
        await backend.put("statistics", "old", {"id": "old"})
        await backend.replace_collection("statistics", [{"id": "x"}, {"id": "y"}])
        assert [r["id"] for r in await backend.get_all("statistics")] == ["x", "y"]

        await backend.clear("statistics")
        assert await backend.get_all("statistics") == []

    async def test_collections_are_isolated(self, backend):
        await backend.put("tasks", "1", {"id": 1})
        assert await backend.get_all("expenses") == []

    async def test_slots(self, backend):
        await backend.write_slot("plannerpro_last_backup_2", "{}")
        await backend.write_slot("plannerpro_last_backup_1", "{}")
        await backend.write_slot("other", "x")

        assert await backend.read_slot("other") == "x"
        assert await backend.list_slots("plannerpro_last_backup_") == [
            "plannerpro_last_backup_1",
            "plannerpro_last_backup_2",
        ]

        await backend.remove_slot("other")
        assert await backend.read_slot("other") is None


class TestSQLiteBackend:
    """SQLite specifics"""

    async def test_data_survives_reopen(self, tmp_path):
        path = tmp_path / "planner.db"
        first = SQLiteBackend(path)
        await first.open()
        await first.put("tasks", "1", {"id": 1, "title": "Persisted"})
        await first.close()

        second = SQLiteBackend(path)
        await second.open()
        assert await second.get("tasks", "1") == {"id": 1, "title": "Persisted"}
        await second.close()

    async def test_unknown_collection_raises(self, tmp_path):
        backend = SQLiteBackend(tmp_path / "planner.db")
        await backend.open()
        with pytest.raises(KeyError):
            await backend.get_all("storage_slots")
        await backend.close()

    async def test_concurrent_writes_are_serialized(self, tmp_path):
        backend = SQLiteBackend(tmp_path / "planner.db")
        await backend.open()
        await asyncio.gather(*[
            backend.put("tasks", str(i), {"id": i}) for i in range(20)
        ])
        assert len(await backend.get_all("tasks")) == 20
        await backend.close()


class TestKeyValueBackends:
    """Flat store specifics"""

    async def test_collection_stored_under_prefixed_key(self, tmp_path):
        backend = FileKeyValueBackend(tmp_path)
        await backend.open()
        await backend.put("tasks", "1", {"id": 1})

        stored = json.loads((tmp_path / "plannerpro_tasks.json").read_text(encoding="utf-8"))
        assert stored == [{"id": 1}]
        assert await backend.has_data(["tasks"])
        assert not await backend.has_data(["expenses"])

    async def test_corrupt_collection_reads_as_empty(self, tmp_path):
        (tmp_path / "plannerpro_tasks.json").write_text("{not json", encoding="utf-8")
        backend = FileKeyValueBackend(tmp_path)
        await backend.open()

        assert await backend.get_all("tasks") == []

    async def test_non_list_collection_reads_as_empty(self):
        backend = MemoryKeyValueBackend()
        await backend.write_slot("plannerpro_tasks", '{"id": 1}')
        assert await backend.get_all("tasks") == []

    async def test_unsafe_key_rejected(self, tmp_path):
        backend = FileKeyValueBackend(tmp_path)
        await backend.open()
        with pytest.raises(KeyError):
            await backend.write_slot("../escape", "x")
