# =============================================================================
# tests/unit/test_sync_engine.py
# Unit Tests for queue reconciliation
# =============================================================================

import asyncio
from types import SimpleNamespace

import pytest

from fakes import BASE_URL
from planner_core.offline.connection_manager import ConnectionManager
from planner_core.offline.pending_queue import PendingOperationQueue
from planner_core.offline.remote_client import RemoteClient
from planner_core.offline.sync_engine import SyncEngine


@pytest.fixture
async def parts(memory_store, fake_api):
    """Store, queue, remote, connection and engine wired against the fake API"""
    queue = PendingOperationQueue(memory_store)
    await queue.load()
    remote = RemoteClient(BASE_URL, transport=fake_api.transport(), queue=queue, timeout=1.0)
    connection = ConnectionManager(BASE_URL, reachability_probe=fake_api.probe)
    engine = SyncEngine(memory_store, queue, remote, connection)
    engine.initialize()
    yield SimpleNamespace(store=memory_store, queue=queue, remote=remote, connection=connection, engine=engine)
    await engine.close()
    await remote.close()


class TestStartupSync:
    """Drain on startup is gated by /health"""

    async def test_unhealthy_api_keeps_queue(self, parts, fake_api):
        await parts.queue.enqueue_request("/settings", "POST", {"key": "a", "value": 1})
        fake_api.healthy = False

        report = await parts.engine.sync_on_startup()

        assert report is None
        assert parts.queue.size() == 1
        assert parts.connection.is_offline
        assert fake_api.settings == {}

    async def test_healthy_api_drains(self, parts, fake_api):
        await parts.queue.enqueue_request("/settings", "POST", {"key": "a", "value": 1})

        report = await parts.engine.sync_on_startup()

        assert report.applied == 1
        assert parts.queue.is_empty()
        assert parts.connection.is_online
        assert fake_api.settings == {"a": 1}

    async def test_nothing_queued(self, parts):
        report = await parts.engine.sync_on_startup()
        assert report.applied == 0


class TestReconciliation:
    """Temporary ids become server ids after a queued create"""

    async def test_queued_create_replaces_temporary_record(self, parts, fake_api):
        await parts.store.put("tasks", {"id": "temp_1", "title": "Offline task", "status": "pending"})
        await parts.queue.enqueue_request("/tasks", "POST", {"title": "Offline task"},
                                          collection="tasks", local_id="temp_1")
        await parts.queue.enqueue_request("/tasks", "PUT", {"id": "temp_1", "title": "Edited offline"},
                                          collection="tasks")

        report = await parts.engine.sync_now()

        assert report.applied == 2
        tasks = await parts.store.get_all("tasks")
        assert [t["id"] for t in tasks] == [1]
        assert tasks[0]["title"] == "Offline task"
        assert fake_api.tasks["1"]["title"] == "Edited offline"

    async def test_create_without_record_keeps_temporary_id(self, parts, fake_api):
        await parts.store.put("settings", {"id": "theme", "key": "theme", "value": "dark"})
        await parts.queue.enqueue_request("/settings", "POST", {"key": "theme", "value": "dark"},
                                          collection="settings", local_id="theme")

        await parts.engine.sync_now()
        assert (await parts.store.get_by_id("settings", "theme"))["value"] == "dark"


class TestTriggers:
    """Coalescing and connection-driven drains"""

    async def test_concurrent_sync_now_calls_share_one_drain(self, parts, fake_api):
        for i in range(3):
            await parts.queue.enqueue_request("/settings", "POST", {"key": f"k{i}", "value": i})

        first, second = await asyncio.gather(parts.engine.sync_now(), parts.engine.sync_now())

        assert first is second
        assert len(fake_api.calls_to("POST", "/settings")) == 3

    async def test_going_online_schedules_drain(self, parts, fake_api):
        parts.connection.notify_offline()
        await parts.queue.enqueue_request("/settings", "POST", {"key": "a", "value": 1})

        parts.connection.notify_online()
        await parts.engine.wait_idle()

        assert parts.queue.is_empty()
        assert fake_api.settings == {"a": 1}

    async def test_halted_sync_records_error(self, parts, fake_api):
        await parts.queue.enqueue_request("/settings", "POST", {"key": "a", "value": 1})
        fake_api.online = False

        report = await parts.engine.sync_now()

        assert report.halted
        status = parts.engine.get_status_display()
        assert status["pending_count"] == 1
        assert status["failed_count"] == 1
        assert status["last_error"].startswith("ConnectError")
        assert status["last_success"] is None

    async def test_halted_drain_is_retried_by_the_monitor(self, memory_store, fake_api):
        queue = PendingOperationQueue(memory_store)
        remote = RemoteClient(BASE_URL, transport=fake_api.transport(), queue=queue, timeout=1.0)
        connection = ConnectionManager(
            BASE_URL,
            reachability_probe=fake_api.probe,
            check_interval_online=0.02,
            check_interval_offline=0.02,
        )
        engine = SyncEngine(memory_store, queue, remote, connection)
        await connection.initialize()
        engine.initialize()

        await queue.enqueue_request("/tasks", "POST", {"title": "Retry me"},
                                    collection="tasks", local_id="temp_retry")
        fake_api.fail_next("POST", "/tasks", status=503, error="Service unavailable")

        try:
            report = await engine.sync_now()
            assert report.halted
            assert connection.is_offline

            connection.start_monitoring(remote.health_check)
            for _ in range(100):
                if queue.is_empty():
                    break
                await asyncio.sleep(0.02)
            await engine.wait_idle()

            assert queue.is_empty()
            assert connection.is_online
            assert len(fake_api.calls_to("POST", "/tasks")) == 2
            assert [t["title"] for t in fake_api.tasks.values()] == ["Retry me"]
        finally:
            await connection.stop_monitoring()
            await engine.close()
            await remote.close()

    async def test_sync_callbacks(self, parts):
        seen = []
        parts.engine.register_callback(lambda state: seen.append(state.is_syncing))
        await parts.queue.enqueue_request("/clear", "POST")

        await parts.engine.sync_now()

        assert seen == [True, False]

    async def test_flush_with_empty_queue(self, parts, fake_api):
        report = await parts.engine.flush()
        assert report.applied == 0
        assert fake_api.calls == []
