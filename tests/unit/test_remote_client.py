# =============================================================================
# tests/unit/test_remote_client.py
# Unit Tests for the bounded HTTP client
# =============================================================================

import asyncio

import httpx
import pytest

from fakes import BASE_URL
from planner_core.offline.pending_queue import PendingOperation, PendingOperationQueue
from planner_core.offline.remote_client import RemoteClient, UserContext


@pytest.fixture
async def queue(memory_store):
    q = PendingOperationQueue(memory_store)
    await q.load()
    return q


@pytest.fixture
async def client(fake_api, queue):
    c = RemoteClient(BASE_URL, UserContext(7, "alex"), timeout=1.0, transport=fake_api.transport(), queue=queue)
    yield c
    await c.close()


class TestRequests:
    """Classification of responses"""

    async def test_success_returns_data(self, client, fake_api):
        fake_api.seed_task(title="Seeded")
        response = await client.request("/tasks")

        assert response.ok
        assert response.status_code == 200
        assert response.data["tasks"][0]["title"] == "Seeded"

    async def test_user_header_is_sent(self):
        seen = {}

        def handler(request):
            seen.update(request.headers)
            return httpx.Response(200, json={})

        client = RemoteClient(BASE_URL, UserContext(7, "alex"), transport=httpx.MockTransport(handler))
        await client.request("/health")
        await client.close()

        assert seen["x-planner-user"] == "7:alex"
        assert seen["content-type"] == "application/json"

    async def test_server_error_is_unreachable(self, client, fake_api):
        fake_api.fail_next("GET", "/tasks", status=500, error="Database error")
        response = await client.request("/tasks")

        assert not response.ok
        assert response.unreachable
        assert response.status_code == 500
        assert response.error == "Database error"

    async def test_connection_error_is_unreachable(self, client, fake_api):
        fake_api.online = False
        response = await client.request("/tasks")

        assert response.unreachable
        assert "ConnectError" in response.error

    async def test_timeout_is_bounded(self):
        async def slow(request):
            await asyncio.sleep(5)
            return httpx.Response(200, json={})

        client = RemoteClient(BASE_URL, transport=httpx.MockTransport(slow), timeout=0.05)
        response = await client.request("/tasks")
        await client.close()

        assert response.unreachable
        assert "timed out" in response.error

    async def test_delete_404_counts_as_success(self, client):
        response = await client.request("/tasks/12345", "DELETE")
        assert response.ok
        assert response.status_code == 404

    async def test_get_404_is_failure(self, client):
        response = await client.request("/tasks/12345")
        assert not response.ok
        assert response.error == "Task not found"

    async def test_health_check(self, client, fake_api):
        assert await client.health_check() is True
        fake_api.healthy = False
        assert await client.health_check() is False


class TestQueueOnFailure:
    """Failed writes are handed to the pending queue"""

    async def test_failed_write_is_queued(self, client, fake_api, queue):
        fake_api.online = False
        response = await client.request("/tasks", "POST", {"title": "Offline"}, collection="tasks", local_id="temp_1")

        assert response.queued
        assert queue.size() == 1
        op = queue.snapshot()[0]
        assert op["endpoint"] == "/tasks"
        assert op["local_id"] == "temp_1"

    async def test_failed_read_is_not_queued(self, client, fake_api, queue):
        fake_api.online = False
        response = await client.request("/tasks")

        assert not response.queued
        assert queue.is_empty()

    async def test_opt_out_of_queueing(self, client, fake_api, queue):
        fake_api.online = False
        response = await client.request("/clear", "POST", queue_on_failure=False)

        assert not response.queued
        assert queue.is_empty()

    async def test_send_replays_serialized_body(self, client, fake_api):
        op = PendingOperation("/settings", "POST", body='{"key": "theme", "value": "dark"}')
        response = await client.send(op, queue_on_failure=False)

        assert response.ok
        assert fake_api.settings == {"theme": "dark"}
