# =============================================================================
# tests/integration/test_offline_roundtrip.py
# Integration Tests: offline writes, restarts and reconnection
# =============================================================================

import pytest

from conftest import make_expense, make_task
from planner_core.offline import CapabilityProbe, build_context
from planner_core.offline import local_store as local_store_module


async def open_context(config, fake_api):
    ctx = await build_context(config, transport=fake_api.transport(), reachability_probe=fake_api.probe)
    await ctx.start(monitor=False)
    return ctx


async def reconnect(ctx, fake_api):
    fake_api.online = True
    ctx.connection.notify_online()
    await ctx.sync_engine.wait_idle()


class TestRestartDurability:
    """Queued writes survive a restart and drain when the API is back"""

    async def test_queue_survives_restart(self, config, fake_api):
        fake_api.online = False
        first = await open_context(config, fake_api)
        assert first.connection.is_offline

        saved = await first.data_service.save_task(make_task(title="Written offline"))
        await first.close()

        assert fake_api.tasks == {}

        fake_api.online = True
        second = await open_context(config, fake_api)
        try:
            assert second.queue.is_empty()
            assert [t["title"] for t in fake_api.tasks.values()] == ["Written offline"]

            local = await second.store.get_all("tasks")
            assert [t["id"] for t in local] == [1]
            assert await second.store.get_by_id("tasks", saved["id"]) is None
        finally:
            await second.close()

    async def test_unhealthy_api_at_restart_keeps_queue(self, config, fake_api):
        fake_api.online = False
        first = await open_context(config, fake_api)
        await first.data_service.set_setting("theme", "dark")
        await first.close()

        fake_api.online = True
        fake_api.healthy = False
        second = await open_context(config, fake_api)
        try:
            assert second.queue.size() == 1
            assert fake_api.settings == {}

            fake_api.healthy = True
            report = await second.data_service.sync_now()

            assert report.applied == 1
            assert fake_api.settings == {"theme": "dark"}
        finally:
            await second.close()


class TestOfflineOrdering:
    """Operations reach the API in the order they were made"""

    async def test_creates_replay_in_order(self, context, fake_api):
        fake_api.online = False
        context.connection.notify_offline()
        service = context.data_service

        for title in ("A", "B", "C"):
            await service.save_task(make_task(title=title))

        await reconnect(context, fake_api)

        posted = [body["title"] for _, _, body in fake_api.calls_to("POST", "/tasks")]
        assert posted == ["A", "B", "C"]
        assert {k: v["title"] for k, v in fake_api.tasks.items()} == {"1": "A", "2": "B", "3": "C"}
        assert sorted(t["id"] for t in await context.store.get_all("tasks")) == [1, 2, 3]

    async def test_create_edit_delete_while_offline(self, context, fake_api):
        fake_api.online = False
        context.connection.notify_offline()
        service = context.data_service

        saved = await service.save_task(make_task(title="Draft"))
        await service.save_task({**saved, "title": "Final"})
        await service.delete_task(saved["id"])

        await reconnect(context, fake_api)

        assert [m for m, _, _ in fake_api.mutating_calls()] == ["POST", "PUT", "DELETE"]
        assert fake_api.calls_to("DELETE", "/tasks/1")
        assert fake_api.tasks == {}
        assert await context.store.get_all("tasks") == []

    async def test_writes_after_reconnect_wait_for_queue(self, context, fake_api):
        fake_api.online = False
        context.connection.notify_offline()
        await context.data_service.set_setting("theme", "dark")

        fake_api.online = True
        context.connection.set_reachable(True)
        await context.data_service.set_setting("theme", "light")
        await context.sync_engine.wait_idle()

        assert fake_api.settings == {"theme": "light"}
        assert context.queue.is_empty()


class TestIdempotentDelete:
    """Deleting the same record twice ends in the same state"""

    async def test_double_delete(self, context, fake_api):
        service = context.data_service
        saved = await service.save_expense(make_expense(description="Lunch"))

        assert await service.delete_expense(saved["id"]) is True
        assert await service.delete_expense(saved["id"]) is True

        assert fake_api.expenses == {}
        assert context.connection.is_online
        assert context.queue.is_empty()


class TestExportImport:
    """Export, clear and import restore the same data"""

    async def test_round_trip(self, context, fake_api):
        service = context.data_service
        await service.save_task(make_task(title="Keep me"))
        await service.save_expense(make_expense(description="Books", amount=12.5))
        await service.set_setting("currency", "EUR")
        await service.save_statistic("2024-03-01", "daily", {"completed": 2})

        exported = await service.export_data()
        await service.clear_all()

        assert (await context.store.describe())["total_records"] == 0
        assert fake_api.tasks == {}

        counts = await service.import_data(exported)

        assert counts == {"tasks": 1, "settings": 1, "statistics": 1, "expenses": 1}
        assert [t["title"] for t in await service.get_all_tasks()] == ["Keep me"]
        assert await service.get_setting("currency") == "EUR"
        assert [e["description"] for e in fake_api.expenses.values()] == ["Books"]

    async def test_offline_export_matches_local(self, context, fake_api):
        fake_api.online = False
        context.connection.notify_offline()
        await context.data_service.save_task(make_task(title="Offline only"))

        exported = await context.data_service.export_data()

        assert [t["title"] for t in exported["tasks"]] == ["Offline only"]
        assert exported["tasks"][0]["id"].startswith("temp_")


@pytest.mark.parametrize("probe,backend", [
    (CapabilityProbe(indexed_supported=True, indexed_responsive=False, flat_writable=True), "file"),
    (CapabilityProbe(), "memory"),
])
async def test_other_backends_work_end_to_end(config, fake_api, monkeypatch, probe, backend):
    async def _probe(cfg):
        return probe

    monkeypatch.setattr(local_store_module, "probe_capabilities", _probe)
    ctx = await open_context(config, fake_api)
    try:
        saved = await ctx.data_service.save_task(make_task(title="Portable"))
        assert ctx.store.backend_name == backend
        assert (await ctx.data_service.get_task(saved["id"]))["title"] == "Portable"
    finally:
        await ctx.close()
