# =============================================================================
# planner_core/offline/context.py
# Application Context - wires every storage component once
# =============================================================================
"""
AppContext owns one instance of each component and passes them to each
other by reference. Nothing in planner_core keeps module-level singletons;
callers build a context and hand it around.

Usage:
    context = await build_context(load_config())
    await context.start()
    tasks = await context.data_service.get_all_tasks()
    await context.close()
"""

from __future__ import annotations
import asyncio
import contextlib
from dataclasses import dataclass, field
from typing import Optional
import logging

import httpx

from planner_core.config import PlannerConfig
from planner_core.offline.connection_manager import ConnectionManager, ReachabilityProbe
from planner_core.offline.local_store import LocalStore, open_local_store
from planner_core.offline.pending_queue import PendingOperationQueue
from planner_core.offline.remote_client import RemoteClient, UserContext
from planner_core.offline.sync_engine import SyncEngine
from planner_core.offline.unified_data_service import UnifiedDataService
from planner_core.services import ExpenseService, StatisticsService, TaskService

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Every long-lived component of a running PlannerPro instance."""
    config: PlannerConfig
    user: UserContext
    store: LocalStore
    queue: PendingOperationQueue
    remote: RemoteClient
    connection: ConnectionManager
    sync_engine: SyncEngine
    data_service: UnifiedDataService
    statistics: StatisticsService = field(default_factory=StatisticsService)
    expenses: ExpenseService = field(default_factory=ExpenseService)
    tasks: TaskService = field(default_factory=TaskService)
    _backup_task: Optional[asyncio.Task] = field(default=None, init=False, repr=False)
    _started: bool = field(default=False, init=False, repr=False)

    @property
    def degraded(self) -> bool:
        """True when data lives in memory only."""
        return self.store.is_degraded

    async def start(self, monitor: bool = True, auto_backup: bool = False) -> None:
        """
        Bring the context online.

        Sets the initial connection state, runs the health-gated startup
        sync and optionally starts the monitoring and backup loops.
        """
        if self._started:
            return

        await self.connection.initialize()
        self.sync_engine.initialize()
        await self.sync_engine.sync_on_startup()

        if monitor:
            self.connection.start_monitoring(self.remote.health_check)
        if auto_backup:
            self._backup_task = asyncio.get_running_loop().create_task(
                self._backup_loop(), name="PlannerBackup"
            )

        self._started = True
        status = "degraded (memory only)" if self.degraded else self.store.backend_name
        logger.info(
            f"PlannerPro started. Storage: {status}, "
            f"connection: {self.connection.status.value}, "
            f"pending: {self.queue.size()}"
        )

    async def _backup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.backup_interval)
            try:
                await self.data_service.create_auto_backup(self.config.max_backups)
            except Exception as e:
                logger.error(f"Automatic backup failed: {e}")

    async def close(self) -> None:
        """Flush queued writes (best effort) and release resources."""
        await self.connection.stop_monitoring()

        if self._backup_task is not None:
            self._backup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._backup_task
            self._backup_task = None

        if self.connection.is_online:
            await self.sync_engine.flush()
        await self.sync_engine.close()
        await self.remote.close()
        await self.store.close()
        self._started = False
        logger.info("PlannerPro closed")


async def build_context(
    config: Optional[PlannerConfig] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    reachability_probe: Optional[ReachabilityProbe] = None,
) -> AppContext:
    """
    Build and wire every component.

    Args:
        config: Settings (defaults when None)
        transport: httpx transport override, e.g. httpx.MockTransport in tests
        reachability_probe: Coroutine function replacing the TCP probe

    Returns:
        AppContext; falls back to memory-only storage instead of raising
    """
    config = config or PlannerConfig()
    user = UserContext(user_id=config.user_id, username=config.username)

    store = await open_local_store(config)
    queue = PendingOperationQueue(store)
    await queue.load()

    remote = RemoteClient(
        config.api_base_url,
        user,
        timeout=config.request_timeout,
        health_timeout=config.health_timeout,
        transport=transport,
        queue=queue,
    )
    connection = ConnectionManager(
        config.api_base_url,
        reachability_probe=reachability_probe,
        check_interval_online=config.check_interval_online,
        check_interval_offline=config.check_interval_offline,
    )
    sync_engine = SyncEngine(store, queue, remote, connection)
    data_service = UnifiedDataService(store, queue, remote, connection, sync_engine)

    return AppContext(
        config=config,
        user=user,
        store=store,
        queue=queue,
        remote=remote,
        connection=connection,
        sync_engine=sync_engine,
        data_service=data_service,
    )
