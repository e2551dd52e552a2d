# =============================================================================
# planner_core/offline/sync_engine.py
# Queue Reconciliation Engine
# =============================================================================
"""
SyncEngine - replays queued writes against the remote API.

Features:
- Startup sync gated by a health check
- Drain scheduled on every offline -> online transition
- Coalesced, non-reentrant drains
- Temporary-id reconciliation after queued creates
- Halted drains retried after the next healthy check
- Sync status tracking and callbacks
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
import logging

from planner_core.data.records import EXPENSES, TASKS, is_temporary_id
from planner_core.offline.connection_manager import ConnectionManager, ConnectionState, ConnectionStatus
from planner_core.offline.local_store import LocalStore
from planner_core.offline.pending_queue import DrainReport, PendingOperation, PendingOperationQueue
from planner_core.offline.remote_client import RemoteClient, RemoteResponse

logger = logging.getLogger(__name__)

# Response key holding the created record, per collection
RECORD_KEYS = {TASKS: "task", EXPENSES: "expense"}


@dataclass
class SyncState:
    """Current sync state."""
    is_syncing: bool = False
    last_sync: Optional[datetime] = None
    last_sync_success: Optional[datetime] = None
    pending_count: int = 0
    failed_count: int = 0
    total_synced: int = 0
    last_error: Optional[str] = None


class SyncEngine:
    """
    Drains the pending-operation queue when the API is reachable.

    Usage:
        engine = SyncEngine(store, queue, remote, connection)
        engine.initialize()
        await engine.sync_on_startup()
        await engine.sync_now()
    """

    def __init__(
        self,
        store: LocalStore,
        queue: PendingOperationQueue,
        remote: RemoteClient,
        connection: ConnectionManager,
    ):
        self._store = store
        self._queue = queue
        self._remote = remote
        self._connection = connection
        self._state = SyncState()
        self._callbacks: List[Callable[[SyncState], None]] = []
        self._inflight: Optional[asyncio.Task] = None
        self._scheduled: Set[asyncio.Task] = set()
        self._initialized = False

    @property
    def state(self) -> SyncState:
        """Get current sync state."""
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    @property
    def pending_count(self) -> int:
        return self._queue.size()

    def initialize(self) -> None:
        """Register for connection status changes."""
        if self._initialized:
            return
        self._connection.register_callback(self._on_connection_change)
        self._state.pending_count = self._queue.size()
        self._initialized = True
        logger.info("SyncEngine initialized")

    def _on_connection_change(self, state: ConnectionState) -> None:
        if state.status == ConnectionStatus.ONLINE:
            logger.info("Connection restored, triggering sync")
            self.schedule_sync()

    # =========================================================================
    # TRIGGERS
    # =========================================================================

    async def sync_on_startup(self) -> Optional[DrainReport]:
        """
        Health-check the API and drain if it answers.

        Returns:
            DrainReport, or None when the API is unhealthy
        """
        healthy = await self._remote.health_check()
        self._connection.set_reachable(healthy)
        if not healthy:
            logger.info(f"API unhealthy at startup; {self._queue.size()} operations stay queued")
            return None
        if self._queue.is_empty():
            return DrainReport()
        return await self.sync_now()

    def schedule_sync(self) -> Optional[asyncio.Task]:
        """Schedule a drain on the running loop without waiting for it."""
        if self._queue.is_empty():
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; sync not scheduled")
            return None

        task = loop.create_task(self.sync_now(), name="PlannerSync")
        self._scheduled.add(task)
        task.add_done_callback(self._scheduled.discard)
        return task

    async def sync_now(self) -> DrainReport:
        """Drain the queue now, joining a drain that is already running."""
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.get_running_loop().create_task(self._perform_sync())
        return await asyncio.shield(self._inflight)

    async def flush(self) -> DrainReport:
        """Best-effort drain, e.g. before shutdown."""
        if self._queue.is_empty():
            return DrainReport()
        try:
            return await self.sync_now()
        except Exception as e:
            logger.error(f"Flush failed: {e}")
            return DrainReport(remaining=self._queue.size(), halted=True, error=str(e))

    async def wait_idle(self) -> None:
        """Wait for scheduled and running drains to finish."""
        while self._scheduled or self.is_syncing:
            pending = list(self._scheduled)
            if self._inflight is not None and not self._inflight.done():
                pending.append(self._inflight)
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._scheduled):
            task.cancel()
        await asyncio.gather(*self._scheduled, return_exceptions=True)
        if self._inflight is not None and not self._inflight.done():
            await asyncio.gather(self._inflight, return_exceptions=True)
        self._connection.unregister_callback(self._on_connection_change)

    # =========================================================================
    # DRAIN
    # =========================================================================

    async def _perform_sync(self) -> DrainReport:
        self._state.is_syncing = True
        self._state.last_sync = datetime.now()
        self._notify_callbacks()

        try:
            if self._queue.is_empty():
                return DrainReport()

            logger.info(f"Syncing {self._queue.size()} pending operations")
            report = await self._queue.drain(self._remote, on_applied=self._on_applied)

            self._state.total_synced += report.applied
            if report.halted:
                self._state.failed_count += 1
                self._state.last_error = report.error
                # The next healthy check flips back online and drains again
                self._connection.set_reachable(False, error=report.error)
            else:
                self._state.last_sync_success = datetime.now()
                self._state.last_error = None

            logger.info(f"Sync complete: {report.applied} applied, {report.remaining} remaining")
            return report

        finally:
            self._state.is_syncing = False
            self._state.pending_count = self._queue.size()
            self._notify_callbacks()

    async def _on_applied(self, op: PendingOperation, response: RemoteResponse) -> Optional[Tuple[str, Any]]:
        """Swap a temporary local record for the one the server created."""
        if op.method != "POST" or op.collection not in RECORD_KEYS:
            return None
        if not is_temporary_id(op.local_id):
            return None

        data = response.data if isinstance(response.data, dict) else {}
        remote_record = data.get(RECORD_KEYS[op.collection])
        if not isinstance(remote_record, dict) or remote_record.get("id") in (None, ""):
            logger.warning(f"Create for {op.local_id} returned no record id; keeping temporary id")
            return None

        new_id = remote_record["id"]
        local = await self._store.get_by_id(op.collection, op.local_id)
        if local is not None:
            await self._store.delete(op.collection, op.local_id)
            await self._store.put(op.collection, {**remote_record, **local, "id": new_id})

        logger.info(f"Reconciled {op.collection} {op.local_id} -> {new_id}")
        return op.local_id, new_id

    # =========================================================================
    # CALLBACKS
    # =========================================================================

    def register_callback(self, callback: Callable[[SyncState], None]) -> None:
        """Register a callback for sync state changes."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[SyncState], None]) -> None:
        """Remove a registered callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        for callback in self._callbacks:
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in sync callback: {e}")

    def get_status_display(self) -> Dict[str, Any]:
        """Get sync status for UI display."""
        return {
            "is_syncing": self.is_syncing,
            "last_sync": self._state.last_sync.isoformat() if self._state.last_sync else None,
            "last_success": self._state.last_sync_success.isoformat() if self._state.last_sync_success else None,
            "pending_count": self.pending_count,
            "failed_count": self._state.failed_count,
            "total_synced": self._state.total_synced,
            "last_error": self._state.last_error,
        }
