# =============================================================================
# planner_core/offline/unified_data_service.py
# Unified Data Service - Single API for Online/Offline Operations
# =============================================================================
"""
UnifiedDataService - The primary API for all PlannerPro data operations.

This service provides a unified interface that automatically handles:
- Local-first writes, sent to the API opportunistically
- Offline writes queued for later replay, in order
- Remote reads mirrored into the local store
- Local fallback when the API is unreachable

Usage:
------
context = await build_context(load_config())
await context.start()
service = context.data_service

task = await service.save_task({"title": "Pay rent", "dueDate": "2024-03-01"})
tasks = await service.get_all_tasks()

print(f"Online: {service.is_online}")
print(f"Pending sync: {service.pending_sync_count}")
"""

from __future__ import annotations
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote
import logging

from planner_core.data.records import (
    EXPENSES,
    SETTINGS,
    STATISTICS,
    TASKS,
    generate_temporary_id,
    is_temporary_id,
    normalize_expense,
    normalize_task,
    now_iso,
    statistic_id,
    statistic_record,
    validate_expense,
    validate_task,
)
from planner_core.errors import ImportFormatError, LocalStoreError, RecordValidationError
from planner_core.logging import LogContext
from planner_core.offline.connection_manager import ConnectionManager
from planner_core.offline.local_store import LocalStore
from planner_core.offline.pending_queue import PendingOperationQueue
from planner_core.offline.remote_client import RemoteClient, RemoteResponse
from planner_core.offline.sync_engine import RECORD_KEYS, SyncEngine
from planner_core.services.task_service import DEFAULT_REMINDER_MINUTES, TaskService

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0"

# Import sections and the type each must have
IMPORT_SECTIONS = {
    TASKS: list,
    SETTINGS: dict,
    STATISTICS: list,
    EXPENSES: list,
}


class UnifiedDataService:
    """
    Unified data service providing a single API for online/offline operations.

    Every write lands in the local store first. It is then sent to the API
    when the connection is up and nothing older is still queued; otherwise
    it joins the pending-operation queue.
    """

    def __init__(
        self,
        store: LocalStore,
        queue: PendingOperationQueue,
        remote: RemoteClient,
        connection: ConnectionManager,
        sync_engine: SyncEngine,
    ):
        self._store = store
        self._queue = queue
        self._remote = remote
        self._connection = connection
        self._sync_engine = sync_engine
        self._task_service = TaskService()

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def is_online(self) -> bool:
        """Check if currently online."""
        return self._connection.is_online

    @property
    def is_offline(self) -> bool:
        return not self._connection.is_online

    @property
    def connection_status(self) -> str:
        return self._connection.status.value

    @property
    def pending_sync_count(self) -> int:
        """Number of writes waiting for the API."""
        return self._queue.size()

    @property
    def store(self) -> LocalStore:
        return self._store

    # =========================================================================
    # ROUTING
    # =========================================================================

    def _can_use_remote(self) -> bool:
        """The API is used directly only when nothing older is queued."""
        return self.is_online and self._queue.is_empty()

    async def _dispatch(
        self,
        endpoint: str,
        method: str,
        body: Any = None,
        collection: Optional[str] = None,
        local_id: Optional[str] = None,
    ) -> Optional[RemoteResponse]:
        """
        Send a write to the API or queue it.

        Returns:
            The RemoteResponse when the API was called, None when queued
        """
        if self._can_use_remote():
            response = await self._remote.request(
                endpoint, method, body=body, collection=collection, local_id=local_id
            )
            if not response.ok:
                if not response.queued:
                    logger.warning(f"{method} {endpoint} failed and could not be queued")
                self._connection.set_reachable(False, error=response.error)
            return response

        await self._queue.enqueue_request(
            endpoint, method, body=body, collection=collection, local_id=local_id
        )
        if self.is_online:
            self._sync_engine.schedule_sync()
        return None

    async def _fetch(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Optional[Any]:
        """
        GET from the API when allowed.

        Returns:
            Decoded response body, or None to signal a local read
        """
        if not self._can_use_remote():
            return None

        response = await self._remote.request(endpoint, "GET", params=params)
        if not response.ok:
            logger.warning(f"Remote read {endpoint} failed, using local data: {response.error}")
            self._connection.set_reachable(False, error=response.error)
            return None
        return response.data

    async def _fetch_list(
        self,
        endpoint: str,
        key: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Optional[List[Dict[str, Any]]]:
        data = await self._fetch(endpoint, params)
        if data is None:
            return None
        records = data.get(key) if isinstance(data, dict) else None
        if not isinstance(records, list):
            logger.warning(f"Unexpected response from {endpoint}, using local data")
            return None
        return [r for r in records if isinstance(r, dict)]

    async def _mirror_collection(self, collection: str, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Replace a local collection with remote records.

        Temporary records survive only while a queued create still tracks
        them; any other temporary record already reached the API some other
        way (e.g. through /import) and is superseded by the remote copy.
        """
        local = await self._store.get_all(collection)
        unsynced = [
            r for r in local
            if is_temporary_id(r.get("id"))
            and self._queue.has_pending_create(collection, r["id"])
        ]
        dropped = sum(1 for r in local if is_temporary_id(r.get("id"))) - len(unsynced)
        if dropped:
            logger.info(f"Dropping {dropped} untracked temporary {collection} records")
        merged = list(records) + unsynced
        try:
            await self._store.replace_collection(collection, merged)
        except LocalStoreError as e:
            logger.warning(f"Could not mirror {collection} locally: {e}")
        return merged

    async def _mirror_records(self, collection: str, records: List[Dict[str, Any]]) -> None:
        for record in records:
            if record.get("id") in (None, ""):
                continue
            try:
                await self._store.put(collection, record)
            except LocalStoreError as e:
                logger.warning(f"Could not mirror {collection} record locally: {e}")
                return

    # =========================================================================
    # RECORD WRITES
    # =========================================================================

    async def _save_record(
        self,
        collection: str,
        record: Dict[str, Any],
        update_endpoint: Callable[[Any], str],
    ) -> Dict[str, Any]:
        if record.get("id") in (None, ""):
            record["id"] = generate_temporary_id()
        record_id = record["id"]

        creating = (
            is_temporary_id(record_id)
            and not self._queue.has_pending_create(collection, record_id)
        )
        stored = await self._store.put(collection, record)

        if not creating:
            await self._dispatch(update_endpoint(record_id), "PUT", body=stored, collection=collection)
            return stored

        body = {k: v for k, v in stored.items() if k != "id"}
        response = await self._dispatch(
            f"/{collection}", "POST", body=body, collection=collection, local_id=record_id
        )
        if response is None or not response.ok:
            return stored

        remote_record = response.data.get(RECORD_KEYS[collection]) if isinstance(response.data, dict) else None
        if not isinstance(remote_record, dict) or remote_record.get("id") in (None, ""):
            return stored

        saved = {**stored, **remote_record}
        await self._store.delete(collection, record_id)
        await self._store.put(collection, saved)
        logger.debug(f"Created {collection} record {saved['id']} (was {record_id})")
        return saved

    async def _delete_record(self, collection: str, record_id: Any, endpoint: str) -> bool:
        existed = await self._store.delete(collection, record_id)

        if is_temporary_id(record_id) and not self._queue.has_pending_create(collection, str(record_id)):
            # Never reached the API
            return existed

        response = await self._dispatch(endpoint, "DELETE", collection=collection, local_id=str(record_id))
        return existed or bool(response and response.ok)

    # =========================================================================
    # TASKS
    # =========================================================================

    async def save_task(self, task: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate and save a task.

        Raises:
            RecordValidationError: before anything is written
            LocalStoreError: if the local write fails

        Returns:
            The saved task (with its remote id when created online)
        """
        validate_task(task)
        return await self._save_record(TASKS, normalize_task(task), lambda _id: "/tasks")

    async def get_all_tasks(self) -> List[Dict[str, Any]]:
        remote = await self._fetch_list("/tasks", "tasks")
        if remote is not None:
            return await self._mirror_collection(TASKS, remote)
        return await self._store.get_all(TASKS)

    async def get_task(self, task_id: Any) -> Optional[Dict[str, Any]]:
        if not is_temporary_id(task_id):
            data = await self._fetch(f"/tasks/{quote(str(task_id), safe='')}")
            task = data.get("task") if isinstance(data, dict) else None
            if isinstance(task, dict):
                await self._mirror_records(TASKS, [task])
                return task
        return await self._store.get_by_id(TASKS, task_id)

    async def delete_task(self, task_id: Any) -> bool:
        """Delete a task everywhere; deleting a missing task is not an error."""
        return await self._delete_record(TASKS, task_id, f"/tasks/{quote(str(task_id), safe='')}")

    async def get_tasks_by_date_range(self, start_date: str, end_date: str) -> List[Dict[str, Any]]:
        """Tasks whose dueDate lies within [start_date, end_date]."""
        remote = await self._fetch_list(
            "/tasks/date-range", "tasks", params={"start": start_date, "end": end_date}
        )
        if remote is not None:
            await self._mirror_records(TASKS, remote)
            return remote

        tasks = await self._store.get_all(TASKS)
        return [
            t for t in tasks
            if t.get("dueDate") and start_date <= t["dueDate"] <= end_date
        ]

    async def get_tasks_by_category(self, category: str) -> List[Dict[str, Any]]:
        remote = await self._fetch_list(f"/tasks/category/{quote(category, safe='')}", "tasks")
        if remote is not None:
            await self._mirror_records(TASKS, remote)
            return remote
        return await self._store.find_by_field(TASKS, "category", category)

    async def check_due_tasks(
        self,
        reminder_minutes: int = DEFAULT_REMINDER_MINUTES,
        now: Optional[datetime] = None,
    ) -> Dict[str, List[Dict[str, Any]]]:
        """
        Find overdue and due-soon tasks and flag them as notified.

        Each reported task is saved with ``notifiedOverdue`` or
        ``notifiedReminder`` set, so the next check skips it.

        Returns:
            {"overdue": [...], "dueSoon": [...]} with the saved tasks
        """
        tasks = await self.get_all_tasks()
        found = self._task_service.find_due_tasks(tasks, now=now, reminder_minutes=reminder_minutes)

        flagged: Dict[str, List[Dict[str, Any]]] = {"overdue": [], "dueSoon": []}
        for kind, flag in (("overdue", "notifiedOverdue"), ("dueSoon", "notifiedReminder")):
            for task in found[kind]:
                try:
                    flagged[kind].append(await self.save_task({**task, flag: True}))
                except RecordValidationError as e:
                    logger.warning(f"Could not flag task {task.get('id')}: {e.message}")
        return flagged

    # =========================================================================
    # EXPENSES
    # =========================================================================

    async def save_expense(self, expense: Dict[str, Any]) -> Dict[str, Any]:
        """Validate and save an expense."""
        validate_expense(expense)
        return await self._save_record(
            EXPENSES,
            normalize_expense(expense),
            lambda expense_id: f"/expenses/{quote(str(expense_id), safe='')}",
        )

    async def get_all_expenses(self) -> List[Dict[str, Any]]:
        remote = await self._fetch_list("/expenses", "expenses")
        if remote is not None:
            return await self._mirror_collection(EXPENSES, remote)
        return await self._store.get_all(EXPENSES)

    async def get_expense(self, expense_id: Any) -> Optional[Dict[str, Any]]:
        if not is_temporary_id(expense_id):
            data = await self._fetch(f"/expenses/{quote(str(expense_id), safe='')}")
            expense = data.get("expense") if isinstance(data, dict) else None
            if isinstance(expense, dict):
                await self._mirror_records(EXPENSES, [expense])
                return expense
        return await self._store.get_by_id(EXPENSES, expense_id)

    async def delete_expense(self, expense_id: Any) -> bool:
        return await self._delete_record(
            EXPENSES, expense_id, f"/expenses/{quote(str(expense_id), safe='')}"
        )

    async def get_expenses_by_date_range(self, start_date: str, end_date: str) -> List[Dict[str, Any]]:
        """Expenses dated within [start_date, end_date]."""
        remote = await self._fetch_list(
            f"/expenses/date-range/{quote(start_date, safe='')}/{quote(end_date, safe='')}",
            "expenses",
        )
        if remote is not None:
            await self._mirror_records(EXPENSES, remote)
            return remote

        expenses = await self._store.get_all(EXPENSES)
        return [
            e for e in expenses
            if e.get("date") and start_date <= e["date"][:10] <= end_date
        ]

    async def get_expenses_by_category(self, category: str) -> List[Dict[str, Any]]:
        remote = await self._fetch_list(f"/expenses/category/{quote(category, safe='')}", "expenses")
        if remote is not None:
            await self._mirror_records(EXPENSES, remote)
            return remote
        return await self._store.find_by_field(EXPENSES, "category", category)

    # =========================================================================
    # SETTINGS & STATISTICS
    # =========================================================================

    async def set_setting(self, key: str, value: Any) -> None:
        await self._store.set_setting(key, value)
        await self._dispatch("/settings", "POST", body={"key": key, "value": value}, collection=SETTINGS)

    async def get_setting(self, key: str, default: Any = None) -> Any:
        data = await self._fetch(f"/settings/{quote(key, safe='')}")
        if isinstance(data, dict) and data.get("value") is not None:
            try:
                await self._store.set_setting(key, data["value"])
            except LocalStoreError as e:
                logger.warning(f"Could not mirror setting {key}: {e}")
            return data["value"]
        return await self._store.get_setting(key, default)

    async def save_statistic(self, date: str, stat_type: str, data: Any) -> Dict[str, Any]:
        """Store one statistic per (date, type); a newer value replaces the old one."""
        record = await self._store.put(STATISTICS, statistic_record(date, stat_type, data))
        await self._dispatch(
            "/statistics",
            "POST",
            body={"date": date, "type": stat_type, "data": data},
            collection=STATISTICS,
        )
        return record

    async def get_statistics(self) -> List[Dict[str, Any]]:
        remote = await self._fetch_list("/statistics", "statistics")
        if remote is None:
            return await self._store.get_all(STATISTICS)

        records = []
        for stat in remote:
            record = dict(stat)
            if record.get("date") and record.get("type"):
                record["id"] = statistic_id(record["date"], record["type"])
            records.append(record)
        return await self._mirror_collection(STATISTICS, records)

    # =========================================================================
    # EXPORT / IMPORT / CLEAR
    # =========================================================================

    async def _export_local(self) -> Dict[str, Any]:
        return {
            "version": EXPORT_VERSION,
            "exportDate": now_iso(),
            "tasks": await self._store.get_all(TASKS),
            "settings": await self._store.get_all_settings(),
            "statistics": await self._store.get_all(STATISTICS),
            "expenses": await self._store.get_all(EXPENSES),
        }

    async def export_data(self) -> Dict[str, Any]:
        """
        Export every collection as one JSON document.

        Returns:
            {version, exportDate, tasks, settings, statistics, expenses}
        """
        with LogContext(logger, "Exporting data"):
            data = await self._fetch("/export")
            if isinstance(data, dict) and isinstance(data.get("tasks"), list):
                data.setdefault("version", EXPORT_VERSION)
                data.setdefault("exportDate", now_iso())
                data.setdefault("settings", {})
                data.setdefault("statistics", [])
                data.setdefault("expenses", [])
                return data
            return await self._export_local()

    async def import_data(self, data: Any) -> Dict[str, int]:
        """
        Import an export document locally and forward it to the API.

        Raises:
            ImportFormatError: if the document does not have the export layout

        Returns:
            Number of imported entries per section
        """
        _validate_import(data)

        counts = {section: 0 for section in IMPORT_SECTIONS}
        with LogContext(logger, "Importing data"):
            for task in data.get(TASKS) or []:
                await self._store.put(TASKS, task)
                counts[TASKS] += 1

            for expense in data.get(EXPENSES) or []:
                await self._store.put(EXPENSES, expense)
                counts[EXPENSES] += 1

            for key, value in (data.get(SETTINGS) or {}).items():
                await self._store.set_setting(key, value)
                counts[SETTINGS] += 1

            for stat in data.get(STATISTICS) or []:
                record = dict(stat)
                if record.get("id") in (None, "") and record.get("date") and record.get("type"):
                    record["id"] = statistic_id(record["date"], record["type"])
                await self._store.put(STATISTICS, record)
                counts[STATISTICS] += 1

            response = await self._dispatch("/import", "POST", body=data)
            if response is not None and response.ok:
                await self._refresh_after_import()

        logger.info(f"Imported {counts}")
        return counts

    async def _refresh_after_import(self) -> None:
        """Pull the server's copy so imported records carry server ids locally."""
        for collection in (TASKS, EXPENSES):
            remote = await self._fetch_list(f"/{collection}", collection)
            if remote is not None:
                await self._mirror_collection(collection, remote)

    async def clear_all(self) -> None:
        """Clear every local collection and the remote data."""
        await self._store.clear()
        await self._dispatch("/clear", "POST")

    # =========================================================================
    # MAINTENANCE & STATUS
    # =========================================================================

    async def save_all(self):
        """Push queued writes now (best effort)."""
        return await self._sync_engine.flush()

    async def create_auto_backup(self, max_backups: int = 5) -> str:
        """Snapshot the local data into a rotating backup slot."""
        snapshot = await self._export_local()
        return await self._store.create_backup(snapshot, max_backups=max_backups)

    async def get_storage_info(self) -> Dict[str, Any]:
        local = await self._store.describe()
        info = {
            "source": "local",
            "type": f"{local['backend']} ({'online' if self.is_online else 'offline'})",
            "local": local,
            "remote": None,
            "pendingOperations": self._queue.size(),
            "isOnline": self.is_online,
        }
        data = await self._fetch("/storage-info")
        if isinstance(data, dict):
            info["source"] = "remote"
            info["remote"] = data
        return info

    def get_status(self) -> Dict[str, Any]:
        """
        Get status information.

        Returns:
            Dict with status information for UI display
        """
        return {
            "connection": self._connection.get_status_display(),
            "sync": self._sync_engine.get_status_display(),
            "backend": self._store.backend_name,
            "degraded": self._store.is_degraded,
            "is_online": self.is_online,
            "pending_sync": self.pending_sync_count,
        }

    def force_offline(self) -> None:
        """Force offline mode."""
        self._connection.force_offline()

    async def sync_now(self):
        return await self._sync_engine.sync_now()


def _validate_import(data: Any) -> None:
    if not isinstance(data, dict):
        raise ImportFormatError("Import data must be a JSON object")

    present = [section for section in IMPORT_SECTIONS if section in data]
    if not present:
        raise ImportFormatError(
            f"Import data has none of the sections: {', '.join(IMPORT_SECTIONS)}"
        )

    for section in present:
        value = data[section]
        if value is None:
            continue
        expected = IMPORT_SECTIONS[section]
        if not isinstance(value, expected):
            raise ImportFormatError(
                f"Section '{section}' must be a {expected.__name__}", section=section
            )
        if expected is list and not all(isinstance(item, dict) for item in value):
            raise ImportFormatError(
                f"Every entry in '{section}' must be an object", section=section
            )
