# =============================================================================
# planner_core/offline/local_store.py
# Local Record Store with Backend Fallback
# =============================================================================
"""
LocalStore - durable local persistence for every PlannerPro collection.

Features:
- Pluggable backend (SQLite, flat JSON files, or memory)
- Backend selection from a capability probe
- One-time migration from the flat store into SQLite
- Raw slots for single serialized values (pending queue, backups)
- Reads never raise; writes raise LocalStoreError
"""

from __future__ import annotations
import json
import time
from typing import Any, Dict, List, Optional
import logging

from planner_core.config import PlannerConfig
from planner_core.data.records import (
    COLLECTIONS,
    SETTINGS,
    generate_temporary_id,
    now_iso,
    record_key,
    setting_record,
)
from planner_core.errors import LocalStoreError
from planner_core.offline.backends import (
    BackendKind,
    FileKeyValueBackend,
    KeyValueBackend,
    StorageBackend,
    create_backend,
    probe_capabilities,
    select_backend_kind,
)

logger = logging.getLogger(__name__)

# Slot names
PENDING_OPS_SLOT = "plannerpro_pending_ops"
MIGRATION_MARKER = "plannerpro_migrated"
BACKUP_PREFIX = "plannerpro_last_backup_"


class LocalStore:
    """
    Async record store over a single StorageBackend.

    Usage:
        store = await open_local_store(config)
        task = await store.put("tasks", {"title": "Write report"})
        tasks = await store.get_all("tasks")
    """

    def __init__(self, backend: StorageBackend):
        self._backend = backend

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    @property
    def backend_kind(self) -> BackendKind:
        return self._backend.kind

    @property
    def backend_name(self) -> str:
        return self._backend.name

    @property
    def is_degraded(self) -> bool:
        """True when data only lives for the current session."""
        return self._backend.kind is BackendKind.MEMORY

    async def close(self) -> None:
        try:
            await self._backend.close()
        except Exception as e:
            logger.warning(f"Error closing {self.backend_name} backend: {e}")

    # =========================================================================
    # RECORDS
    # =========================================================================

    async def put(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert or replace a record by id.

        A record without an id gets a temporary id.

        Returns:
            The stored record
        """
        stored = dict(record)
        if stored.get("id") in (None, ""):
            stored["id"] = generate_temporary_id()

        try:
            await self._backend.put(collection, record_key(stored["id"]), stored)
        except Exception as e:
            raise LocalStoreError(
                f"Failed to save record {stored['id']}: {e}",
                backend=self.backend_name,
                collection=collection,
            ) from e
        return stored

    async def get_all(self, collection: str) -> List[Dict[str, Any]]:
        """All records of a collection in insertion order."""
        try:
            return await self._backend.get_all(collection)
        except Exception as e:
            logger.error(f"Failed to read {collection} from {self.backend_name}: {e}")
            return []

    async def get_by_id(self, collection: str, record_id: Any) -> Optional[Dict[str, Any]]:
        try:
            return await self._backend.get(collection, record_key(record_id))
        except Exception as e:
            logger.error(f"Failed to read {collection}/{record_id}: {e}")
            return None

    async def find_by_field(self, collection: str, field: str, value: Any) -> List[Dict[str, Any]]:
        """Records whose ``field`` equals ``value``."""
        try:
            return await self._backend.find_by_field(collection, field, value)
        except Exception as e:
            logger.error(f"Failed to query {collection} by {field}: {e}")
            return []

    async def delete(self, collection: str, record_id: Any) -> bool:
        """
        Delete a record. Deleting a missing record is not an error.

        Returns:
            True if a record was removed
        """
        try:
            return await self._backend.delete(collection, record_key(record_id))
        except Exception as e:
            raise LocalStoreError(
                f"Failed to delete record {record_id}: {e}",
                backend=self.backend_name,
                collection=collection,
            ) from e

    async def replace_collection(self, collection: str, records: List[Dict[str, Any]]) -> None:
        """Replace the whole collection with ``records`` (ids required)."""
        try:
            await self._backend.replace_collection(
                collection, [r for r in records if r.get("id") not in (None, "")]
            )
        except Exception as e:
            raise LocalStoreError(
                f"Failed to replace {collection}: {e}",
                backend=self.backend_name,
                collection=collection,
            ) from e

    async def clear(self, collection: Optional[str] = None) -> None:
        """Clear one collection, or all of them."""
        targets = [collection] if collection else list(COLLECTIONS)
        for name in targets:
            try:
                await self._backend.clear(name)
            except Exception as e:
                raise LocalStoreError(
                    f"Failed to clear {name}: {e}",
                    backend=self.backend_name,
                    collection=name,
                ) from e
        logger.info(f"Cleared local collections: {', '.join(targets)}")

    # =========================================================================
    # SETTINGS
    # =========================================================================

    async def get_setting(self, key: str, default: Any = None) -> Any:
        record = await self.get_by_id(SETTINGS, key)
        if record is None or "value" not in record:
            return default
        return record["value"]

    async def set_setting(self, key: str, value: Any) -> Dict[str, Any]:
        return await self.put(SETTINGS, setting_record(key, value))

    async def get_all_settings(self) -> Dict[str, Any]:
        records = await self.get_all(SETTINGS)
        return {r.get("key", r.get("id")): r.get("value") for r in records}

    # =========================================================================
    # SLOTS
    # =========================================================================

    async def read_slot(self, key: str) -> Optional[str]:
        try:
            return await self._backend.read_slot(key)
        except Exception as e:
            logger.error(f"Failed to read slot {key}: {e}")
            return None

    async def write_slot(self, key: str, value: str) -> None:
        try:
            await self._backend.write_slot(key, value)
        except Exception as e:
            raise LocalStoreError(
                f"Failed to write slot {key}: {e}", backend=self.backend_name
            ) from e

    async def remove_slot(self, key: str) -> None:
        try:
            await self._backend.remove_slot(key)
        except Exception as e:
            raise LocalStoreError(
                f"Failed to remove slot {key}: {e}", backend=self.backend_name
            ) from e

    async def list_slots(self, prefix: str = "") -> List[str]:
        try:
            return await self._backend.list_slots(prefix)
        except Exception as e:
            logger.error(f"Failed to list slots: {e}")
            return []

    # =========================================================================
    # BACKUPS & INFO
    # =========================================================================

    async def create_backup(self, snapshot: Dict[str, Any], max_backups: int = 5) -> str:
        """
        Store a timestamped backup slot and prune old ones.

        Returns:
            Slot key of the new backup
        """
        key = f"{BACKUP_PREFIX}{int(time.time() * 1000)}"
        await self.write_slot(key, json.dumps(snapshot))

        backups = await self.list_backups()
        for stale in backups[max_backups:]:
            await self.remove_slot(stale)

        logger.info(f"Backup created: {key} (keeping {min(len(backups), max_backups)})")
        return key

    async def list_backups(self) -> List[str]:
        """Backup slot keys, newest first."""
        keys = await self.list_slots(BACKUP_PREFIX)

        def _stamp(key: str) -> int:
            try:
                return int(key[len(BACKUP_PREFIX):])
            except ValueError:
                return 0

        return sorted(keys, key=_stamp, reverse=True)

    async def describe(self) -> Dict[str, Any]:
        """Backend name and record counts."""
        counts = {}
        for collection in COLLECTIONS:
            counts[collection] = len(await self.get_all(collection))
        return {
            "backend": self.backend_name,
            "kind": self.backend_kind.value,
            "degraded": self.is_degraded,
            "counts": counts,
            "total_records": sum(counts.values()),
        }

    # =========================================================================
    # MIGRATION
    # =========================================================================

    async def migrate_from(self, source: KeyValueBackend) -> bool:
        """
        Copy flat-store data into this store once.

        The source is left untouched and a marker slot prevents a second run.

        Returns:
            True if data was migrated
        """
        if await self.read_slot(MIGRATION_MARKER) is not None:
            return False

        try:
            pending = await source.read_slot(PENDING_OPS_SLOT)
            if not await source.has_data(list(COLLECTIONS)) and pending is None:
                return False

            migrated = 0
            for collection in COLLECTIONS:
                for record in await source.get_all(collection):
                    if record.get("id") in (None, ""):
                        continue
                    await self._backend.put(collection, record_key(record["id"]), record)
                    migrated += 1

            if pending is not None and await self._backend.read_slot(PENDING_OPS_SLOT) is None:
                await self._backend.write_slot(PENDING_OPS_SLOT, pending)

            await self._backend.write_slot(MIGRATION_MARKER, now_iso())
        except Exception as e:
            logger.error(f"Migration from {source.name} store failed: {e}")
            return False

        logger.info(f"Migrated {migrated} records from {source.name} store to {self.backend_name}")
        return True


def _fallback_chain(kind: BackendKind, flat_writable: bool) -> List[BackendKind]:
    chain = [kind]
    if kind is BackendKind.INDEXED and flat_writable:
        chain.append(BackendKind.FLAT)
    if kind is not BackendKind.MEMORY:
        chain.append(BackendKind.MEMORY)
    return chain


async def open_local_store(config: PlannerConfig) -> LocalStore:
    """
    Probe, select and open the best available backend.

    Never raises: if neither durable backend opens, the store runs in memory.
    """
    probe = await probe_capabilities(config)
    selected = select_backend_kind(probe)

    for kind in _fallback_chain(selected, probe.flat_writable):
        backend = create_backend(kind, config)
        try:
            await backend.open()
        except Exception as e:
            logger.warning(f"Could not open {backend.name} backend: {e}")
            continue

        store = LocalStore(backend)
        if kind is BackendKind.INDEXED and probe.flat_writable:
            await store.migrate_from(FileKeyValueBackend(config.kv_dir))
        if store.is_degraded:
            logger.warning("No durable local storage available; data is kept in memory only")
        else:
            logger.info(f"Local store using {store.backend_name} backend")
        return store

    return LocalStore(create_backend(BackendKind.MEMORY, config))
