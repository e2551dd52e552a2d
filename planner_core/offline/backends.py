# =============================================================================
# planner_core/offline/backends.py
# Interchangeable Local Storage Backends
# =============================================================================
"""
Storage backends behind LocalStore.

Three implementations share one async interface:

- SQLiteBackend:          indexed record store (one table per collection,
                          json_extract indexes on the common filter fields)
- FileKeyValueBackend:    flat key/value fallback (one JSON file per key,
                          localStorage-style "plannerpro_<collection>" keys)
- MemoryKeyValueBackend:  degraded in-memory mode for the current session

Selection happens once at startup: probe_capabilities() gathers a
CapabilityProbe and select_backend_kind() maps it to a BackendKind without
side effects.
"""

from __future__ import annotations
import asyncio
import importlib.util
import json
import os
import re
import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
import logging

from planner_core.config import PlannerConfig

logger = logging.getLogger(__name__)


class BackendKind(Enum):
    """Local backend flavours, in order of preference."""
    INDEXED = "indexed"
    FLAT = "flat"
    MEMORY = "memory"


@dataclass(frozen=True)
class CapabilityProbe:
    """Result of probing the runtime for usable local storage."""
    indexed_supported: bool = False    # sqlite3 module importable
    indexed_responsive: bool = False   # live probe finished within the timeout
    flat_writable: bool = False        # key/value directory is writable


def select_backend_kind(probe: CapabilityProbe) -> BackendKind:
    """Pick the backend for a probe result."""
    if probe.indexed_supported and probe.indexed_responsive:
        return BackendKind.INDEXED
    if probe.flat_writable:
        return BackendKind.FLAT
    return BackendKind.MEMORY


# =============================================================================
# BACKEND INTERFACE
# =============================================================================

class StorageBackend(ABC):
    """
    Async storage contract shared by every backend.

    Backends may raise freely (sqlite3.Error, OSError, ...); LocalStore is
    responsible for translating failures at its public boundary.
    """

    kind: BackendKind
    name: str = "backend"

    async def open(self) -> None:
        """Prepare the backend for use."""

    async def close(self) -> None:
        """Release backend resources."""

    @abstractmethod
    async def put(self, collection: str, record_id: str, record: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get_all(self, collection: str) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def delete(self, collection: str, record_id: str) -> bool:
        ...

    @abstractmethod
    async def replace_collection(self, collection: str, records: List[Dict[str, Any]]) -> None:
        ...

    @abstractmethod
    async def clear(self, collection: str) -> None:
        ...

    async def find_by_field(self, collection: str, field: str, value: Any) -> List[Dict[str, Any]]:
        records = await self.get_all(collection)
        return [r for r in records if r.get(field) == value]

    @abstractmethod
    async def read_slot(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def write_slot(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    async def remove_slot(self, key: str) -> None:
        ...

    @abstractmethod
    async def list_slots(self, prefix: str = "") -> List[str]:
        ...


# =============================================================================
# SQLITE (INDEXED) BACKEND
# =============================================================================

class SQLiteBackend(StorageBackend):
    """
    SQLite-based record store.

    Each collection is a table of (id, data_json) rows. Upserts keep the
    original rowid, so get_all() returns records in insertion order.
    """

    kind = BackendKind.INDEXED
    name = "sqlite"

    SCHEMA = {
        "tasks": """
            CREATE TABLE IF NOT EXISTS tasks (
                id TEXT PRIMARY KEY,
                data_json TEXT NOT NULL,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        """,
        "expenses": """
            CREATE TABLE IF NOT EXISTS expenses (
                id TEXT PRIMARY KEY,
                data_json TEXT NOT NULL,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        """,
        "settings": """
            CREATE TABLE IF NOT EXISTS settings (
                id TEXT PRIMARY KEY,
                data_json TEXT NOT NULL,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        """,
        "statistics": """
            CREATE TABLE IF NOT EXISTS statistics (
                id TEXT PRIMARY KEY,
                data_json TEXT NOT NULL,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        """,
        "storage_slots": """
            CREATE TABLE IF NOT EXISTS storage_slots (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        """,
    }

    # Fields with an expression index, per collection
    INDEXED_FIELDS = {
        "tasks": ("category", "dueDate", "status", "priority"),
        "expenses": ("category", "date"),
        "statistics": ("type",),
    }

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Connection handling
    # -------------------------------------------------------------------------

    async def open(self) -> None:
        await asyncio.to_thread(self._open_sync)
        logger.info(f"SQLite backend ready at: {self.db_path}")

    def _open_sync(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        with self._lock:
            for table_name, schema in self.SCHEMA.items():
                conn.execute(schema)
                logger.debug(f"Created/verified table: {table_name}")
            for collection, field_names in self.INDEXED_FIELDS.items():
                for field_name in field_names:
                    index_name = f"idx_{collection}_{_snake(field_name)}"
                    conn.execute(
                        f"CREATE INDEX IF NOT EXISTS {index_name} "
                        f"ON {collection} (json_extract(data_json, '$.{field_name}'))"
                    )
            conn.commit()
        self._conn = conn

    async def close(self) -> None:
        if self._conn is not None:
            conn, self._conn = self._conn, None
            await asyncio.to_thread(conn.close)

    def _table(self, collection: str) -> str:
        if collection not in self.SCHEMA or collection == "storage_slots":
            raise KeyError(f"Unknown collection: {collection}")
        return collection

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        if self._conn is None:
            raise sqlite3.ProgrammingError("SQLite backend is not open")
        return await asyncio.to_thread(self._locked, fn, *args)

    def _locked(self, fn: Callable[..., Any], *args: Any) -> Any:
        with self._lock:
            return fn(self._conn, *args)

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    async def put(self, collection: str, record_id: str, record: Dict[str, Any]) -> None:
        table = self._table(collection)

        def _put(conn: sqlite3.Connection) -> None:
            conn.execute(
                f"""
                INSERT INTO {table} (id, data_json, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    data_json = excluded.data_json,
                    updated_at = excluded.updated_at
                """,
                [record_id, json.dumps(record), datetime.now().isoformat()],
            )
            conn.commit()

        await self._run(_put)

    async def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        table = self._table(collection)

        def _get(conn: sqlite3.Connection) -> Optional[str]:
            row = conn.execute(
                f"SELECT data_json FROM {table} WHERE id = ?", [record_id]
            ).fetchone()
            return row["data_json"] if row else None

        raw = await self._run(_get)
        return json.loads(raw) if raw is not None else None

    async def get_all(self, collection: str) -> List[Dict[str, Any]]:
        table = self._table(collection)

        def _all(conn: sqlite3.Connection) -> List[sqlite3.Row]:
            return conn.execute(
                f"SELECT id, data_json FROM {table} ORDER BY rowid ASC"
            ).fetchall()

        rows = await self._run(_all)
        return self._decode_rows(collection, rows)

    async def find_by_field(self, collection: str, field: str, value: Any) -> List[Dict[str, Any]]:
        table = self._table(collection)
        if field not in self.INDEXED_FIELDS.get(collection, ()):
            return await super().find_by_field(collection, field, value)

        def _find(conn: sqlite3.Connection) -> List[sqlite3.Row]:
            return conn.execute(
                f"SELECT id, data_json FROM {table} "
                f"WHERE json_extract(data_json, '$.{field}') = ? ORDER BY rowid ASC",
                [value],
            ).fetchall()

        rows = await self._run(_find)
        return self._decode_rows(collection, rows)

    async def delete(self, collection: str, record_id: str) -> bool:
        table = self._table(collection)

        def _delete(conn: sqlite3.Connection) -> bool:
            cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?", [record_id])
            conn.commit()
            return cursor.rowcount > 0

        return await self._run(_delete)

    async def replace_collection(self, collection: str, records: List[Dict[str, Any]]) -> None:
        table = self._table(collection)
        now = datetime.now().isoformat()
        rows = [(str(r["id"]), json.dumps(r), now) for r in records]

        def _replace(conn: sqlite3.Connection) -> None:
            try:
                conn.execute(f"DELETE FROM {table}")
                conn.executemany(
                    f"INSERT OR REPLACE INTO {table} (id, data_json, updated_at) VALUES (?, ?, ?)",
                    rows,
                )
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise

        await self._run(_replace)

    async def clear(self, collection: str) -> None:
        table = self._table(collection)

        def _clear(conn: sqlite3.Connection) -> None:
            conn.execute(f"DELETE FROM {table}")
            conn.commit()

        await self._run(_clear)

    def _decode_rows(self, collection: str, rows: List[sqlite3.Row]) -> List[Dict[str, Any]]:
        records = []
        for row in rows:
            try:
                records.append(json.loads(row["data_json"]))
            except json.JSONDecodeError as e:
                logger.warning(f"Skipping corrupt row {row['id']} in {collection}: {e}")
        return records

    # -------------------------------------------------------------------------
    # Slots
    # -------------------------------------------------------------------------

    async def read_slot(self, key: str) -> Optional[str]:
        def _read(conn: sqlite3.Connection) -> Optional[str]:
            row = conn.execute(
                "SELECT value FROM storage_slots WHERE key = ?", [key]
            ).fetchone()
            return row["value"] if row else None

        return await self._run(_read)

    async def write_slot(self, key: str, value: str) -> None:
        def _write(conn: sqlite3.Connection) -> None:
            conn.execute(
                """
                INSERT OR REPLACE INTO storage_slots (key, value, updated_at)
                VALUES (?, ?, ?)
                """,
                [key, value, datetime.now().isoformat()],
            )
            conn.commit()

        await self._run(_write)

    async def remove_slot(self, key: str) -> None:
        def _remove(conn: sqlite3.Connection) -> None:
            conn.execute("DELETE FROM storage_slots WHERE key = ?", [key])
            conn.commit()

        await self._run(_remove)

    async def list_slots(self, prefix: str = "") -> List[str]:
        def _list(conn: sqlite3.Connection) -> List[str]:
            rows = conn.execute(
                "SELECT key FROM storage_slots WHERE substr(key, 1, ?) = ? ORDER BY key",
                [len(prefix), prefix],
            ).fetchall()
            return [row["key"] for row in rows]

        return await self._run(_list)


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


# =============================================================================
# KEY/VALUE (FLAT) BACKENDS
# =============================================================================

class KeyValueBackend(StorageBackend):
    """
    Flat key/value store: every collection is one serialized JSON array.

    Subclasses only provide the four localStorage-style primitives.
    """

    KEY_PREFIX = "plannerpro_"

    def __init__(self):
        self._write_lock = asyncio.Lock()

    # Primitives ---------------------------------------------------------------

    @abstractmethod
    def _get_item(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def _set_item(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def _remove_item(self, key: str) -> None:
        ...

    @abstractmethod
    def _keys(self) -> List[str]:
        ...

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        return fn(*args)

    # Helpers ------------------------------------------------------------------

    def collection_key(self, collection: str) -> str:
        return f"{self.KEY_PREFIX}{collection}"

    async def _load(self, collection: str) -> List[Dict[str, Any]]:
        raw = await self._call(self._get_item, self.collection_key(collection))
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Corrupt data for {collection} in {self.name} backend, treating as empty: {e}")
            return []
        if not isinstance(data, list):
            logger.warning(f"Unexpected layout for {collection} in {self.name} backend, treating as empty")
            return []
        return [r for r in data if isinstance(r, dict)]

    async def _save(self, collection: str, records: List[Dict[str, Any]]) -> None:
        await self._call(self._set_item, self.collection_key(collection), json.dumps(records))

    # Records ------------------------------------------------------------------

    async def put(self, collection: str, record_id: str, record: Dict[str, Any]) -> None:
        async with self._write_lock:
            records = await self._load(collection)
            for i, existing in enumerate(records):
                if str(existing.get("id")) == record_id:
                    records[i] = record
                    break
            else:
                records.append(record)
            await self._save(collection, records)

    async def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        for record in await self._load(collection):
            if str(record.get("id")) == record_id:
                return record
        return None

    async def get_all(self, collection: str) -> List[Dict[str, Any]]:
        return await self._load(collection)

    async def delete(self, collection: str, record_id: str) -> bool:
        async with self._write_lock:
            records = await self._load(collection)
            remaining = [r for r in records if str(r.get("id")) != record_id]
            if len(remaining) == len(records):
                return False
            await self._save(collection, remaining)
            return True

    async def replace_collection(self, collection: str, records: List[Dict[str, Any]]) -> None:
        async with self._write_lock:
            await self._save(collection, list(records))

    async def clear(self, collection: str) -> None:
        async with self._write_lock:
            await self._call(self._remove_item, self.collection_key(collection))

    # Slots --------------------------------------------------------------------

    async def read_slot(self, key: str) -> Optional[str]:
        return await self._call(self._get_item, key)

    async def write_slot(self, key: str, value: str) -> None:
        await self._call(self._set_item, key, value)

    async def remove_slot(self, key: str) -> None:
        await self._call(self._remove_item, key)

    async def list_slots(self, prefix: str = "") -> List[str]:
        keys = await self._call(self._keys)
        return sorted(k for k in keys if k.startswith(prefix))

    async def has_data(self, collections: List[str]) -> bool:
        keys = set(await self._call(self._keys))
        return any(self.collection_key(c) in keys for c in collections)


class FileKeyValueBackend(KeyValueBackend):
    """One JSON file per key under a directory, written atomically."""

    kind = BackendKind.FLAT
    name = "file"

    SUFFIX = ".json"
    _SAFE_KEY = re.compile(r"^[A-Za-z0-9_.:\-]+$")

    def __init__(self, directory: Path):
        super().__init__()
        self.directory = Path(directory)

    async def open(self) -> None:
        await asyncio.to_thread(self.directory.mkdir, parents=True, exist_ok=True)
        logger.info(f"File key/value backend ready at: {self.directory}")

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.to_thread(fn, *args)

    def _path(self, key: str) -> Path:
        if not self._SAFE_KEY.match(key):
            raise KeyError(f"Invalid storage key: {key!r}")
        return self.directory / f"{key}{self.SUFFIX}"

    def _get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def _set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp_path = path.with_name(f".{path.name}.tmp")
        tmp_path.write_text(value, encoding="utf-8")
        os.replace(tmp_path, path)

    def _remove_item(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()

    def _keys(self) -> List[str]:
        if not self.directory.exists():
            return []
        return [
            p.name[: -len(self.SUFFIX)]
            for p in self.directory.iterdir()
            if p.is_file() and p.name.endswith(self.SUFFIX) and not p.name.startswith(".")
        ]


class MemoryKeyValueBackend(KeyValueBackend):
    """Session-only storage used when nothing durable is available."""

    kind = BackendKind.MEMORY
    name = "memory"

    def __init__(self):
        super().__init__()
        self._items: Dict[str, str] = {}

    def _get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def _set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def _remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def _keys(self) -> List[str]:
        return list(self._items)


# =============================================================================
# CAPABILITY PROBING
# =============================================================================

def _probe_sqlite_sync(directory: Path) -> bool:
    """Open a scratch database and exercise upsert + json_extract."""
    directory.mkdir(parents=True, exist_ok=True)
    probe_path = directory / ".plannerpro-probe.db"
    conn = sqlite3.connect(str(probe_path))
    try:
        conn.execute("CREATE TABLE IF NOT EXISTS probe (id TEXT PRIMARY KEY, data_json TEXT)")
        conn.execute(
            "INSERT INTO probe (id, data_json) VALUES ('p', '{\"ok\": 1}') "
            "ON CONFLICT(id) DO UPDATE SET data_json = excluded.data_json"
        )
        row = conn.execute("SELECT json_extract(data_json, '$.ok') FROM probe").fetchone()
        conn.execute("DROP TABLE probe")
        return row is not None and row[0] == 1
    finally:
        conn.close()
        if probe_path.exists():
            probe_path.unlink()


async def probe_indexed_backend(directory: Path, timeout: float = 1.0) -> bool:
    """
    Live-check the indexed backend.

    The check is bounded by ``timeout``; a probe that never answers is
    abandoned and reported as unusable.
    """
    try:
        return await asyncio.wait_for(asyncio.to_thread(_probe_sqlite_sync, directory), timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Indexed backend probe timed out after {timeout}s")
    except (sqlite3.Error, OSError) as e:
        logger.warning(f"Indexed backend probe failed: {e}")
    return False


def _probe_directory_sync(directory: Path) -> bool:
    directory.mkdir(parents=True, exist_ok=True)
    probe_path = directory / ".plannerpro-probe"
    probe_path.write_text("ok", encoding="utf-8")
    probe_path.unlink()
    return True


async def probe_flat_backend(directory: Path) -> bool:
    try:
        return await asyncio.to_thread(_probe_directory_sync, directory)
    except OSError as e:
        logger.warning(f"Flat backend directory not writable: {e}")
        return False


async def probe_capabilities(config: PlannerConfig) -> CapabilityProbe:
    """Gather the facts select_backend_kind() decides on."""
    indexed_supported = importlib.util.find_spec("sqlite3") is not None
    indexed_responsive = False
    if indexed_supported:
        indexed_responsive = await probe_indexed_backend(config.data_dir, config.probe_timeout)
    flat_writable = await probe_flat_backend(config.kv_dir)

    probe = CapabilityProbe(
        indexed_supported=indexed_supported,
        indexed_responsive=indexed_responsive,
        flat_writable=flat_writable,
    )
    logger.debug(f"Storage capability probe: {probe}")
    return probe


def create_backend(kind: BackendKind, config: PlannerConfig) -> StorageBackend:
    """Instantiate (but do not open) the backend for ``kind``."""
    if kind is BackendKind.INDEXED:
        return SQLiteBackend(config.db_path)
    if kind is BackendKind.FLAT:
        return FileKeyValueBackend(config.kv_dir)
    return MemoryKeyValueBackend()
