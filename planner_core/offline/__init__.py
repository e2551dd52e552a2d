# =============================================================================
# planner_core/offline/__init__.py
# Offline-First Storage for PlannerPro
# =============================================================================
"""
Offline-First Storage Module

PlannerPro works the same whether the API is reachable or not. Every write
lands in the local store; the API is updated directly when possible and
through the pending-operation queue otherwise.

Architecture:
------------
┌─────────────────────────────────────────────────────────────────┐
│                    OFFLINE-FIRST ARCHITECTURE                    │
├─────────────────────────────────────────────────────────────────┤
│                                                                  │
│   ┌──────────────────────────────────────────────────────────┐  │
│   │                 UnifiedDataService                        │  │
│   │         (Single API - callers use this only)              │  │
│   └──────────────────────────────────────────────────────────┘  │
│          │                    │                     │            │
│          ▼                    ▼                     ▼            │
│   ┌──────────────┐   ┌─────────────────┐   ┌────────────────┐   │
│   │  LocalStore  │   │ ConnectionMgr   │   │  RemoteClient  │   │
│   │ SQLite/JSON/ │   │ (Online/Offline)│   │    (httpx)     │   │
│   │   memory     │   └─────────────────┘   └────────────────┘   │
│   └──────────────┘            │                     ▲            │
│          ▲                    ▼                     │            │
│          │           ┌─────────────────┐            │            │
│          └───────────│   SyncEngine    │────────────┘            │
│                      │ drains the      │                         │
│                      │ PendingOpQueue  │                         │
│                      └─────────────────┘                         │
└─────────────────────────────────────────────────────────────────┘

Usage:
------
from planner_core.offline import build_context

context = await build_context(config)
await context.start()

service = context.data_service
await service.save_task({"title": "Renew passport"})

print(service.is_online)           # True/False
print(service.pending_sync_count)  # Number of queued writes
"""

from planner_core.offline.backends import (
    BackendKind,
    CapabilityProbe,
    StorageBackend,
    SQLiteBackend,
    FileKeyValueBackend,
    MemoryKeyValueBackend,
    select_backend_kind,
    probe_capabilities,
)

from planner_core.offline.local_store import (
    LocalStore,
    open_local_store,
    PENDING_OPS_SLOT,
)

from planner_core.offline.connection_manager import (
    ConnectionManager,
    ConnectionState,
    ConnectionStatus,
)

from planner_core.offline.pending_queue import (
    PendingOperation,
    PendingOperationQueue,
    DrainReport,
)

from planner_core.offline.remote_client import (
    RemoteClient,
    RemoteResponse,
    UserContext,
)

from planner_core.offline.sync_engine import (
    SyncEngine,
    SyncState,
)

from planner_core.offline.unified_data_service import UnifiedDataService

from planner_core.offline.context import (
    AppContext,
    build_context,
)

__all__ = [
    # Local storage
    "BackendKind",
    "CapabilityProbe",
    "StorageBackend",
    "SQLiteBackend",
    "FileKeyValueBackend",
    "MemoryKeyValueBackend",
    "select_backend_kind",
    "probe_capabilities",
    "LocalStore",
    "open_local_store",
    "PENDING_OPS_SLOT",
    # Connection management
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStatus",
    # Queue & sync
    "PendingOperation",
    "PendingOperationQueue",
    "DrainReport",
    "RemoteClient",
    "RemoteResponse",
    "UserContext",
    "SyncEngine",
    "SyncState",
    # Unified service
    "UnifiedDataService",
    "AppContext",
    "build_context",
]
