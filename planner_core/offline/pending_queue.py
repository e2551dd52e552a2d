# =============================================================================
# planner_core/offline/pending_queue.py
# Durable FIFO Queue of Unsent Writes
# =============================================================================
"""
PendingOperationQueue - remote writes that could not be delivered yet.

Features:
- Persisted as one JSON slot in the local store after every change
- Replayed strictly in insertion order
- Halts on the first failure so later writes never overtake earlier ones
- Rewrites temporary ids in later operations once a create is applied
"""

from __future__ import annotations
import asyncio
import json
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
import logging

from planner_core.errors import LocalStoreError
from planner_core.offline.local_store import PENDING_OPS_SLOT, LocalStore

logger = logging.getLogger(__name__)

MUTATING_METHODS = ("POST", "PUT", "PATCH", "DELETE")


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class PendingOperation:
    """One queued remote write."""
    endpoint: str
    method: str
    body: Optional[str] = None          # serialized JSON payload
    timestamp: int = field(default_factory=_now_ms)
    collection: Optional[str] = None
    local_id: Optional[str] = None
    attempts: int = 0
    last_error: Optional[str] = None

    def __post_init__(self):
        self.method = self.method.upper()

    @property
    def payload(self) -> Any:
        """Deserialized body, or None."""
        if self.body is None:
            return None
        return json.loads(self.body)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PendingOperation:
        body = data.get("body")
        if body is not None and not isinstance(body, str):
            body = json.dumps(body)
        return cls(
            endpoint=data["endpoint"],
            method=data["method"],
            body=body,
            timestamp=int(data.get("timestamp") or _now_ms()),
            collection=data.get("collection"),
            local_id=data.get("local_id"),
            attempts=int(data.get("attempts") or 0),
            last_error=data.get("last_error"),
        )


@dataclass
class DrainReport:
    """Outcome of one drain pass."""
    applied: int = 0
    remaining: int = 0
    halted: bool = False
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return not self.halted


# on_applied(op, response) -> (old_id, new_id) when a temporary id was replaced
AppliedCallback = Callable[[PendingOperation, Any], Awaitable[Optional[Tuple[str, Any]]]]


class PendingOperationQueue:
    """
    FIFO queue of mutating requests backed by a LocalStore slot.

    Usage:
        queue = PendingOperationQueue(store)
        await queue.load()
        await queue.enqueue(PendingOperation("/tasks", "POST", body))
        report = await queue.drain(remote_client)
    """

    def __init__(self, store: LocalStore, slot: str = PENDING_OPS_SLOT):
        self._store = store
        self._slot = slot
        self._ops: List[PendingOperation] = []
        self._drain_lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._ops)

    def size(self) -> int:
        return len(self._ops)

    def is_empty(self) -> bool:
        return not self._ops

    def snapshot(self) -> List[Dict[str, Any]]:
        """Copy of the queued operations as dictionaries."""
        return [op.to_dict() for op in self._ops]

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    async def load(self) -> int:
        """
        Reload the queue from the local store.

        Returns:
            Number of operations loaded
        """
        raw = await self._store.read_slot(self._slot)
        if not raw:
            self._ops = []
            return 0

        try:
            entries = json.loads(raw)
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            logger.error(f"Pending operations slot is corrupt, starting empty: {e}")
            entries = []

        if not isinstance(entries, list):
            logger.error(
                f"Pending operations slot holds {type(entries).__name__}, not a list; starting empty"
            )
            entries = []

        self._ops = []
        for entry in entries:
            try:
                if not isinstance(entry, dict):
                    raise TypeError(f"expected an object, got {type(entry).__name__}")
                self._ops.append(PendingOperation.from_dict(entry))
            except (AttributeError, TypeError, KeyError, ValueError) as e:
                logger.error(f"Skipping unreadable pending operation: {e}")

        if self._ops:
            logger.info(f"Loaded {len(self._ops)} pending operations")
        return len(self._ops)

    async def _persist(self) -> None:
        await self._store.write_slot(self._slot, json.dumps(self.snapshot()))

    # =========================================================================
    # QUEUEING
    # =========================================================================

    async def enqueue(self, op: PendingOperation) -> None:
        """Append a mutating operation and persist the queue."""
        if op.method not in MUTATING_METHODS:
            raise ValueError(f"Only mutating requests can be queued, got {op.method}")

        self._ops.append(op)
        await self._persist()
        logger.info(f"Queued {op.method} {op.endpoint} ({len(self._ops)} pending)")

    async def enqueue_request(
        self,
        endpoint: str,
        method: str,
        body: Any = None,
        collection: Optional[str] = None,
        local_id: Optional[str] = None,
    ) -> PendingOperation:
        """Build, queue and return an operation for a request payload."""
        op = PendingOperation(
            endpoint=endpoint,
            method=method,
            body=json.dumps(body) if body is not None else None,
            collection=collection,
            local_id=local_id,
        )
        await self.enqueue(op)
        return op

    def has_pending_create(self, collection: str, local_id: str) -> bool:
        """True if a create for ``local_id`` has not been applied yet."""
        return any(
            op.method == "POST" and op.collection == collection and op.local_id == local_id
            for op in self._ops
        )

    def rewrite_id(self, old_id: str, new_id: Any) -> int:
        """
        Replace ``old_id`` with ``new_id`` in every queued operation.

        Touches endpoint path segments, the body ``id`` and ``local_id``.

        Returns:
            Number of operations changed
        """
        new_key = str(new_id)
        changed = 0
        for op in self._ops:
            touched = False

            segments = op.endpoint.split("/")
            if old_id in segments:
                op.endpoint = "/".join(new_key if s == old_id else s for s in segments)
                touched = True

            if op.body is not None:
                try:
                    payload = json.loads(op.body)
                except json.JSONDecodeError:
                    payload = None
                if isinstance(payload, dict) and str(payload.get("id")) == old_id:
                    payload["id"] = new_id
                    op.body = json.dumps(payload)
                    touched = True

            if op.local_id == old_id:
                op.local_id = new_key
                touched = True

            changed += touched
        return changed

    # =========================================================================
    # DRAIN
    # =========================================================================

    async def drain(self, remote: Any, on_applied: Optional[AppliedCallback] = None) -> DrainReport:
        """
        Replay queued operations in order until one fails.

        Args:
            remote: Object with ``send(op, queue_on_failure=False)``
            on_applied: Called after each applied operation

        Returns:
            DrainReport with counts and the halting error, if any
        """
        async with self._drain_lock:
            report = DrainReport()

            while self._ops:
                op = self._ops[0]
                response = await remote.send(op, queue_on_failure=False)

                if not response.ok:
                    op.attempts += 1
                    op.last_error = response.error or f"HTTP {response.status_code}"
                    report.halted = True
                    report.error = op.last_error
                    await self._persist_quietly()
                    logger.warning(
                        f"Sync halted at {op.method} {op.endpoint} "
                        f"(attempt {op.attempts}): {op.last_error}"
                    )
                    break

                report.applied += 1

                # The applied op stays at the head until its ids are remapped,
                # so has_pending_create() still sees the create meanwhile.
                if on_applied is not None:
                    try:
                        remap = await on_applied(op, response)
                    except Exception as e:
                        logger.error(f"Error handling applied operation {op.endpoint}: {e}")
                        remap = None
                    if remap:
                        old_id, new_id = remap
                        count = self.rewrite_id(old_id, new_id)
                        logger.debug(f"Remapped {old_id} -> {new_id} in {count} queued operations")

                self._discard(op)
                await self._persist_quietly()

            report.remaining = len(self._ops)
            if not self._ops and report.applied:
                try:
                    await self._store.remove_slot(self._slot)
                except LocalStoreError as e:
                    logger.error(f"Could not clear pending operations slot: {e}")

            if report.applied:
                logger.info(f"Replayed {report.applied} operations, {report.remaining} remaining")
            return report

    async def _persist_quietly(self) -> None:
        try:
            await self._persist()
        except LocalStoreError as e:
            logger.error(f"Could not persist pending operations: {e}")

    def _discard(self, op: PendingOperation) -> None:
        for i, queued in enumerate(self._ops):
            if queued is op:
                del self._ops[i]
                return
