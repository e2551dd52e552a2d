# =============================================================================
# planner_core/offline/remote_client.py
# Bounded HTTP Client for the PlannerPro API
# =============================================================================
"""
RemoteClient - one bounded HTTP request per call, never raising.

Every failure (timeout, DNS error, refused connection, non-2xx status) comes
back as a RemoteResponse with ``unreachable=True``. Failed mutating requests
are handed to the attached PendingOperationQueue unless the caller opts out.
"""

from __future__ import annotations
import asyncio
import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional
import logging

import httpx

from planner_core.errors import LocalStoreError
from planner_core.offline.pending_queue import MUTATING_METHODS, PendingOperation

if TYPE_CHECKING:
    from planner_core.offline.pending_queue import PendingOperationQueue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserContext:
    """Implicit single user attached to every request."""
    user_id: int = 1
    username: str = "default_user"

    def header_value(self) -> str:
        return f"{self.user_id}:{self.username}"


@dataclass
class RemoteResponse:
    """Classified result of one remote call."""
    ok: bool
    status_code: Optional[int] = None
    data: Any = None
    error: Optional[str] = None
    unreachable: bool = False
    queued: bool = False

    @classmethod
    def failure(cls, error: str, status_code: Optional[int] = None, data: Any = None) -> RemoteResponse:
        return cls(ok=False, status_code=status_code, data=data, error=error, unreachable=True)


class RemoteClient:
    """
    Async client for the PlannerPro REST API.

    Usage:
        client = RemoteClient("http://localhost:5000/api", UserContext())
        response = await client.request("/tasks")
        if response.ok:
            tasks = response.data["tasks"]
    """

    DEFAULT_TIMEOUT = 10.0          # Seconds per request
    HEALTH_TIMEOUT = 5.0            # Seconds for /health
    USER_HEADER = "X-Planner-User"

    def __init__(
        self,
        base_url: str,
        user: Optional[UserContext] = None,
        timeout: float = DEFAULT_TIMEOUT,
        health_timeout: float = HEALTH_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        queue: Optional[PendingOperationQueue] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.user = user or UserContext()
        self.timeout = timeout
        self.health_timeout = health_timeout
        self._queue = queue
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            transport=transport,
            headers={
                "Content-Type": "application/json",
                self.USER_HEADER: self.user.header_value(),
            },
        )

    def attach_queue(self, queue: PendingOperationQueue) -> None:
        self._queue = queue

    async def close(self) -> None:
        await self._client.aclose()

    # =========================================================================
    # REQUESTS
    # =========================================================================

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        body: Any = None,
        timeout: Optional[float] = None,
        params: Optional[Dict[str, Any]] = None,
        queue_on_failure: bool = True,
        collection: Optional[str] = None,
        local_id: Optional[str] = None,
    ) -> RemoteResponse:
        """
        Perform one HTTP request bounded by ``timeout`` seconds.

        Args:
            endpoint: Path relative to the API base, e.g. "/tasks"
            method: HTTP method
            body: dict/list payload, or an already serialized JSON string
            timeout: Override for the default request timeout
            params: Query parameters
            queue_on_failure: Queue a failed mutating request for later replay
            collection: Collection metadata stored with a queued operation
            local_id: Local record id stored with a queued operation

        Returns:
            RemoteResponse; never raises
        """
        method = method.upper()
        limit = self.timeout if timeout is None else timeout
        content = None
        if body is not None:
            content = body if isinstance(body, str) else json.dumps(body)

        try:
            http_response = await asyncio.wait_for(
                self._client.request(method, endpoint, content=content, params=params, timeout=limit),
                timeout=limit,
            )
            response = self._classify(method, http_response)
        except asyncio.TimeoutError:
            response = RemoteResponse.failure(f"Request timed out after {limit}s")
        except httpx.HTTPError as e:
            response = RemoteResponse.failure(f"{type(e).__name__}: {e}")
        except Exception as e:
            logger.error(f"Unexpected error calling {method} {endpoint}: {e}")
            response = RemoteResponse.failure(str(e))

        if response.ok:
            logger.debug(f"{method} {endpoint} -> {response.status_code}")
        else:
            logger.debug(f"{method} {endpoint} unreachable: {response.error}")
            if queue_on_failure and method in MUTATING_METHODS and self._queue is not None:
                response.queued = await self._enqueue(endpoint, method, content, collection, local_id)

        return response

    async def send(
        self,
        op: PendingOperation,
        timeout: Optional[float] = None,
        queue_on_failure: bool = True,
    ) -> RemoteResponse:
        """Replay a queued operation."""
        return await self.request(
            op.endpoint,
            op.method,
            body=op.body,
            timeout=timeout,
            queue_on_failure=queue_on_failure,
            collection=op.collection,
            local_id=op.local_id,
        )

    async def health_check(self) -> bool:
        """GET /health within the health timeout."""
        response = await self.request("/health", "GET", timeout=self.health_timeout)
        return response.ok

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _classify(self, method: str, http_response: httpx.Response) -> RemoteResponse:
        data = _decode(http_response)
        status = http_response.status_code

        if 200 <= status < 300:
            return RemoteResponse(ok=True, status_code=status, data=data)
        if method == "DELETE" and status == 404:
            # Already gone on the server
            return RemoteResponse(ok=True, status_code=status, data=data)

        error = None
        if isinstance(data, dict):
            error = data.get("error")
        return RemoteResponse.failure(error or f"HTTP {status}", status_code=status, data=data)

    async def _enqueue(
        self,
        endpoint: str,
        method: str,
        content: Optional[str],
        collection: Optional[str],
        local_id: Optional[str],
    ) -> bool:
        op = PendingOperation(
            endpoint=endpoint,
            method=method,
            body=content,
            collection=collection,
            local_id=local_id,
        )
        try:
            await self._queue.enqueue(op)
        except LocalStoreError as e:
            logger.error(f"Could not queue {method} {endpoint}: {e}")
            return False
        return True


def _decode(http_response: httpx.Response) -> Any:
    if not http_response.content:
        return None
    try:
        return http_response.json()
    except ValueError:
        return http_response.text
