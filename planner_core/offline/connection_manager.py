# =============================================================================
# planner_core/offline/connection_manager.py
# Connection Status Detection and Management
# =============================================================================
"""
ConnectionManager - tracks whether the PlannerPro API is reachable.

Features:
- Initial reachability probe (TCP connect to the API host)
- Explicit online/offline notifications
- Periodic health checks on the event loop
- Callbacks fired once per status change
"""

from __future__ import annotations
import asyncio
import contextlib
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, List, Optional
from urllib.parse import urlparse
import logging

logger = logging.getLogger(__name__)

ReachabilityProbe = Callable[[], Awaitable[bool]]


class ConnectionStatus(Enum):
    """Connection status states."""
    ONLINE = "online"           # API reachable
    OFFLINE = "offline"         # API unreachable
    UNKNOWN = "unknown"         # Initial state


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    last_check: Optional[datetime] = None
    last_online: Optional[datetime] = None
    last_change: Optional[datetime] = None
    consecutive_failures: int = 0
    error_message: Optional[str] = None


class ConnectionManager:
    """
    Connectivity monitor for the remote API.

    Usage:
        manager = ConnectionManager("http://localhost:5000/api")
        await manager.initialize()
        if manager.is_online:
            # Talk to the API
        else:
            # Use the local store
    """

    # Configuration
    CHECK_INTERVAL_ONLINE = 30      # Seconds between checks when online
    CHECK_INTERVAL_OFFLINE = 10     # Seconds between checks when offline
    CONNECTION_TIMEOUT = 5          # Timeout for the reachability probe

    def __init__(
        self,
        api_base_url: str,
        reachability_probe: Optional[ReachabilityProbe] = None,
        check_interval_online: float = CHECK_INTERVAL_ONLINE,
        check_interval_offline: float = CHECK_INTERVAL_OFFLINE,
    ):
        self.api_base_url = api_base_url
        self.check_interval_online = check_interval_online
        self.check_interval_offline = check_interval_offline
        self._probe = reachability_probe or self._tcp_probe
        self._state = ConnectionState()
        self._callbacks: List[Callable[[ConnectionState], None]] = []
        self._monitor_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> ConnectionState:
        """Get current connection state."""
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        """Get current status."""
        return self._state.status

    @property
    def is_online(self) -> bool:
        """Check if the API is considered reachable."""
        return self._state.status == ConnectionStatus.ONLINE

    @property
    def is_offline(self) -> bool:
        return self._state.status == ConnectionStatus.OFFLINE

    @property
    def is_monitoring(self) -> bool:
        return self._monitor_task is not None and not self._monitor_task.done()

    async def initialize(self) -> ConnectionState:
        """Set the initial state from the reachability probe."""
        await self.check_connection()
        logger.info(f"ConnectionManager initialized. Status: {self._state.status.value}")
        return self._state

    async def check_connection(self) -> ConnectionState:
        """Run the reachability probe and update state."""
        try:
            reachable = await self._probe()
        except Exception as e:
            logger.debug(f"Reachability probe failed: {e}")
            self.set_reachable(False, error=str(e))
        else:
            self.set_reachable(reachable)
        return self._state

    async def _tcp_probe(self) -> bool:
        """Try a TCP connection to the API host."""
        parsed = urlparse(self.api_base_url)
        host = parsed.hostname
        port = parsed.port or (443 if parsed.scheme == "https" else 80)
        if not host:
            return False

        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), timeout=self.CONNECTION_TIMEOUT
            )
        except (OSError, asyncio.TimeoutError) as e:
            self._state.error_message = str(e) or type(e).__name__
            return False

        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()
        return True

    # =========================================================================
    # STATE TRANSITIONS
    # =========================================================================

    def set_reachable(self, reachable: bool, error: Optional[str] = None) -> None:
        """Record a reachability observation; callbacks fire on change only."""
        old_status = self._state.status
        now = datetime.now()
        self._state.last_check = now

        if reachable:
            self._state.status = ConnectionStatus.ONLINE
            self._state.last_online = now
            self._state.consecutive_failures = 0
            self._state.error_message = None
        else:
            self._state.status = ConnectionStatus.OFFLINE
            self._state.consecutive_failures += 1
            if error:
                self._state.error_message = error

        if old_status != self._state.status:
            self._state.last_change = now
            logger.info(f"Connection status changed: {old_status.value} -> {self._state.status.value}")
            self._notify_callbacks()

    def notify_online(self) -> None:
        """Signal that the network came back."""
        self.set_reachable(True)

    def notify_offline(self) -> None:
        """Signal that the network went away."""
        self.set_reachable(False)

    def force_offline(self) -> None:
        """Force offline mode (for testing or user preference)."""
        self.set_reachable(False, error="Forced offline")
        logger.info("Forced offline mode")

    # =========================================================================
    # MONITORING
    # =========================================================================

    def start_monitoring(self, health_check: Callable[[], Awaitable[bool]]) -> None:
        """Start periodic health checks on the running event loop."""
        if self.is_monitoring:
            return
        self._monitor_task = asyncio.get_running_loop().create_task(
            self._monitoring_loop(health_check), name="ConnectionMonitor"
        )
        logger.debug("Connection monitoring started")

    async def stop_monitoring(self) -> None:
        """Stop periodic health checks."""
        task, self._monitor_task = self._monitor_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.debug("Connection monitoring stopped")

    async def _monitoring_loop(self, health_check: Callable[[], Awaitable[bool]]) -> None:
        while True:
            interval = (
                self.check_interval_online
                if self.is_online
                else self.check_interval_offline
            )
            await asyncio.sleep(interval)

            try:
                healthy = await health_check()
            except Exception as e:
                logger.error(f"Error in connection check: {e}")
                healthy = False
            self.set_reachable(healthy)

    # =========================================================================
    # CALLBACKS
    # =========================================================================

    def register_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """
        Register a callback for connection status changes.

        Args:
            callback: Function called with ConnectionState when status changes
        """
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """Remove a registered callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        for callback in list(self._callbacks):
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in connection callback: {e}")

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        return {
            "status": self._state.status.value,
            "is_online": self.is_online,
            "api": self.api_base_url,
            "last_check": self._state.last_check.isoformat() if self._state.last_check else None,
            "last_online": self._state.last_online.isoformat() if self._state.last_online else None,
            "failures": self._state.consecutive_failures,
            "error": self._state.error_message,
        }
