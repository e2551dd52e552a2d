# =============================================================================
# planner_core/ui/runtime.py
# Background event loop bridging Streamlit and the async storage layer
# =============================================================================
"""
Streamlit reruns the script synchronously on every interaction, while the
storage layer is asyncio-based. PlannerRuntime keeps one event loop alive
on a daemon thread for the whole server process; the UI submits coroutines
to it and waits for their results.
"""

from __future__ import annotations
import asyncio
import contextlib
import threading
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Awaitable, Optional
import logging

import streamlit as st

from planner_core.config import PlannerConfig, load_config
from planner_core.logging import setup_logging
from planner_core.offline.context import AppContext, build_context

logger = logging.getLogger(__name__)


class PlannerRuntime:
    """
    Owns the background loop and the AppContext living on it.

    Usage:
        runtime = get_runtime()
        tasks = runtime.run(runtime.context.data_service.get_all_tasks())
    """

    STARTUP_TIMEOUT = 30.0
    CALL_TIMEOUT = 30.0

    def __init__(self, config: PlannerConfig):
        self.config = config
        self.context: Optional[AppContext] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> PlannerRuntime:
        ready = threading.Event()

        def runner() -> None:
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            self._loop = loop
            ready.set()
            try:
                loop.run_forever()
            finally:
                with contextlib.suppress(RuntimeError):
                    loop.close()

        self._thread = threading.Thread(target=runner, daemon=True, name="PlannerLoop")
        self._thread.start()
        ready.wait(timeout=5.0)
        if self._loop is None:
            raise RuntimeError("Planner event loop did not start")

        self.context = self.run(build_context(self.config), timeout=self.STARTUP_TIMEOUT)
        self.run(self.context.start(auto_backup=True), timeout=self.STARTUP_TIMEOUT)
        logger.info("Planner runtime started")
        return self

    def run(self, coro: Awaitable[Any], timeout: Optional[float] = None) -> Any:
        """Run a coroutine on the background loop and wait for its result."""
        if self._loop is None:
            raise RuntimeError("Planner runtime is not started")
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            return future.result(timeout=timeout or self.CALL_TIMEOUT)
        except FutureTimeoutError:
            future.cancel()
            raise

    def stop(self) -> None:
        if self._loop is None:
            return
        if self.context is not None:
            try:
                self.run(self.context.close())
            except Exception as e:
                logger.error(f"Error closing planner context: {e}")
        self._loop.call_soon_threadsafe(self._loop.stop)
        if self._thread is not None:
            self._thread.join(timeout=5)
        self._loop = None
        logger.info("Planner runtime stopped")


@st.cache_resource
def get_runtime() -> PlannerRuntime:
    """
    Process-wide runtime shared by every Streamlit session.

    Returns:
        Started PlannerRuntime
    """
    config = load_config()
    setup_logging(config.log_level, log_to_file=config.log_to_file)
    return PlannerRuntime(config).start()
