# =============================================================================
# planner_core/services/base_service.py
# Shared plumbing for the record services
# =============================================================================
"""
Every service computes over plain record dictionaries and takes an optional
reference date or time so results are reproducible. The helpers here resolve
those references in one place:

- ``resolve_today``: the calendar day used for dueDate / expense date checks
- ``resolve_now``: a UTC timestamp for createdAt / completedAt windows
- ``local_now``: naive local wall-clock time for dueDate + dueTime instants
- ``day_key``: the YYYY-MM-DD prefix of a stored date or timestamp
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, Optional

import pandas as pd

from planner_core.errors import PlannerError
from planner_core.logging import LogContext, get_logger


@dataclass
class ServiceResult:
    """Outcome of a service operation that must not raise into the UI."""
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def ok(cls, data: Any = None) -> ServiceResult:
        return cls(success=True, data=data)

    @classmethod
    def from_exception(cls, e: Exception) -> ServiceResult:
        """PlannerErrors keep their code and details; anything else is EXCEPTION."""
        if isinstance(e, PlannerError):
            return cls(success=False, error=e.message, error_code=e.code, metadata=e.details)
        return cls(success=False, error=str(e), error_code="EXCEPTION")


class BaseService:
    """
    Base class for services over task and expense records.

    Usage:
        class TaskService(BaseService):
            def overdue(self, tasks, today=None):
                today_key = self.resolve_today(today).isoformat()
                return [t for t in tasks if self.day_key(t.get("dueDate")) < today_key]
    """

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    # =========================================================================
    # REFERENCE DATES
    # =========================================================================

    @staticmethod
    def resolve_today(today: Optional[date] = None) -> date:
        return today or date.today()

    @staticmethod
    def resolve_now(now: Optional[datetime] = None) -> pd.Timestamp:
        """``now`` as a UTC timestamp; naive values are taken to be UTC."""
        current = pd.Timestamp(now) if now is not None else pd.Timestamp.now(tz="UTC")
        if current.tzinfo is None:
            current = current.tz_localize("UTC")
        return current

    @staticmethod
    def local_now(now: Optional[datetime] = None) -> datetime:
        """``now`` as naive local time; aware values are converted first."""
        if now is None:
            return datetime.now()
        if now.tzinfo is not None:
            return now.astimezone().replace(tzinfo=None)
        return now

    @staticmethod
    def day_key(value: Any) -> str:
        """YYYY-MM-DD prefix of a date string, or "" when there is none."""
        if value is None or value != value:
            return ""
        return str(value)[:10]

    # =========================================================================
    # ERROR HANDLING
    # =========================================================================

    def safe_execute(self, operation: str, func: Callable[..., Any], *args, **kwargs) -> ServiceResult:
        """
        Run ``func`` inside a timed log context and wrap the outcome.

        PlannerErrors are logged as warnings and keep their error code;
        other exceptions are logged with a traceback.
        """
        with LogContext(self.logger, operation):
            try:
                return ServiceResult.ok(func(*args, **kwargs))
            except PlannerError as e:
                self.logger.warning(f"{operation} failed: {e}")
                return ServiceResult.from_exception(e)
            except Exception as e:
                self.logger.error(f"{operation} failed: {e}", exc_info=True)
                return ServiceResult.from_exception(e)
