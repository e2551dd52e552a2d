# =============================================================================
# planner_core/services/task_service.py
# Task Filtering, Sorting and Due-Date Detection
# =============================================================================
"""
TaskService - list views over task records.

Filters combine with AND. Search matches title, description, tags and
category case-insensitively. Due detection works on the local instant
``dueDate`` + ``dueTime`` (midnight when no time is set).
"""

from __future__ import annotations
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from planner_core.services.base_service import BaseService

STATUS_FILTERS = ("all", "pending", "completed", "overdue")
SORT_FIELDS = ("dueDate", "title", "priority", "createdAt", "status")
SORT_ORDERS = ("asc", "desc")

PRIORITY_RANK = {"high": 3, "medium": 2, "low": 1}
NO_DUE_DATE = "9999-12-31"

DEFAULT_REMINDER_MINUTES = 15


def _search_fields(task: Dict[str, Any]) -> Iterable[str]:
    yield task.get("title") or ""
    yield task.get("description") or ""
    yield from (str(tag) for tag in task.get("tags") or [])
    yield task.get("category") or ""


SORT_KEYS = {
    "title": lambda t: (t.get("title") or "").lower(),
    "dueDate": lambda t: BaseService.day_key(t.get("dueDate")) or NO_DUE_DATE,
    "priority": lambda t: PRIORITY_RANK.get(t.get("priority"), 2),
    "createdAt": lambda t: t.get("createdAt") or "",
    "status": lambda t: 1 if t.get("status") == "completed" else 0,
}


class TaskService(BaseService):
    """
    Filtered and sorted task lists plus overdue / due-soon detection.

    Usage:
        service = TaskService()
        visible = service.filter_tasks(tasks, search="report", status="pending", sort_by="priority")
        due = service.find_due_tasks(tasks, reminder_minutes=30)
    """

    # =========================================================================
    # FILTERING
    # =========================================================================

    def filter_tasks(
        self,
        tasks: List[Dict[str, Any]],
        search: Optional[str] = None,
        status: str = "all",
        priority: Optional[str] = None,
        category: Optional[str] = None,
        date_range: Optional[Tuple[Optional[str], Optional[str]]] = None,
        tags: Optional[List[str]] = None,
        sort_by: str = "dueDate",
        sort_order: str = "asc",
        today: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        """
        Tasks matching every given filter, sorted.

        Args:
            tasks: Task records
            search: Case-insensitive substring; blank keeps everything
            status: "all", "pending" (not completed), "completed" or
                "overdue" (not completed and dueDate before today)
            priority: Exact priority, None for any
            category: Exact category, None for any
            date_range: Inclusive (start, end) dueDate bounds, either may be
                None; tasks without a dueDate are excluded
            tags: Tags a task must all carry
            sort_by: One of SORT_FIELDS; anything else sorts by createdAt
            sort_order: "asc" or "desc"
            today: Reference day for "overdue"

        Returns:
            New list; the input is not modified
        """
        if status not in STATUS_FILTERS:
            raise ValueError(f"Unknown status filter: {status}")
        if sort_order not in SORT_ORDERS:
            raise ValueError(f"Unknown sort order: {sort_order}")

        term = (search or "").strip().lower()
        today_key = self.resolve_today(today).isoformat()
        start, end = date_range or (None, None)
        start, end = self.day_key(start), self.day_key(end)
        wanted_tags = list(tags or [])

        def _matches(task: Dict[str, Any]) -> bool:
            if term and not any(term in text.lower() for text in _search_fields(task)):
                return False

            if priority and task.get("priority") != priority:
                return False

            completed = task.get("status") == "completed"
            due = self.day_key(task.get("dueDate"))
            if status == "completed" and not completed:
                return False
            if status == "pending" and completed:
                return False
            if status == "overdue" and (completed or not due or due >= today_key):
                return False

            if category and task.get("category") != category:
                return False

            if start or end:
                if not due:
                    return False
                if start and due < start:
                    return False
                if end and due > end:
                    return False

            if wanted_tags:
                task_tags = task.get("tags") or []
                if not all(tag in task_tags for tag in wanted_tags):
                    return False
            return True

        return self.sort_tasks([t for t in tasks if _matches(t)], sort_by, sort_order)

    def sort_tasks(
        self,
        tasks: List[Dict[str, Any]],
        sort_by: str = "dueDate",
        sort_order: str = "asc",
    ) -> List[Dict[str, Any]]:
        """Stable sort; ties keep their input order in both directions."""
        key = SORT_KEYS.get(sort_by, SORT_KEYS["createdAt"])
        return sorted(tasks, key=key, reverse=(sort_order == "desc"))

    # =========================================================================
    # DUE DETECTION
    # =========================================================================

    @staticmethod
    def due_instant(task: Dict[str, Any]) -> Optional[datetime]:
        """Local due time of a task, or None when it has no usable dueDate."""
        due_date = BaseService.day_key(task.get("dueDate"))
        if not due_date:
            return None
        due_time = (task.get("dueTime") or "00:00")[:5]
        try:
            return datetime.fromisoformat(f"{due_date}T{due_time}")
        except ValueError:
            return None

    def find_due_tasks(
        self,
        tasks: List[Dict[str, Any]],
        now: Optional[datetime] = None,
        reminder_minutes: int = DEFAULT_REMINDER_MINUTES,
    ) -> Dict[str, List[Dict[str, Any]]]:
        """
        Open tasks that need an overdue or a due-soon notice.

        A task is overdue once its due instant has passed and it has not
        been flagged ``notifiedOverdue``. It is due soon when the instant
        lies within ``reminder_minutes`` and it has not been flagged
        ``notifiedReminder``. Completed tasks and tasks without a dueDate
        are never reported.

        Returns:
            {"overdue": [...], "dueSoon": [...]}
        """
        current = self.local_now(now)
        window = timedelta(minutes=reminder_minutes)
        overdue: List[Dict[str, Any]] = []
        due_soon: List[Dict[str, Any]] = []

        for task in tasks:
            if task.get("status") == "completed":
                continue
            due = self.due_instant(task)
            if due is None:
                continue

            remaining = due - current
            if remaining < timedelta(0):
                if not task.get("notifiedOverdue"):
                    overdue.append(task)
            elif timedelta(0) < remaining <= window and not task.get("notifiedReminder"):
                due_soon.append(task)

        if overdue or due_soon:
            self.logger.info(f"{len(overdue)} overdue, {len(due_soon)} due within {reminder_minutes} min")
        return {"overdue": overdue, "dueSoon": due_soon}
