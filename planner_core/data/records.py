# =============================================================================
# planner_core/data/records.py
# Record helpers: defaults, validation and identifiers
# =============================================================================
"""
Records are plain JSON dictionaries keyed by ``id``. This module owns the
shape of tasks and expenses at the facade boundary: defaults are filled in
by the ``normalize_*`` helpers and ``validate_*`` raises
RecordValidationError before anything reaches a store.
"""

from __future__ import annotations
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from planner_core.errors import RecordValidationError

# Collections
TASKS = "tasks"
EXPENSES = "expenses"
SETTINGS = "settings"
STATISTICS = "statistics"
COLLECTIONS = (TASKS, SETTINGS, STATISTICS, EXPENSES)

TEMP_ID_PREFIX = "temp_"

PRIORITIES = ("low", "medium", "high")
STATUSES = ("pending", "completed")

MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 1000

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def generate_temporary_id() -> str:
    return f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"


def is_temporary_id(record_id: Any) -> bool:
    return isinstance(record_id, str) and record_id.startswith(TEMP_ID_PREFIX)


def record_key(record_id: Any) -> str:
    """Storage key for a record id (remote ids may be integers)."""
    return str(record_id)


# =============================================================================
# TASKS
# =============================================================================

def normalize_task(task: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``task`` with every expected field present."""
    now = now_iso()
    normalized = dict(task)
    normalized["title"] = (task.get("title") or "").strip()
    normalized["description"] = (task.get("description") or "").strip()
    normalized["dueDate"] = task.get("dueDate") or None
    normalized["dueTime"] = task.get("dueTime") or None
    normalized["priority"] = task.get("priority") or "medium"
    normalized["category"] = task.get("category") or "personal"
    normalized["status"] = task.get("status") or "pending"
    normalized["tags"] = list(task.get("tags") or [])
    normalized["createdAt"] = task.get("createdAt") or now
    normalized["updatedAt"] = now
    normalized["reminder"] = bool(task.get("reminder", False))
    normalized["timeSpent"] = task.get("timeSpent") or 0
    normalized["notifiedReminder"] = bool(task.get("notifiedReminder", False))
    normalized["notifiedOverdue"] = bool(task.get("notifiedOverdue", False))

    if normalized["status"] == "completed":
        normalized["completedAt"] = task.get("completedAt") or now
    else:
        normalized["completedAt"] = None

    return normalized


def validate_task(task: Any) -> None:
    """Raise RecordValidationError if ``task`` cannot be stored."""
    if not isinstance(task, dict):
        raise RecordValidationError("Task must be an object", collection=TASKS)

    title = task.get("title")
    if not isinstance(title, str) or not title.strip():
        raise RecordValidationError("Task title is required", field="title", collection=TASKS)
    if len(title.strip()) > MAX_TITLE_LENGTH:
        raise RecordValidationError(
            f"Task title is too long (max {MAX_TITLE_LENGTH} characters)",
            field="title",
            collection=TASKS,
        )

    description = task.get("description")
    if description is not None and not isinstance(description, str):
        raise RecordValidationError("Description must be text", field="description", collection=TASKS)
    if description and len(description) > MAX_DESCRIPTION_LENGTH:
        raise RecordValidationError(
            f"Task description is too long (max {MAX_DESCRIPTION_LENGTH} characters)",
            field="description",
            collection=TASKS,
        )

    priority = task.get("priority")
    if priority is not None and priority not in PRIORITIES:
        raise RecordValidationError(
            f"Priority must be one of {', '.join(PRIORITIES)}",
            field="priority",
            collection=TASKS,
        )

    status = task.get("status")
    if status is not None and status not in STATUSES:
        raise RecordValidationError(
            f"Status must be one of {', '.join(STATUSES)}",
            field="status",
            collection=TASKS,
        )

    due_date = task.get("dueDate")
    if due_date and not (isinstance(due_date, str) and _ISO_DATE.match(due_date)):
        raise RecordValidationError("Due date must be YYYY-MM-DD", field="dueDate", collection=TASKS)

    tags = task.get("tags")
    if tags is not None and (
        not isinstance(tags, list) or not all(isinstance(t, str) for t in tags)
    ):
        raise RecordValidationError("Tags must be a list of strings", field="tags", collection=TASKS)


# =============================================================================
# EXPENSES
# =============================================================================

def normalize_expense(expense: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``expense`` with every expected field present."""
    now = now_iso()
    normalized = dict(expense)
    normalized["description"] = (expense.get("description") or "").strip()
    normalized["amount"] = round(float(expense.get("amount") or 0), 2)
    normalized["currency"] = expense.get("currency") or "USD"
    normalized["category"] = expense.get("category")
    normalized["paymentMethod"] = expense.get("paymentMethod") or None
    normalized["date"] = expense.get("date")
    normalized["location"] = (expense.get("location") or "").strip()
    normalized["notes"] = (expense.get("notes") or "").strip()
    normalized["tags"] = list(expense.get("tags") or [])
    normalized["isRecurring"] = bool(expense.get("isRecurring", False))
    if normalized["isRecurring"]:
        normalized["recurringType"] = expense.get("recurringType") or "monthly"
    else:
        normalized["recurringType"] = None
    normalized["createdAt"] = expense.get("createdAt") or now
    normalized["updatedAt"] = now
    return normalized


def validate_expense(expense: Any) -> None:
    """Raise RecordValidationError if ``expense`` cannot be stored."""
    if not isinstance(expense, dict):
        raise RecordValidationError("Expense must be an object", collection=EXPENSES)

    description = expense.get("description")
    if not isinstance(description, str) or not description.strip():
        raise RecordValidationError(
            "Please enter a description", field="description", collection=EXPENSES
        )

    amount = expense.get("amount")
    if isinstance(amount, bool):
        amount = None
    try:
        amount_value: Optional[float] = float(amount) if amount is not None else None
    except (TypeError, ValueError):
        amount_value = None
    if amount_value is None or amount_value <= 0:
        raise RecordValidationError("Please enter a valid amount", field="amount", collection=EXPENSES)

    if not expense.get("category"):
        raise RecordValidationError("Please select a category", field="category", collection=EXPENSES)

    expense_date = expense.get("date")
    if not expense_date:
        raise RecordValidationError("Please select a date", field="date", collection=EXPENSES)
    if not (isinstance(expense_date, str) and _ISO_DATE.match(expense_date)):
        raise RecordValidationError("Date must be YYYY-MM-DD", field="date", collection=EXPENSES)


# =============================================================================
# SETTINGS / STATISTICS
# =============================================================================

def setting_record(key: str, value: Any) -> Dict[str, Any]:
    return {"id": key, "key": key, "value": value, "updatedAt": now_iso()}


def statistic_id(date: str, stat_type: str) -> str:
    return f"{date}:{stat_type}"


def statistic_record(date: str, stat_type: str, data: Any) -> Dict[str, Any]:
    return {
        "id": statistic_id(date, stat_type),
        "date": date,
        "type": stat_type,
        "data": data,
        "timestamp": now_iso(),
    }
