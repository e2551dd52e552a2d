from planner_core.data.records import (
    TASKS,
    EXPENSES,
    SETTINGS,
    STATISTICS,
    COLLECTIONS,
    TEMP_ID_PREFIX,
    normalize_task,
    normalize_expense,
    validate_task,
    validate_expense,
    generate_temporary_id,
    is_temporary_id,
    now_iso,
)

__all__ = [
    "TASKS",
    "EXPENSES",
    "SETTINGS",
    "STATISTICS",
    "COLLECTIONS",
    "TEMP_ID_PREFIX",
    "normalize_task",
    "normalize_expense",
    "validate_task",
    "validate_expense",
    "generate_temporary_id",
    "is_temporary_id",
    "now_iso",
]
