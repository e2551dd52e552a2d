# =============================================================================
# planner_core/services/__init__.py
# Service Layer for PlannerPro
# Separates computations from UI presentation
# =============================================================================
"""
Service Layer for PlannerPro

Services compute over plain record lists returned by the
UnifiedDataService; they never touch storage themselves.

Usage Example:
-------------
    from planner_core.services import StatisticsService, ExpenseService, TaskService

    tasks = await context.data_service.get_all_tasks()
    stats = StatisticsService().get_completion_stats(tasks, period="month")

    expenses = await context.data_service.get_all_expenses()
    summary = ExpenseService().get_spending_summary(expenses)

    visible = TaskService().filter_tasks(tasks, status="pending", sort_by="priority")
"""

from .base_service import BaseService, ServiceResult
from .statistics_service import StatisticsService
from .expense_service import ExpenseService
from .task_service import TaskService

__all__ = [
    "BaseService",
    "ServiceResult",
    "StatisticsService",
    "ExpenseService",
    "TaskService",
]
