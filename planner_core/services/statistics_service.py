# =============================================================================
# planner_core/services/statistics_service.py
# Task Statistics, Achievements and Insights
# =============================================================================
"""
StatisticsService - productivity metrics computed from task records.

Period membership ("week", "month", "year", "all") is decided by a task's
``createdAt``. Overdue classification compares ``dueDate`` with today.
Daily progress counts completions by ``completedAt`` and creations by
``createdAt``.
"""

from __future__ import annotations
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

import pandas as pd

from planner_core.services.base_service import BaseService, ServiceResult

PERIODS = ("week", "month", "year", "all")
PERIOD_DAYS = {"week": 7, "month": 30, "year": 365, "all": 365}

ACHIEVEMENT_CATEGORIES = ("work", "personal", "health", "education", "shopping")

TASK_COLUMNS = [
    "id", "title", "status", "priority", "category",
    "dueDate", "createdAt", "completedAt", "timeSpent",
]


def tasks_frame(tasks: List[Dict[str, Any]]) -> pd.DataFrame:
    """Tasks as a DataFrame with every expected column and parsed timestamps."""
    df = pd.DataFrame(list(tasks)).reindex(columns=TASK_COLUMNS)
    df["created_ts"] = pd.to_datetime(df["createdAt"], errors="coerce", utc=True, format="ISO8601")
    df["completed_ts"] = pd.to_datetime(df["completedAt"], errors="coerce", utc=True, format="ISO8601")
    df["timeSpent"] = pd.to_numeric(df["timeSpent"], errors="coerce").fillna(0)
    return df


def _date_part(series: pd.Series) -> pd.Series:
    """YYYY-MM-DD prefix of ISO strings (None stays missing)."""
    return series.where(series.notna()).astype("string").str.slice(0, 10)


class StatisticsService(BaseService):
    """
    Productivity statistics over a list of task dictionaries.

    Usage:
        service = StatisticsService()
        stats = service.get_completion_stats(tasks, period="week")
        report = service.export_statistics(tasks)
    """

    # =========================================================================
    # PERIOD FILTERING
    # =========================================================================

    def get_tasks_for_period(
        self,
        tasks: List[Dict[str, Any]],
        period: str = "week",
        now: Optional[datetime] = None,
    ) -> pd.DataFrame:
        """Tasks created within the period, as a DataFrame."""
        if period not in PERIODS:
            raise ValueError(f"Unknown period: {period}")

        df = tasks_frame(tasks)
        if period == "all" or df.empty:
            return df

        current = self.resolve_now(now)

        if period == "week":
            start = current - pd.Timedelta(days=7)
        elif period == "month":
            start = current - pd.DateOffset(months=1)
        else:
            start = current - pd.DateOffset(years=1)

        return df[df["created_ts"] >= start]

    # =========================================================================
    # DISTRIBUTIONS
    # =========================================================================

    def get_completion_stats(
        self,
        tasks: List[Dict[str, Any]],
        period: str = "week",
        today: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, int]:
        """
        Completed / pending / overdue counts for the period.

        A task is overdue when it is not completed and its dueDate is
        before today.
        """
        df = self.get_tasks_for_period(tasks, period, now)
        today_str = self.resolve_today(today).isoformat()

        completed = df["status"] == "completed"
        due = _date_part(df["dueDate"])
        overdue = ~completed & due.notna() & (due < today_str).fillna(False)

        return {
            "completed": int(completed.sum()),
            "pending": int((~completed & ~overdue).sum()),
            "overdue": int(overdue.sum()),
            "total": int(len(df)),
        }

    def get_daily_progress(
        self,
        tasks: List[Dict[str, Any]],
        period: str = "week",
        today: Optional[date] = None,
    ) -> Dict[str, List[Any]]:
        """Per-day counts of completed and created tasks, oldest day first."""
        days = PERIOD_DAYS.get(period, 7)
        end = self.resolve_today(today)
        dates = [end - timedelta(days=i) for i in range(days - 1, -1, -1)]

        df = tasks_frame(tasks)
        completed_counts = _date_part(df["completedAt"]).value_counts()
        created_counts = _date_part(df["createdAt"]).value_counts()

        if period == "week":
            labels = [d.strftime("%a") for d in dates]
        elif period == "month":
            labels = [str(d.day) for d in dates]
        else:
            labels = [d.strftime("%b") for d in dates]

        keys = [d.isoformat() for d in dates]
        return {
            "labels": labels,
            "dates": keys,
            "completed": [int(completed_counts.get(k, 0)) for k in keys],
            "created": [int(created_counts.get(k, 0)) for k in keys],
        }

    def get_category_distribution(
        self,
        tasks: List[Dict[str, Any]],
        period: str = "week",
        now: Optional[datetime] = None,
    ) -> Dict[str, List[Any]]:
        df = self.get_tasks_for_period(tasks, period, now)
        if df.empty:
            return {"labels": [], "data": []}

        categories = df["category"].fillna("uncategorized")
        counts = categories.groupby(categories, sort=False).size()
        return {
            "labels": [str(c).capitalize() for c in counts.index],
            "data": [int(v) for v in counts.values],
        }

    def get_priority_distribution(
        self,
        tasks: List[Dict[str, Any]],
        period: str = "week",
        now: Optional[datetime] = None,
    ) -> Dict[str, Dict[str, int]]:
        """Active and completed counts per priority."""
        df = self.get_tasks_for_period(tasks, period, now)
        result = {p: {"active": 0, "completed": 0} for p in ("high", "medium", "low")}

        priorities = df["priority"].where(df["priority"].isin(list(result)), "medium")
        for priority, status in zip(priorities, df["status"]):
            key = "completed" if status == "completed" else "active"
            result[priority][key] += 1
        return result

    def get_time_by_category(
        self,
        tasks: List[Dict[str, Any]],
        period: str = "week",
        now: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """Minutes of tracked time per category with its share of the total."""
        df = self.get_tasks_for_period(tasks, period, now)
        if df.empty:
            return []

        minutes = df.groupby(df["category"].fillna("uncategorized"), sort=False)["timeSpent"].sum()
        total = minutes.sum()
        return [
            {
                "category": category,
                "minutes": int(value),
                "percentage": int(round(value / total * 100)) if total > 0 else 0,
            }
            for category, value in minutes.items()
        ]

    def get_task_statistics(self, tasks: List[Dict[str, Any]], today: Optional[date] = None) -> Dict[str, Any]:
        """Overall totals across every task."""
        stats = self.get_completion_stats(tasks, period="all", today=today)
        df = tasks_frame(tasks)
        total = stats["total"]
        return {
            **stats,
            "completionRate": round(stats["completed"] / total * 100, 1) if total else 0.0,
            "categories": int(df["category"].dropna().nunique()),
            "totalTimeSpent": int(df["timeSpent"].sum()),
        }

    # =========================================================================
    # ACHIEVEMENTS & INSIGHTS
    # =========================================================================

    def calculate_achievements(self, tasks: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        df = tasks_frame(tasks)
        total = len(df)
        completed = int((df["status"] == "completed").sum())
        completion_rate = completed / total * 100 if total else 0

        return [
            {"title": "First Steps", "description": "Create your first task",
             "icon": "target", "earned": total > 0},
            {"title": "Getting Started", "description": "Complete your first task",
             "icon": "check-circle", "earned": completed > 0},
            {"title": "Task Master", "description": "Complete 10 tasks",
             "icon": "award", "earned": completed >= 10},
            {"title": "Productivity Pro", "description": "Complete 50 tasks",
             "icon": "star", "earned": completed >= 50},
            {"title": "Perfectionist", "description": "100% completion rate",
             "icon": "zap", "earned": completion_rate == 100 and total >= 5},
            {"title": "Streak Master", "description": "Complete tasks 7 days in a row",
             "icon": "trending-up", "earned": self.longest_streak(df) >= 7},
            {"title": "Category Explorer", "description": "Use all task categories",
             "icon": "grid", "earned": set(ACHIEVEMENT_CATEGORIES) <= set(df["category"].dropna())},
            {"title": "Early Bird", "description": "Complete 5 tasks before noon",
             "icon": "sunrise", "earned": int((df["completed_ts"].dt.hour < 12).sum()) >= 5},
        ]

    @staticmethod
    def longest_streak(df: pd.DataFrame) -> int:
        """Longest run of consecutive days with at least one completion."""
        done = df[(df["status"] == "completed") & df["completed_ts"].notna()]
        if done.empty:
            return 0

        days = done["completed_ts"].dt.normalize().drop_duplicates().sort_values()
        gaps = days.diff().dt.days.fillna(1) != 1
        runs = gaps.cumsum()
        return int(runs.value_counts().max())

    def get_productivity_insights(
        self,
        tasks: List[Dict[str, Any]],
        period: str = "week",
        today: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> List[Dict[str, str]]:
        stats = self.get_completion_stats(tasks, period, today=today, now=now)
        insights = []

        rate = round(stats["completed"] / stats["total"] * 100) if stats["total"] else 0
        if rate >= 80:
            insights.append({"type": "success", "message": f"Excellent! You have a {rate}% completion rate."})
        elif rate >= 60:
            insights.append({
                "type": "warning",
                "message": f"Good progress! Your completion rate is {rate}%. Try to aim for 80%+.",
            })
        else:
            insights.append({
                "type": "info",
                "message": f"Your completion rate is {rate}%. Consider breaking large tasks into smaller ones.",
            })

        if stats["overdue"] > 0:
            plural = "s" if stats["overdue"] > 1 else ""
            insights.append({
                "type": "warning",
                "message": f"You have {stats['overdue']} overdue task{plural}. Consider rescheduling or completing them.",
            })

        daily = self.get_daily_progress(tasks, period, today=today)
        average = sum(daily["completed"]) / len(daily["completed"]) if daily["completed"] else 0
        if average >= 3:
            insights.append({
                "type": "success",
                "message": f"Great productivity! You complete an average of {average:.1f} tasks per day.",
            })

        return insights

    # =========================================================================
    # EXPORT
    # =========================================================================

    def export_statistics(self, tasks: List[Dict[str, Any]], period: str = "week") -> ServiceResult:
        """Every metric for the period in one document."""
        return self.safe_execute("Exporting statistics", self._build_export, tasks, period)

    def _build_export(self, tasks: List[Dict[str, Any]], period: str) -> Dict[str, Any]:
        return {
            "period": period,
            "completionStats": self.get_completion_stats(tasks, period),
            "dailyProgress": self.get_daily_progress(tasks, period),
            "categoryData": self.get_category_distribution(tasks, period),
            "priorityData": self.get_priority_distribution(tasks, period),
            "timeByCategory": self.get_time_by_category(tasks, period),
            "achievements": self.calculate_achievements(tasks),
            "exportDate": datetime.now().isoformat(),
        }
