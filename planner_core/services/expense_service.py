# =============================================================================
# planner_core/services/expense_service.py
# Expense Summaries and Filters
# =============================================================================

from __future__ import annotations
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

import pandas as pd

from planner_core.services.base_service import BaseService, ServiceResult

TIME_RANGES = ("all", "today", "week", "month", "year")


def expenses_frame(expenses: List[Dict[str, Any]]) -> pd.DataFrame:
    """Expenses as a DataFrame with numeric amounts and a YYYY-MM-DD ``day`` column."""
    df = pd.DataFrame(list(expenses)).reindex(columns=["id", "description", "amount", "category", "date"])
    df["amount"] = pd.to_numeric(df["amount"], errors="coerce").fillna(0.0)
    df["day"] = df["date"].where(df["date"].notna()).astype("string").str.slice(0, 10)
    return df


class ExpenseService(BaseService):
    """
    Spending summaries over a list of expense dictionaries.

    Usage:
        service = ExpenseService()
        summary = service.get_spending_summary(expenses)
        visible = service.filter_expenses(expenses, search="coffee", time_range="week")
    """

    def get_spending_summary(
        self,
        expenses: List[Dict[str, Any]],
        today: Optional[date] = None,
    ) -> Dict[str, float]:
        """Spending today, since Sunday and since the first of the month."""
        today = self.resolve_today(today)
        week_start = today - timedelta(days=(today.weekday() + 1) % 7)
        month_start = today.replace(day=1)

        df = expenses_frame(expenses)
        day = df["day"]

        def _total(mask: pd.Series) -> float:
            return round(float(df.loc[mask.fillna(False).astype(bool), "amount"].sum()), 2)

        return {
            "today": _total(day == today.isoformat()),
            "week": _total(day >= week_start.isoformat()),
            "month": _total(day >= month_start.isoformat()),
        }

    def get_category_spending(self, expenses: List[Dict[str, Any]]) -> Dict[str, float]:
        df = expenses_frame(expenses)
        if df.empty:
            return {}
        totals = df.groupby(df["category"].fillna("other"), sort=False)["amount"].sum()
        return {str(k): round(float(v), 2) for k, v in totals.items()}

    def get_expense_statistics(self, expenses: List[Dict[str, Any]]) -> Dict[str, Any]:
        df = expenses_frame(expenses)
        total = round(float(df["amount"].sum()), 2)
        by_category = self.get_category_spending(expenses)

        top = None
        if by_category:
            category = max(by_category, key=by_category.get)
            top = {"category": category, "amount": by_category[category]}

        return {
            "totalExpenses": int(len(df)),
            "totalAmount": total,
            "averageExpense": round(total / len(df), 2) if len(df) else 0.0,
            "categoriesUsed": len(by_category),
            "mostExpensiveCategory": top,
        }

    def filter_expenses(
        self,
        expenses: List[Dict[str, Any]],
        search: Optional[str] = None,
        category: Optional[str] = None,
        time_range: str = "all",
        today: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        """
        Expenses matching a search term, a category and a time range.

        The search term is matched case-insensitively against description,
        notes, location and tags.
        """
        if time_range not in TIME_RANGES:
            raise ValueError(f"Unknown time range: {time_range}")
        today = self.resolve_today(today)
        term = (search or "").strip().lower()

        def _matches(expense: Dict[str, Any]) -> bool:
            if term:
                haystack = [
                    expense.get("description") or "",
                    expense.get("notes") or "",
                    expense.get("location") or "",
                    *(expense.get("tags") or []),
                ]
                if not any(term in str(text).lower() for text in haystack):
                    return False

            if category and expense.get("category") != category:
                return False

            if time_range != "all":
                day = self.day_key(expense.get("date"))
                if not day:
                    return False
                if time_range == "today" and day != today.isoformat():
                    return False
                if time_range == "week" and day < (today - timedelta(days=7)).isoformat():
                    return False
                if time_range == "month" and day[:7] != today.isoformat()[:7]:
                    return False
                if time_range == "year" and day[:4] != today.isoformat()[:4]:
                    return False
            return True

        return [e for e in expenses if _matches(e)]

    def build_report(self, expenses: List[Dict[str, Any]]) -> ServiceResult:
        """Summary, per-category totals and statistics in one result."""
        return self.safe_execute(
            "Building expense report",
            lambda: {
                "summary": self.get_spending_summary(expenses),
                "byCategory": self.get_category_spending(expenses),
                "statistics": self.get_expense_statistics(expenses),
            },
        )
