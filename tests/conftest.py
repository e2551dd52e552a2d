# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import pytest
from datetime import datetime, timedelta, timezone
from typing import Any, Dict
from unittest.mock import MagicMock

from fakes import BASE_URL, FakePlannerAPI
from planner_core.config import PlannerConfig
from planner_core.offline.backends import MemoryKeyValueBackend
from planner_core.offline.context import build_context
from planner_core.offline.local_store import LocalStore


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================

def iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def make_task(**overrides: Any) -> Dict[str, Any]:
    """Task dictionary with sensible defaults"""
    task = {
        "title": "Write report",
        "description": "",
        "dueDate": None,
        "priority": "medium",
        "category": "work",
        "status": "pending",
    }
    task.update(overrides)
    return task


def make_expense(**overrides: Any) -> Dict[str, Any]:
    """Expense dictionary with sensible defaults"""
    expense = {
        "description": "Lunch",
        "amount": 12.5,
        "category": "food",
        "date": "2024-03-05",
    }
    expense.update(overrides)
    return expense


@pytest.fixture
def now():
    """Fixed 'now' used by the statistics tests"""
    return datetime(2024, 3, 15, 18, 0, tzinfo=timezone.utc)


@pytest.fixture
def sample_tasks(now):
    """A week of tasks with a mix of statuses, categories and due dates"""
    tasks = []
    for i in range(6):
        created = now - timedelta(days=i)
        completed = i % 2 == 0
        tasks.append({
            "id": i + 1,
            "title": f"Task {i + 1}",
            "status": "completed" if completed else "pending",
            "priority": ["high", "medium", "low"][i % 3],
            "category": ["work", "personal"][i % 2],
            "dueDate": (now.date() - timedelta(days=i - 2)).isoformat(),
            "createdAt": iso(created),
            "completedAt": iso(created.replace(hour=9)) if completed else None,
            "timeSpent": 30 * (i + 1),
        })
    # Created long ago, still pending and overdue
    tasks.append({
        "id": 99,
        "title": "Old task",
        "status": "pending",
        "priority": "high",
        "category": "health",
        "dueDate": "2023-01-01",
        "createdAt": "2023-01-01T08:00:00.000Z",
        "completedAt": None,
        "timeSpent": 0,
    })
    return tasks


@pytest.fixture
def sample_expenses():
    """Expenses spread across March 2024"""
    return [
        make_expense(id=1, description="Coffee", amount=3.5, category="food", date="2024-03-15"),
        make_expense(id=2, description="Train ticket", amount=20, category="transport", date="2024-03-12"),
        make_expense(id=3, description="Groceries", amount=54.25, category="food", date="2024-03-02",
                     notes="weekly shop", tags=["home"]),
        make_expense(id=4, description="Phone bill", amount=30, category="bills", date="2024-02-20"),
    ]


# =============================================================================
# STORAGE & API FIXTURES
# =============================================================================

@pytest.fixture
def config(tmp_path):
    """Configuration pointing at a temporary data directory and the fake API"""
    return PlannerConfig(
        api_base_url=BASE_URL,
        data_dir=tmp_path / "data",
        probe_timeout=5.0,
        request_timeout=2.0,
        health_timeout=2.0,
    )


@pytest.fixture
def fake_api():
    """In-process fake of the PlannerPro REST API"""
    return FakePlannerAPI()


@pytest.fixture
def memory_store():
    """LocalStore over the in-memory backend"""
    return LocalStore(MemoryKeyValueBackend())


@pytest.fixture
async def context(config, fake_api):
    """Fully wired AppContext talking to the fake API"""
    ctx = await build_context(
        config,
        transport=fake_api.transport(),
        reachability_probe=fake_api.probe,
    )
    await ctx.start(monitor=False)
    yield ctx
    await ctx.close()


# =============================================================================
# MOCK FIXTURES
# =============================================================================

@pytest.fixture
def mock_streamlit(monkeypatch):
    """Replace Streamlit in the UI error handlers with a MagicMock"""
    from planner_core.errors import handlers

    mock_st = MagicMock()
    mock_st.session_state = {}
    monkeypatch.setattr(handlers, "st", mock_st)
    return mock_st
