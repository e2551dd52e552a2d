# =============================================================================
# tests/unit/test_statistics_service.py
# Unit Tests for StatisticsService
# =============================================================================

from datetime import date, datetime, timedelta, timezone

import pytest

from conftest import iso
from planner_core.services import StatisticsService

TODAY = date(2024, 3, 15)


class TestPeriodFiltering:
    """Period membership is decided by createdAt"""

    def test_week_excludes_old_tasks(self, sample_tasks, now):
        df = StatisticsService().get_tasks_for_period(sample_tasks, "week", now=now)
        assert sorted(df["id"].tolist()) == [1, 2, 3, 4, 5, 6]

    def test_all_includes_everything(self, sample_tasks, now):
        df = StatisticsService().get_tasks_for_period(sample_tasks, "all", now=now)
        assert len(df) == 7

    def test_unknown_period_raises(self, sample_tasks):
        with pytest.raises(ValueError):
            StatisticsService().get_tasks_for_period(sample_tasks, "decade")


class TestCompletionStats:
    """Completed / pending / overdue counts"""

    def test_week(self, sample_tasks, now):
        stats = StatisticsService().get_completion_stats(sample_tasks, "week", today=TODAY, now=now)
        assert stats == {"completed": 3, "pending": 1, "overdue": 2, "total": 6}

    def test_all(self, sample_tasks, now):
        stats = StatisticsService().get_completion_stats(sample_tasks, "all", today=TODAY, now=now)
        assert stats == {"completed": 3, "pending": 1, "overdue": 3, "total": 7}

    def test_due_today_yesterday_next_week(self, now):
        created = iso(now - timedelta(hours=1))
        tasks = [
            {"id": 1, "title": "Today", "status": "pending", "dueDate": "2024-03-15", "createdAt": created},
            {"id": 2, "title": "Yesterday", "status": "pending", "dueDate": "2024-03-14", "createdAt": created},
            {"id": 3, "title": "Next week", "status": "completed", "dueDate": "2024-03-22",
             "createdAt": created, "completedAt": created},
        ]

        stats = StatisticsService().get_completion_stats(tasks, "week", today=TODAY, now=now)
        assert stats == {"completed": 1, "pending": 1, "overdue": 1, "total": 3}

    def test_empty(self):
        stats = StatisticsService().get_completion_stats([], "week", today=TODAY)
        assert stats == {"completed": 0, "pending": 0, "overdue": 0, "total": 0}

    def test_task_statistics(self, sample_tasks):
        stats = StatisticsService().get_task_statistics(sample_tasks, today=TODAY)

        assert stats["total"] == 7
        assert stats["completionRate"] == 42.9
        assert stats["categories"] == 3
        assert stats["totalTimeSpent"] == 630


class TestDistributions:
    """Category, priority and time breakdowns"""

    def test_category_distribution(self, sample_tasks, now):
        dist = StatisticsService().get_category_distribution(sample_tasks, "week", now=now)
        assert dist == {"labels": ["Work", "Personal"], "data": [3, 3]}

    def test_category_distribution_empty(self):
        assert StatisticsService().get_category_distribution([], "week") == {"labels": [], "data": []}

    def test_priority_distribution(self, sample_tasks, now):
        dist = StatisticsService().get_priority_distribution(sample_tasks, "week", now=now)
        assert dist == {
            "high": {"active": 1, "completed": 1},
            "medium": {"active": 1, "completed": 1},
            "low": {"active": 1, "completed": 1},
        }

    def test_time_by_category(self, sample_tasks, now):
        rows = StatisticsService().get_time_by_category(sample_tasks, "week", now=now)
        assert rows == [
            {"category": "work", "minutes": 270, "percentage": 43},
            {"category": "personal", "minutes": 360, "percentage": 57},
        ]

    def test_daily_progress(self, sample_tasks):
        progress = StatisticsService().get_daily_progress(sample_tasks, "week", today=TODAY)

        assert progress["dates"][0] == "2024-03-09"
        assert progress["dates"][-1] == "2024-03-15"
        assert progress["labels"][-1] == "Fri"
        assert progress["completed"] == [0, 0, 1, 0, 1, 0, 1]
        assert progress["created"] == [0, 1, 1, 1, 1, 1, 1]


class TestAchievementsAndInsights:
    """Achievements and text insights"""

    def test_achievements(self, sample_tasks):
        earned = {
            a["title"] for a in StatisticsService().calculate_achievements(sample_tasks) if a["earned"]
        }
        assert earned == {"First Steps", "Getting Started"}

    def test_longest_streak(self):
        start = datetime(2024, 3, 1, 10, tzinfo=timezone.utc)
        days = [start + timedelta(days=i) for i in range(7)] + [start + timedelta(days=9)]
        tasks = [
            {"id": i, "title": "t", "status": "completed", "createdAt": iso(d), "completedAt": iso(d)}
            for i, d in enumerate(days)
        ]
        # Two completions on the same day count once
        tasks.append({"id": 99, "title": "t", "status": "completed",
                      "createdAt": iso(start), "completedAt": iso(start + timedelta(hours=3))})

        service = StatisticsService()
        achievements = {a["title"]: a["earned"] for a in service.calculate_achievements(tasks)}

        assert achievements["Streak Master"] is True
        assert achievements["Early Bird"] is True
        assert achievements["Task Master"] is False

    def test_insights(self, sample_tasks, now):
        insights = StatisticsService().get_productivity_insights(sample_tasks, "week", today=TODAY, now=now)

        assert [i["type"] for i in insights] == ["info", "warning"]
        assert "50%" in insights[0]["message"]
        assert "2 overdue tasks" in insights[1]["message"]

    def test_export_statistics(self, sample_tasks):
        result = StatisticsService().export_statistics(sample_tasks, "month")

        assert result.success
        assert result.data["period"] == "month"
        assert {"completionStats", "dailyProgress", "categoryData", "achievements"} <= set(result.data)

    def test_export_with_bad_period_fails_softly(self, sample_tasks):
        result = StatisticsService().export_statistics(sample_tasks, "decade")

        assert not result
        assert "decade" in result.error
