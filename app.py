from __future__ import annotations
import json
from datetime import date

import pandas as pd
import plotly.express as px
import streamlit as st

from planner_core.data.records import PRIORITIES
from planner_core.errors import RecordValidationError
from planner_core.errors.handlers import ErrorContext, error_boundary, handle_error, safe_execute
from planner_core.ui.runtime import PlannerRuntime, get_runtime

# ============================================================================
# PAGE CONFIGURATION
# ============================================================================
st.set_page_config(
    page_title="PlannerPro",
    page_icon="🗓️",
    layout="wide",
)

TASK_CATEGORIES = ["personal", "work", "health", "education", "shopping"]
EXPENSE_CATEGORIES = ["food", "transport", "shopping", "bills", "health", "entertainment", "other"]


# ============================================================================
# SIDEBAR - connection & sync status
# ============================================================================
def render_sidebar(runtime: PlannerRuntime) -> None:
    service = runtime.context.data_service
    status = service.get_status()

    with st.sidebar:
        st.title("🗓️ PlannerPro")
        if status["degraded"]:
            st.error("Local storage unavailable - changes last for this session only")
        if status["is_online"]:
            st.success("Online")
        else:
            st.warning("Offline - changes are queued")

        st.caption(f"Storage backend: {status['backend']}")
        st.metric("Pending sync", status["pending_sync"])

        if st.button("Sync now", use_container_width=True):
            report = safe_execute(runtime.run, service.sync_now(), error_message="Sync failed")
            if report is not None and not report.halted:
                st.toast(f"Synced {report.applied} operations")
            elif report is not None:
                st.toast(f"Sync stopped: {report.error}")

        last_sync = status["sync"]["last_success"]
        st.caption(f"Last successful sync: {last_sync or 'never'}")

        due = safe_execute(runtime.run, service.check_due_tasks(), default=None)
        if due:
            for task in due["overdue"]:
                st.toast(f"Overdue: {task['title']}")
            for task in due["dueSoon"]:
                st.toast(f"Due soon: {task['title']}")


# ============================================================================
# TASKS
# ============================================================================
@error_boundary(error_message="Could not render tasks")
def render_tasks(runtime: PlannerRuntime) -> None:
    service = runtime.context.data_service

    with st.form("new_task", clear_on_submit=True):
        st.subheader("New task")
        title = st.text_input("Title")
        description = st.text_area("Description")
        col1, col2, col3 = st.columns(3)
        due = col1.date_input("Due date", value=None)
        priority = col2.selectbox("Priority", PRIORITIES, index=1)
        category = col3.selectbox("Category", TASK_CATEGORIES)
        if st.form_submit_button("Add task"):
            task = {
                "title": title,
                "description": description,
                "dueDate": due.isoformat() if due else None,
                "priority": priority,
                "category": category,
            }
            try:
                runtime.run(service.save_task(task))
                st.success("Task saved")
            except RecordValidationError as e:
                handle_error(e)

    tasks = runtime.run(service.get_all_tasks())
    if not tasks:
        st.info("No tasks yet")
        return

    col1, col2, col3, col4 = st.columns(4)
    search = col1.text_input("Search tasks")
    status_filter = col2.selectbox("Status", ["all", "pending", "completed", "overdue"])
    priority_filter = col3.selectbox("Priority filter", ["any", *PRIORITIES])
    sort_by = col4.selectbox("Sort by", ["dueDate", "priority", "title", "createdAt", "status"])
    tasks = runtime.context.tasks.filter_tasks(
        tasks,
        search=search,
        status=status_filter,
        priority=None if priority_filter == "any" else priority_filter,
        sort_by=sort_by,
        sort_order="desc" if sort_by == "priority" else "asc",
    )
    if not tasks:
        st.info("No matching tasks")
        return

    for task in tasks:
        col1, col2, col3 = st.columns([6, 1, 1])
        done = task.get("status") == "completed"
        label = f"~~{task['title']}~~" if done else task["title"]
        col1.markdown(f"{label}  \n`{task.get('category')}` · {task.get('priority')} · due {task.get('dueDate') or '-'}")
        if col2.button("Undo" if done else "Done", key=f"toggle_{task['id']}"):
            with ErrorContext("Updating task"):
                runtime.run(service.save_task({**task, "status": "pending" if done else "completed"}))
                st.rerun()
        if col3.button("Delete", key=f"delete_{task['id']}"):
            with ErrorContext("Deleting task"):
                runtime.run(service.delete_task(task["id"]))
                st.rerun()


# ============================================================================
# EXPENSES
# ============================================================================
@error_boundary(error_message="Could not render expenses")
def render_expenses(runtime: PlannerRuntime) -> None:
    service = runtime.context.data_service
    expense_service = runtime.context.expenses

    with st.form("new_expense", clear_on_submit=True):
        st.subheader("New expense")
        col1, col2 = st.columns(2)
        description = col1.text_input("Description")
        amount = col2.number_input("Amount", min_value=0.0, step=0.01)
        col3, col4 = st.columns(2)
        category = col3.selectbox("Category", EXPENSE_CATEGORIES)
        spent_on = col4.date_input("Date", value=date.today())
        if st.form_submit_button("Add expense"):
            expense = {
                "description": description,
                "amount": amount,
                "category": category,
                "date": spent_on.isoformat(),
            }
            try:
                runtime.run(service.save_expense(expense))
                st.success("Expense saved")
            except RecordValidationError as e:
                handle_error(e)

    expenses = runtime.run(service.get_all_expenses())
    summary = expense_service.get_spending_summary(expenses)
    col1, col2, col3 = st.columns(3)
    col1.metric("Today", f"${summary['today']:.2f}")
    col2.metric("This week", f"${summary['week']:.2f}")
    col3.metric("This month", f"${summary['month']:.2f}")

    search = st.text_input("Search expenses")
    time_range = st.selectbox("Time range", ["all", "today", "week", "month", "year"])
    visible = expense_service.filter_expenses(expenses, search=search, time_range=time_range)
    if visible:
        st.dataframe(
            pd.DataFrame(visible).reindex(columns=["date", "description", "category", "amount", "currency"]),
            use_container_width=True,
            hide_index=True,
        )
    else:
        st.info("No matching expenses")


# ============================================================================
# STATISTICS
# ============================================================================
@error_boundary(error_message="Could not render statistics")
def render_statistics(runtime: PlannerRuntime) -> None:
    service = runtime.context.data_service
    stats_service = runtime.context.statistics

    period = st.radio("Period", ["week", "month", "year", "all"], horizontal=True)
    tasks = runtime.run(service.get_all_tasks())

    stats = stats_service.get_completion_stats(tasks, period)
    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Completed", stats["completed"])
    col2.metric("Pending", stats["pending"])
    col3.metric("Overdue", stats["overdue"])
    col4.metric("Total", stats["total"])

    distribution = stats_service.get_category_distribution(tasks, period)
    if distribution["data"]:
        fig = px.pie(
            names=distribution["labels"],
            values=distribution["data"],
            title="Tasks by category",
            hole=0.4,
        )
        st.plotly_chart(fig, use_container_width=True)

    for insight in stats_service.get_productivity_insights(tasks, period):
        show = {"success": st.success, "warning": st.warning}.get(insight["type"], st.info)
        show(insight["message"])

    earned = [a for a in stats_service.calculate_achievements(tasks) if a["earned"]]
    if earned:
        st.caption("Achievements: " + ", ".join(a["title"] for a in earned))


# ============================================================================
# DATA MANAGEMENT
# ============================================================================
@error_boundary(error_message="Could not render data tools")
def render_data(runtime: PlannerRuntime) -> None:
    service = runtime.context.data_service

    st.subheader("Export")
    if st.button("Prepare export"):
        data = runtime.run(service.export_data())
        st.download_button(
            "Download JSON",
            data=json.dumps(data, indent=2),
            file_name=f"plannerpro-export-{date.today().isoformat()}.json",
            mime="application/json",
        )

    st.subheader("Import")
    uploaded = st.file_uploader("Export file", type=["json"])
    if uploaded is not None and st.button("Import data"):
        with ErrorContext("Importing data", show_success=True):
            runtime.run(service.import_data(json.loads(uploaded.getvalue())))

    st.subheader("Storage")
    st.json(runtime.run(service.get_storage_info()))

    st.subheader("Danger zone")
    if st.checkbox("I understand this deletes every task, expense and setting"):
        if st.button("Clear all data", type="primary"):
            with ErrorContext("Clearing data", show_success=True):
                runtime.run(service.clear_all())


# ============================================================================
# MAIN
# ============================================================================
runtime = get_runtime()
render_sidebar(runtime)

tasks_tab, expenses_tab, stats_tab, data_tab = st.tabs(["Tasks", "Expenses", "Statistics", "Data"])
with tasks_tab:
    render_tasks(runtime)
with expenses_tab:
    render_expenses(runtime)
with stats_tab:
    render_statistics(runtime)
with data_tab:
    render_data(runtime)
