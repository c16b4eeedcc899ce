"""Status counts over a time range for pomodoros, tasks and plans."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import StrEnum
from typing import Any

from sqlalchemy import func, select

from taskflow.db.models import Plan, Pomodoro, Task
from taskflow.db.store import open_store
from taskflow.plans.types import PlanStatus, PomodoroStatus
from taskflow.utils.calendar import day_bounds_utc, local_day, month_start, next_month_start, utc_now, week_start


class TimeRange(StrEnum):
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    TOTAL = "total"


class DataKind(StrEnum):
    POMODORO = "pomodoro"
    TASK = "task"
    PLAN = "plan"


@dataclass(frozen=True)
class StatItem:
    label: str
    count: int


def day_range(time_range: TimeRange, today: date) -> tuple[date, date] | None:
    """Half-open [first, end) day range, or None for the unbounded total range."""
    if time_range == TimeRange.TODAY:
        return today, today + timedelta(days=1)
    if time_range == TimeRange.WEEK:
        first = week_start(today)
        return first, first + timedelta(days=7)
    if time_range == TimeRange.MONTH:
        return month_start(today), next_month_start(today)
    return None


def _grouped(column: Any, key: Any, *criteria: Any) -> dict[Any, int]:
    stmt = select(key, func.count(column)).group_by(key)
    if criteria:
        stmt = stmt.where(*criteria)
    with open_store() as store:
        rows = store.session.execute(stmt).all()
    return {value: count for value, count in rows}


def count_by_status(kind: DataKind | str, time_range: TimeRange | str, now: datetime | None = None) -> list[StatItem]:
    """Count records of one kind per status within the range.

    Pomodoros are bucketed by start time, tasks by their day, plans by start day.
    Statuses with no records are left out.
    """
    kind = DataKind(kind)
    time_range = TimeRange(time_range)
    window = day_range(time_range, local_day(now or utc_now()))

    if kind == DataKind.POMODORO:
        criteria = [Pomodoro.status.is_not(None)]
        if window is not None:
            start, end = day_bounds_utc(*window)
            criteria += [Pomodoro.started_at >= start, Pomodoro.started_at < end]
        counts = _grouped(Pomodoro.id, Pomodoro.status, *criteria)
        items = [StatItem(status.display_name, counts.get(status.value, 0)) for status in PomodoroStatus]
    elif kind == DataKind.TASK:
        criteria = []
        if window is not None:
            criteria = [Task.date >= window[0], Task.date < window[1]]
        counts = _grouped(Task.id, Task.is_finished, *criteria)
        items = [StatItem("Finished", counts.get(True, 0)), StatItem("Unfinished", counts.get(False, 0))]
    else:
        criteria = []
        if window is not None:
            criteria = [Plan.start_date >= window[0], Plan.start_date < window[1]]
        counts = _grouped(Plan.id, Plan.status, *criteria)
        items = [StatItem(status.display_name, counts.get(status.value, 0)) for status in PlanStatus]

    return [item for item in items if item.count > 0]
