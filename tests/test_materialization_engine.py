"""Tests for the pure daily materialization rules."""

from datetime import UTC, date, datetime, timedelta

from taskflow.db.models import DayMarker, Plan
from taskflow.materialization.engine import compute_materialization, plan_covers_day, plans_to_promote, task_for_plan
from taskflow.plans.types import PlanStatus


def _plan(name: str, start: date, end: date | None = None, status: PlanStatus = PlanStatus.IN_PROGRESS, **kwargs) -> Plan:
    return Plan(
        id=f"plan-{name}",
        name=name,
        status=status.value,
        start_date=start,
        estimated_end_date=end,
        priority=kwargs.get("priority", "normal"),
        is_urgent=kwargs.get("is_urgent", False),
    )


def test_creates_one_task_per_active_plan_covering_today(now, today):
    plans = [
        _plan("write", today - timedelta(days=2), today + timedelta(days=2)),
        _plan("read", today),
        _plan("later", today + timedelta(days=1), today + timedelta(days=5)),
        _plan("past", today - timedelta(days=5), today - timedelta(days=1)),
    ]

    result = compute_materialization(now, plans, [])

    assert result.day == today
    assert sorted(task.name for task in result.tasks) == ["read", "write"]
    assert all(task.date == today for task in result.tasks)
    assert result.marker is not None
    assert result.marker.date == today
    assert not result.already_materialized


def test_closed_plans_produce_no_tasks(now, today):
    plans = [
        _plan("done", today, today + timedelta(days=3), status=PlanStatus.FINISHED),
        _plan("gave-up", today, today + timedelta(days=3), status=PlanStatus.ABANDONED),
        _plan("late", today, today + timedelta(days=3), status=PlanStatus.DELAYED),
    ]

    result = compute_materialization(now, plans, [])

    assert [task.name for task in result.tasks] == ["late"]


def test_marker_written_even_without_qualifying_plans(now, today):
    result = compute_materialization(now, [], [])

    assert result.tasks == []
    assert result.marker is not None
    assert result.marker.date == today


def test_existing_marker_means_nothing_to_do(now, today):
    plans = [_plan("write", today)]
    markers = [DayMarker(date=today, created_task_for_today=True)]

    result = compute_materialization(now, plans, markers)

    assert result.tasks == []
    assert result.marker is None
    assert result.already_materialized


def test_marker_for_another_day_is_ignored(now, today):
    plans = [_plan("write", today)]
    markers = [DayMarker(date=today - timedelta(days=1), created_task_for_today=True)]

    result = compute_materialization(now, plans, markers)

    assert len(result.tasks) == 1


def test_task_copies_priority_and_urgency(today):
    plan = _plan("ship", today, priority="high", is_urgent=True)

    task = task_for_plan(plan, today)

    assert task.priority == "high"
    assert task.is_urgent is True
    assert task.plan_id == plan.id
    assert task.is_finished is False
    assert task.id


def test_missing_priority_defaults_to_normal(today):
    plan = _plan("ship", today)
    plan.priority = None

    assert task_for_plan(plan, today).priority == "normal"


def test_window_without_end_date_covers_only_start_day(today):
    plan = _plan("once", today)

    assert plan_covers_day(plan, today)
    assert not plan_covers_day(plan, today + timedelta(days=1))
    assert not plan_covers_day(plan, today - timedelta(days=1))


def test_day_follows_local_calendar_not_utc():
    late_evening = datetime(2026, 3, 11, 23, 30)
    plans = [_plan("night", date(2026, 3, 11))]

    result = compute_materialization(late_evening, plans, [])

    assert result.day == date(2026, 3, 11)
    assert len(result.tasks) == 1


def test_plans_to_promote_only_not_started_in_window(now, today):
    waiting = _plan("waiting", today, today + timedelta(days=1), status=PlanStatus.NOT_STARTED)
    future = _plan("future", today + timedelta(days=1), status=PlanStatus.NOT_STARTED)
    running = _plan("running", today, status=PlanStatus.IN_PROGRESS)

    promoted = plans_to_promote(now, [waiting, future, running])

    assert promoted == [waiting]


def test_aware_instant_converted_to_configured_timezone():
    moment = datetime(2026, 3, 11, 23, 59, tzinfo=UTC)

    result = compute_materialization(moment, [], [])

    assert result.day == date(2026, 3, 11)
