"""Tests for materialize_today() against the store."""

import threading
from datetime import timedelta

import pytest

from taskflow.db.errors import ConstraintViolation, PersistenceError
from taskflow.db.models import DayMarker, Plan, Task
from taskflow.db.store import open_store
from taskflow.materialization import materialize_today
from taskflow.plans.types import PlanStatus


def _add_plan(name, start, end=None, status=PlanStatus.IN_PROGRESS, priority="normal", is_urgent=False) -> str:
    with open_store() as store:
        plan = store.create(
            Plan(
                name=name,
                status=status.value,
                start_date=start,
                estimated_end_date=end,
                priority=priority,
                is_urgent=is_urgent,
            )
        )
        store.save()
        return plan.id


def _all(model):
    with open_store() as store:
        return store.query(model)


def test_first_run_creates_tasks_and_marker(now, today):
    plan_id = _add_plan("write", today - timedelta(days=1), today + timedelta(days=1), priority="high", is_urgent=True)
    _add_plan("finished", today, status=PlanStatus.FINISHED)

    result = materialize_today(now)

    assert result.marker_created
    assert [task.plan_id for task in result.created_tasks] == [plan_id]
    tasks = _all(Task)
    assert len(tasks) == 1
    assert tasks[0].date == today
    assert tasks[0].priority == "high"
    assert tasks[0].is_urgent is True
    markers = _all(DayMarker)
    assert [marker.date for marker in markers] == [today]


def test_second_run_same_day_is_idempotent(now, today):
    _add_plan("write", today)

    first = materialize_today(now)
    second = materialize_today(now + timedelta(hours=5))

    assert len(first.created_tasks) == 1
    assert second.already_materialized
    assert second.created_tasks == []
    assert len(_all(Task)) == 1
    assert len(_all(DayMarker)) == 1


def test_marker_written_with_no_plans(now, today):
    result = materialize_today(now)

    assert result.marker_created
    assert result.created_tasks == []
    assert [marker.date for marker in _all(DayMarker)] == [today]


def test_next_day_materializes_again(now, today):
    _add_plan("write", today, today + timedelta(days=3))

    materialize_today(now)
    result = materialize_today(now + timedelta(days=1))

    assert len(result.created_tasks) == 1
    assert sorted(task.date for task in _all(Task)) == [today, today + timedelta(days=1)]


def test_not_started_plan_promoted_when_window_reached(now, today):
    plan_id = _add_plan("soon", today + timedelta(days=1), today + timedelta(days=2), status=PlanStatus.NOT_STARTED)

    assert materialize_today(now).promoted_plans == []

    result = materialize_today(now + timedelta(days=1))

    assert [plan.id for plan in result.promoted_plans] == [plan_id]
    with open_store() as store:
        assert store.get(Plan, plan_id).status == PlanStatus.IN_PROGRESS.value
    assert [task.plan_id for task in result.created_tasks] == [plan_id]


def test_lost_race_discards_tasks_and_keeps_existing(now, today, monkeypatch):
    _add_plan("write", today)
    with open_store() as store:
        store.create(DayMarker(date=today, created_task_for_today=True))
        store.save()

    # Simulate a writer that committed its marker after our check.
    from taskflow.materialization import service

    monkeypatch.setattr(service, "compute_materialization", _ignore_markers(service.compute_materialization))

    result = materialize_today(now)

    assert result.already_materialized
    assert result.created_tasks == []
    assert _all(Task) == []
    assert len(_all(DayMarker)) == 1


@pytest.mark.parametrize("reported", ["day_markers_date_key", None])
def test_lost_race_detected_whatever_the_driver_reports(now, today, monkeypatch, reported):
    _add_plan("write", today)
    with open_store() as store:
        store.create(DayMarker(date=today, created_task_for_today=True))
        store.save()

    from taskflow.materialization import service

    monkeypatch.setattr(service, "compute_materialization", _ignore_markers(service.compute_materialization))
    # PostgreSQL names the index, not "table.column"; some drivers report nothing
    monkeypatch.setattr("taskflow.db.store._constraint_from_error", lambda error: reported)

    result = materialize_today(now)

    assert result.already_materialized
    assert _all(Task) == []
    assert len(_all(DayMarker)) == 1


def _ignore_markers(compute):
    def wrapped(now, plans, day_markers):
        return compute(now, plans, [])

    return wrapped


def test_other_constraint_failures_propagate(now, today, monkeypatch):
    _add_plan("write", today)

    def failing_save(self):
        self.session.rollback()
        raise ConstraintViolation("Constraint violated: tasks.name", constraint="tasks.name")

    monkeypatch.setattr("taskflow.db.store.Store.save", failing_save)

    with pytest.raises(ConstraintViolation):
        materialize_today(now)


def test_store_failure_leaves_nothing_committed(now, today, monkeypatch):
    _add_plan("write", today)

    def failing_commit(self):
        raise PersistenceError("disk full")

    monkeypatch.setattr("taskflow.db.store.Store.save", failing_commit)
    with pytest.raises(PersistenceError):
        materialize_today(now)

    assert _all(DayMarker) == []
    assert _all(Task) == []


def test_concurrent_activations_create_one_set_of_tasks(now, today):
    _add_plan("write", today)
    _add_plan("read", today)
    results = []

    def activate():
        results.append(materialize_today(now))

    threads = [threading.Thread(target=activate) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sum(1 for result in results if result.marker_created) == 1
    assert len(_all(Task)) == 2
    assert len(_all(DayMarker)) == 1


def test_plan_created_before_activation_keeps_single_task(now, today):
    from taskflow.plans.service import create_plan

    plan = create_plan("write", today, today + timedelta(days=2), now=now)

    result = materialize_today(now)

    assert result.marker_created
    assert result.created_tasks == []
    assert [task.plan_id for task in _all(Task)] == [plan.id]
