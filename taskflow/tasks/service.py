from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime

from loguru import logger

from taskflow.db.models import Plan, Pomodoro, Task
from taskflow.db.store import Store, open_store
from taskflow.plans.types import PlanPriority, PlanStatus
from taskflow.utils.calendar import local_day, utc_now

SECTION_HIGH_URGENT = "High Priority & Urgent"
SECTION_HIGH = "High Priority"
SECTION_URGENT = "Urgent"
SECTION_OTHERS = "Others"
SECTION_FINISHED = "Finished Tasks"


@dataclass
class TaskSection:
    title: str
    tasks: list[Task] = field(default_factory=list)


def _load_task(store: Store, task_id: str) -> Task:
    task = store.get(Task, task_id)
    if task is None:
        raise ValueError("Task not found.")
    return task


def create_task(
    name: str,
    day: date | None = None,
    priority: str = PlanPriority.NORMAL.value,
    is_urgent: bool = False,
    note: str | None = None,
    plan_id: str | None = None,
    now: datetime | None = None,
) -> Task:
    name = (name or "").strip()
    if not name:
        raise ValueError("Task name cannot be empty.")
    priority = PlanPriority(priority).value
    task_day = day or local_day(now or utc_now())

    with open_store() as store:
        if plan_id is not None and store.get(Plan, plan_id) is None:
            raise ValueError("Plan not found.")
        task = store.create(
            Task(
                name=name,
                date=task_day,
                priority=priority,
                is_urgent=is_urgent,
                note=note,
                plan_id=plan_id,
            )
        )
        store.save()

    logger.bind(task_id=task.id, plan_id=plan_id).info(f"Created task {task.name!r} for {task.date}")
    return task


def get_task(task_id: str) -> Task | None:
    with open_store() as store:
        return store.get(Task, task_id)


def toggle_task_finished(task_id: str) -> Task:
    with open_store() as store:
        task = _load_task(store, task_id)
        store.update(task, is_finished=not task.is_finished, modified_at=utc_now())
        store.save()
    logger.bind(task_id=task_id).info(f"Task {task.name!r} finished={task.is_finished}")
    return task


def update_task_review(task_id: str, review: str | None) -> Task:
    with open_store() as store:
        task = _load_task(store, task_id)
        store.update(task, review=(review or "").strip() or None, modified_at=utc_now())
        store.save()
    return task


def delete_task(task_id: str) -> None:
    """Delete a task; pomodoros that referenced it keep existing without a task."""
    with open_store() as store:
        task = _load_task(store, task_id)
        for pomodoro in store.query(Pomodoro, Pomodoro.task_id == task_id):
            store.update(pomodoro, task_id=None)
        store.session.flush()
        store.delete(task)
        store.save()
    logger.bind(task_id=task_id).info(f"Deleted task {task.name!r}")


def list_tasks_for_day(day: date) -> list[Task]:
    with open_store() as store:
        return store.query(Task, Task.date == day, order_by=Task.created_at)


def selectable_tasks() -> list[Task]:
    """Unfinished tasks a pomodoro can be assigned to, oldest date first."""
    with open_store() as store:
        return store.query(Task, Task.is_finished.is_(False), order_by=Task.date)


def is_task_locked(task_id: str) -> bool:
    """A finished task, or one whose plan was abandoned, can no longer be toggled from the list."""
    with open_store() as store:
        task = _load_task(store, task_id)
        if task.is_finished:
            return True
        if task.plan_id is None:
            return False
        plan = store.get(Plan, task.plan_id)
        return plan is not None and plan.status == PlanStatus.ABANDONED.value


def group_tasks(tasks: list[Task]) -> list[TaskSection]:
    """Split tasks into list sections: unfinished by priority/urgency, finished last.

    Empty sections are kept so callers can render a stable layout.
    """
    sections = {
        title: TaskSection(title)
        for title in (SECTION_HIGH_URGENT, SECTION_HIGH, SECTION_URGENT, SECTION_OTHERS, SECTION_FINISHED)
    }
    for task in tasks:
        if task.is_finished:
            key = SECTION_FINISHED
        elif task.priority == PlanPriority.HIGH.value:
            key = SECTION_HIGH_URGENT if task.is_urgent else SECTION_HIGH
        else:
            key = SECTION_URGENT if task.is_urgent else SECTION_OTHERS
        sections[key].tasks.append(task)
    return list(sections.values())
