"""Plan lifecycle operations.

Status transitions keep the end-date invariant: finished/abandoned plans carry
ended_at, every other status clears it.
"""

from __future__ import annotations

from datetime import date, datetime

from loguru import logger

from taskflow.db.models import Plan, Task
from taskflow.db.store import Store, open_store
from taskflow.materialization.engine import task_for_plan
from taskflow.plans.types import CLOSED_PLAN_STATUSES, PlanPriority, PlanStatus
from taskflow.utils.calendar import local_day, utc_now, window_contains


def _load_plan(store: Store, plan_id: str) -> Plan:
    plan = store.get(Plan, plan_id)
    if plan is None:
        raise ValueError("Plan not found.")
    return plan


def create_plan(
    name: str,
    start_date: date,
    estimated_end_date: date | None = None,
    priority: str = PlanPriority.NORMAL.value,
    is_urgent: bool = False,
    note: str | None = None,
    now: datetime | None = None,
) -> Plan:
    """Create a plan, and today's task for it when its window already covers today.

    Plans starting today or earlier start in progress; future plans are not started.

    Raises:
        ValueError: Empty name, start before today, end before start, or unknown priority
    """
    name = (name or "").strip()
    if not name:
        raise ValueError("Plan name cannot be empty.")
    moment = now or utc_now()
    today = local_day(moment)
    if start_date < today:
        raise ValueError("Plan cannot start before today.")
    if estimated_end_date is not None and estimated_end_date < start_date:
        raise ValueError("Estimated end date cannot be before the start date.")
    priority = PlanPriority(priority).value

    status = PlanStatus.IN_PROGRESS if start_date <= today else PlanStatus.NOT_STARTED
    plan = Plan(
        name=name,
        status=status.value,
        priority=priority,
        is_urgent=is_urgent,
        start_date=start_date,
        estimated_end_date=estimated_end_date,
        note=note,
    )

    with open_store() as store:
        store.create(plan)
        store.session.flush()
        if window_contains(start_date, estimated_end_date, today):
            store.create(task_for_plan(plan, today))
        store.save()

    logger.bind(plan_id=plan.id, status=plan.status).info(f"Created plan {plan.name!r}")
    return plan


def get_plan(plan_id: str) -> Plan | None:
    with open_store() as store:
        return store.get(Plan, plan_id)


def list_plans(active: bool | None = None) -> list[Plan]:
    """List plans by start date; active=True hides finished/abandoned, False shows only those."""
    closed = [status.value for status in CLOSED_PLAN_STATUSES]
    criteria = []
    if active is True:
        criteria.append(Plan.status.not_in(closed))
    elif active is False:
        criteria.append(Plan.status.in_(closed))
    with open_store() as store:
        return store.query(Plan, *criteria, order_by=Plan.start_date)


def _transition(plan_id: str, status: PlanStatus, now: datetime | None = None) -> Plan:
    with open_store() as store:
        plan = _load_plan(store, plan_id)
        ended_at = (now or utc_now()) if status in CLOSED_PLAN_STATUSES else None
        store.update(plan, status=status.value, ended_at=ended_at)
        store.save()
    logger.bind(plan_id=plan_id).info(f"Plan {plan.name!r} -> {status.value}")
    return plan


def finish_plan(plan_id: str, now: datetime | None = None) -> Plan:
    return _transition(plan_id, PlanStatus.FINISHED, now)


def abandon_plan(plan_id: str, now: datetime | None = None) -> Plan:
    """Mark an active plan abandoned.

    Raises:
        ValueError: Plan not found or already finished/abandoned
    """
    plan = get_plan(plan_id)
    if plan is None:
        raise ValueError("Plan not found.")
    if PlanStatus(plan.status).is_closed:
        raise ValueError(f"Plan is already {plan.status}.")
    return _transition(plan_id, PlanStatus.ABANDONED, now)


def set_plan_in_progress(plan_id: str) -> Plan:
    return _transition(plan_id, PlanStatus.IN_PROGRESS)


def delay_plan(plan_id: str) -> Plan:
    return _transition(plan_id, PlanStatus.DELAYED)


def toggle_plan_finished(plan_id: str, now: datetime | None = None) -> Plan:
    """Finished plans go back in progress; anything else becomes finished."""
    plan = get_plan(plan_id)
    if plan is None:
        raise ValueError("Plan not found.")
    if plan.status == PlanStatus.FINISHED.value:
        return set_plan_in_progress(plan_id)
    return finish_plan(plan_id, now)


def update_plan_review(plan_id: str, review: str | None) -> Plan:
    with open_store() as store:
        plan = _load_plan(store, plan_id)
        store.update(plan, review=(review or "").strip() or None)
        store.save()
    return plan


def delete_plan(plan_id: str) -> int:
    """Delete a plan; its tasks survive with the plan link cleared.

    Returns:
        Number of tasks that were unlinked
    """
    with open_store() as store:
        plan = _load_plan(store, plan_id)
        tasks = store.query(Task, Task.plan_id == plan_id)
        for task in tasks:
            store.update(task, plan_id=None)
        store.session.flush()
        store.delete(plan)
        store.save()
    logger.bind(plan_id=plan_id, unlinked_tasks=len(tasks)).info(f"Deleted plan {plan.name!r}")
    return len(tasks)
