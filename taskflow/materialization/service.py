"""Materialization entry point, run once per app activation.

Promotes plans that have started and creates today's tasks in a single unit of
work. A process-wide lock serialises the check-then-create sequence; the unique
constraint on DayMarker.date covers writers in other processes.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import date, datetime

from loguru import logger

from taskflow.db.errors import ConstraintViolation
from taskflow.db.models import DayMarker, Plan, Task
from taskflow.db.store import Store, open_store
from taskflow.materialization.engine import compute_materialization, plans_to_promote
from taskflow.plans.types import PlanStatus
from taskflow.utils.calendar import local_day, utc_now

_materialize_lock = threading.Lock()


@dataclass(frozen=True)
class MaterializedTask:
    id: str
    name: str
    date: date
    priority: str
    is_urgent: bool
    plan_id: str | None


@dataclass(frozen=True)
class PromotedPlan:
    id: str
    name: str


@dataclass(frozen=True)
class MaterializationResult:
    """Outcome of one materialize_today() call.

    Attributes:
        day: Calendar day that was processed
        created_tasks: Tasks created by this call (empty when already materialized)
        promoted_plans: Plans moved from not_started to in_progress by this call
        marker_created: True iff this call wrote today's DayMarker
    """

    day: date
    created_tasks: list[MaterializedTask] = field(default_factory=list)
    promoted_plans: list[PromotedPlan] = field(default_factory=list)
    marker_created: bool = False

    @property
    def already_materialized(self) -> bool:
        return not self.marker_created


def _promote(store: Store, now: datetime) -> list[PromotedPlan]:
    plans = store.query(Plan, Plan.status == PlanStatus.NOT_STARTED.value)
    promoted = []
    for plan in plans_to_promote(now, plans):
        store.update(plan, status=PlanStatus.IN_PROGRESS.value, ended_at=None)
        promoted.append(PromotedPlan(id=plan.id, name=plan.name))
    return promoted


def _run(store: Store, now: datetime) -> MaterializationResult:
    day = local_day(now)
    promoted = _promote(store, now)

    # A plan created earlier today already carries its task.
    covered = {task.plan_id for task in store.query(Task, Task.date == day, Task.plan_id.is_not(None))}
    plans = [plan for plan in store.query(Plan) if plan.id not in covered]
    markers = store.query(DayMarker, DayMarker.date == day)
    plan = compute_materialization(now, plans, markers)

    created = [
        MaterializedTask(
            id=task.id,
            name=task.name,
            date=task.date,
            priority=task.priority,
            is_urgent=task.is_urgent,
            plan_id=task.plan_id,
        )
        for task in plan.tasks
    ]
    if plan.marker is not None:
        store.create_all(plan.tasks)
        store.create(plan.marker)

    try:
        store.save()
    except ConstraintViolation as e:
        # save() rolled back, so a marker seen now was committed by another writer
        if plan.marker is None or not store.query(DayMarker, DayMarker.date == day):
            raise
        # Another writer materialized today first; its tasks stand, ours are dropped.
        logger.bind(constraint=e.constraint).info(
            f"Day {day} already materialized by another writer, discarding {len(created)} task(s)"
        )
        promoted = _promote(store, now)
        store.save()
        return MaterializationResult(day=day, promoted_plans=promoted)

    if plan.marker is None:
        logger.bind(promoted=len(promoted)).debug(f"Tasks for {day} already materialized")
    else:
        logger.bind(promoted=len(promoted)).info(f"Materialized {len(created)} task(s) for {day}")
    return MaterializationResult(
        day=day,
        created_tasks=created,
        promoted_plans=promoted,
        marker_created=plan.marker is not None,
    )


def materialize_today(now: datetime | None = None, store: Store | None = None) -> MaterializationResult:
    """Promote started plans and create today's tasks, at most once per day.

    Args:
        now: Current instant (defaults to the wall clock)
        store: Store to use; a fresh one is opened and closed when omitted

    Returns:
        MaterializationResult with the tasks created and plans promoted by this call

    Raises:
        PersistenceError: Store rejected the write; nothing was committed and the
            caller should retry on the next activation
    """
    moment = now or utc_now()
    with _materialize_lock:
        if store is not None:
            return _run(store, moment)
        with open_store() as own_store:
            return _run(own_store, moment)
