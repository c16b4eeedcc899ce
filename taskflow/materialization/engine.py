"""Daily task materialization rules (pure, no I/O).

Given the plans and day markers already loaded from the store, decide which
tasks to create for today and which plans to promote to in-progress. The
service module owns loading and saving.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime

from taskflow.db.models import DayMarker, Plan, Task
from taskflow.plans.types import PlanPriority, PlanStatus
from taskflow.utils.calendar import local_day, window_contains


@dataclass
class MaterializationPlan:
    """Records to insert for one day.

    Attributes:
        day: Calendar day being materialized
        tasks: New Task records (not yet added to any session)
        marker: New DayMarker, or None when the day was already materialized
    """

    day: date
    tasks: list[Task] = field(default_factory=list)
    marker: DayMarker | None = None

    @property
    def already_materialized(self) -> bool:
        return self.marker is None


def is_active_plan(plan: Plan) -> bool:
    return not PlanStatus(plan.status).is_closed


def plan_covers_day(plan: Plan, day: date) -> bool:
    return window_contains(plan.start_date, plan.estimated_end_date, day)


def task_for_plan(plan: Plan, day: date) -> Task:
    """Build today's task for a plan, copying priority and urgency."""
    return Task(
        id=str(uuid.uuid4()),
        name=plan.name,
        date=day,
        is_finished=False,
        priority=plan.priority or PlanPriority.NORMAL.value,
        is_urgent=bool(plan.is_urgent),
        plan_id=plan.id,
    )


def compute_materialization(
    now: datetime,
    plans: Iterable[Plan],
    day_markers: Iterable[DayMarker],
) -> MaterializationPlan:
    """Decide today's tasks from active plans, at most once per calendar day.

    Returns an empty plan with no marker when a marker for today already exists.
    Otherwise one task per active plan whose window covers today plus exactly one
    marker, even when no plan qualifies.
    """
    day = local_day(now)
    if any(marker.date == day for marker in day_markers):
        return MaterializationPlan(day=day)

    tasks = [task_for_plan(plan, day) for plan in plans if is_active_plan(plan) and plan_covers_day(plan, day)]
    marker = DayMarker(id=str(uuid.uuid4()), date=day, created_task_for_today=True)
    return MaterializationPlan(day=day, tasks=tasks, marker=marker)


def plans_to_promote(now: datetime, plans: Iterable[Plan]) -> list[Plan]:
    """Not-started plans whose window covers today."""
    day = local_day(now)
    return [
        plan
        for plan in plans
        if plan.status == PlanStatus.NOT_STARTED.value and plan_covers_day(plan, day)
    ]
