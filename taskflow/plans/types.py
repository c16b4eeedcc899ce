"""Canonical enums for plans, tasks and pomodoros.

All enums are string-based so values round-trip through the store unchanged.
"""

from enum import StrEnum


class PlanStatus(StrEnum):
    """Lifecycle status of a plan."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    FINISHED = "finished"
    ABANDONED = "abandoned"
    DELAYED = "delayed"

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()

    @property
    def is_closed(self) -> bool:
        return self in CLOSED_PLAN_STATUSES


CLOSED_PLAN_STATUSES = frozenset({PlanStatus.FINISHED, PlanStatus.ABANDONED})


class PlanPriority(StrEnum):
    """Priority shared by plans and tasks."""

    NORMAL = "normal"
    HIGH = "high"

    @property
    def display_name(self) -> str:
        return self.value.title()


class PomodoroStatus(StrEnum):
    """Outcome of a closed pomodoro."""

    FINISHED = "finished"
    ABANDONED = "abandoned"

    @property
    def display_name(self) -> str:
        return self.value.title()
