"""Pomodoro sessions: the work/relax state machine and its records."""

from taskflow.pomodoro.controller import (
    EVENT_PHASE_CHANGED,
    EVENT_WORK_COMPLETED,
    Phase,
    PomodoroSessionController,
    SessionHandoff,
    SessionSnapshot,
)
from taskflow.pomodoro.errors import InvalidStateError
from taskflow.pomodoro.repository import PomodoroRepository, SqlPomodoroRepository

__all__ = [
    "EVENT_PHASE_CHANGED",
    "EVENT_WORK_COMPLETED",
    "InvalidStateError",
    "Phase",
    "PomodoroRepository",
    "PomodoroSessionController",
    "SessionHandoff",
    "SessionSnapshot",
    "SqlPomodoroRepository",
]
