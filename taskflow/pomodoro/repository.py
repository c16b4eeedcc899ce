"""Persistence for pomodoro records used by the session controller."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from loguru import logger

from taskflow.db.errors import PersistenceError
from taskflow.db.models import Pomodoro, Task
from taskflow.db.store import open_store
from taskflow.plans.types import PomodoroStatus


class PomodoroRepository(Protocol):
    def open(self, task_id: str | None, started_at: datetime, estimated_minutes: int) -> str: ...

    def set_task(self, pomodoro_id: str, task_id: str | None) -> None: ...

    def close(
        self,
        pomodoro_id: str,
        status: PomodoroStatus,
        ended_at: datetime,
        finished_minutes: int,
        task_id: str | None,
    ) -> None: ...

    def find_open(self) -> Pomodoro | None: ...


class SqlPomodoroRepository:
    """Pomodoro records in the SQL store, one committed unit of work per call."""

    def open(self, task_id: str | None, started_at: datetime, estimated_minutes: int) -> str:
        with open_store() as store:
            pomodoro = store.create(
                Pomodoro(
                    task_id=task_id,
                    started_at=started_at,
                    estimated_minutes=estimated_minutes,
                    open_slot=1,
                )
            )
            store.save()
        logger.bind(pomodoro_id=pomodoro.id, task_id=task_id).debug("Opened pomodoro record")
        return pomodoro.id

    def set_task(self, pomodoro_id: str, task_id: str | None) -> None:
        with open_store() as store:
            pomodoro = store.get(Pomodoro, pomodoro_id)
            if pomodoro is None:
                raise PersistenceError(f"Pomodoro {pomodoro_id} not found")
            store.update(pomodoro, task_id=task_id)
            store.save()

    def close(
        self,
        pomodoro_id: str,
        status: PomodoroStatus,
        ended_at: datetime,
        finished_minutes: int,
        task_id: str | None,
    ) -> None:
        """Close the record; safe to repeat with the same values.

        A task deleted while the session ran leaves the record unlinked.
        """
        with open_store() as store:
            pomodoro = store.get(Pomodoro, pomodoro_id)
            if pomodoro is None:
                raise PersistenceError(f"Pomodoro {pomodoro_id} not found")
            if task_id is not None and store.get(Task, task_id) is None:
                logger.bind(pomodoro_id=pomodoro_id, task_id=task_id).warning(
                    "Linked task no longer exists, closing pomodoro unlinked"
                )
                task_id = None
            store.update(
                pomodoro,
                status=status.value,
                ended_at=ended_at,
                finished_minutes=finished_minutes,
                task_id=task_id,
                open_slot=None,
            )
            store.save()
        logger.bind(pomodoro_id=pomodoro_id, status=status.value, finished_minutes=finished_minutes).debug(
            "Closed pomodoro record"
        )

    def find_open(self) -> Pomodoro | None:
        with open_store() as store:
            records = store.query(Pomodoro, Pomodoro.ended_at.is_(None), order_by=Pomodoro.started_at)
        return records[0] if records else None


def list_pomodoros() -> list[Pomodoro]:
    with open_store() as store:
        return store.query(Pomodoro, order_by=Pomodoro.started_at)
