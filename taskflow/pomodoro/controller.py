"""Pomodoro session state machine.

One controller owns at most one timed session. Phase, counters and the id of the
open pomodoro record are guarded by a single re-entrant lock, so a timer thread
calling tick() and a user thread calling abandon() never interleave.

Phases:
    idle -> working <-> paused
    working/paused -> completed (time is up or finish_now) -> relaxing | idle
    working/paused -> idle (abandon)
    relaxing -> idle (time is up or abandon)
    any close-out write failure -> finalizing -> retry -> completed | idle
"""

from __future__ import annotations

import math
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

from loguru import logger

from taskflow.db.errors import ConstraintViolation, PersistenceError
from taskflow.db.models import Pomodoro
from taskflow.plans.types import PomodoroStatus
from taskflow.pomodoro.errors import InvalidStateError
from taskflow.pomodoro.repository import PomodoroRepository, SqlPomodoroRepository
from taskflow.preferences.service import SettingsProvider, StoredSettingsProvider
from taskflow.utils.calendar import format_mm_ss, utc_now

EVENT_PHASE_CHANGED = "phase_changed"
EVENT_WORK_COMPLETED = "work_completed"


class Phase(StrEnum):
    IDLE = "idle"
    WORKING = "working"
    PAUSED = "paused"
    COMPLETED = "completed"
    RELAXING = "relaxing"
    FINALIZING = "finalizing"


ACTIVE_PHASES = frozenset({Phase.WORKING, Phase.PAUSED, Phase.COMPLETED, Phase.RELAXING})


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of the controller at one instant.

    Attributes:
        phase: Current phase
        elapsed_work_seconds: Work time accumulated in the open session
        elapsed_relax_seconds: Relax time accumulated in the current relax phase
        active_pomodoro_id: Id of the open pomodoro record, if any
        task_id: Task linked to the session, if any
        estimated_minutes: Work target of the session (0 when idle)
        relax_minutes: Relax target (0 outside relaxing)
        remaining_seconds: Whole seconds left in the running phase
    """

    phase: Phase
    elapsed_work_seconds: float
    elapsed_relax_seconds: float
    active_pomodoro_id: str | None
    task_id: str | None
    estimated_minutes: int
    relax_minutes: int
    remaining_seconds: int

    @property
    def remaining_display(self) -> str:
        return format_mm_ss(self.remaining_seconds)


@dataclass(frozen=True)
class SessionHandoff:
    """Everything needed to continue an open session in another controller."""

    pomodoro_id: str
    task_id: str | None
    estimated_minutes: int
    elapsed_work_seconds: float
    running: bool = True

    @classmethod
    def from_open_record(cls, pomodoro: Pomodoro, now: datetime, running: bool = False) -> SessionHandoff:
        """Rebuild a handoff from a record left open by an earlier run.

        Elapsed time is wall time since the record started, capped at the target.
        """
        started_at = pomodoro.started_at
        if started_at.tzinfo is None:
            started_at = started_at.replace(tzinfo=UTC)
        target = pomodoro.estimated_minutes * 60
        elapsed = max(0.0, min((now - started_at).total_seconds(), float(target)))
        return cls(
            pomodoro_id=pomodoro.id,
            task_id=pomodoro.task_id,
            estimated_minutes=pomodoro.estimated_minutes,
            elapsed_work_seconds=elapsed,
            running=running,
        )


@dataclass(frozen=True)
class _PendingClose:
    pomodoro_id: str
    status: PomodoroStatus
    ended_at: datetime
    finished_minutes: int
    task_id: str | None
    next_phase: Phase


Listener = Callable[[str, SessionSnapshot], None]


class PomodoroSessionController:
    """Work/relax timer bound to the pomodoro records in the store."""

    def __init__(
        self,
        repository: PomodoroRepository | None = None,
        settings_provider: SettingsProvider | None = None,
        clock: Callable[[], datetime] = utc_now,
        handoff: SessionHandoff | None = None,
    ) -> None:
        self._repository = repository or SqlPomodoroRepository()
        self._settings = settings_provider or StoredSettingsProvider()
        self._clock = clock
        self._lock = threading.RLock()
        self._listeners: list[Listener] = []

        self._phase = Phase.IDLE
        self._work_elapsed = 0.0
        self._relax_elapsed = 0.0
        self._pomodoro_id: str | None = None
        self._task_id: str | None = None
        self._estimated_minutes = 0
        self._relax_minutes = 0
        self._pending: _PendingClose | None = None
        self._queued: list[str] = []

        if handoff is not None:
            self._phase = Phase.WORKING if handoff.running else Phase.PAUSED
            self._pomodoro_id = handoff.pomodoro_id
            self._task_id = handoff.task_id
            self._estimated_minutes = handoff.estimated_minutes
            self._work_elapsed = round(handoff.elapsed_work_seconds, 6)

    # observers

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener for phase_changed and work_completed; returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _queue(self, *events: str) -> None:
        self._queued.extend(events)

    def _flush(self) -> None:
        """Deliver queued events outside the lock."""
        with self._lock:
            events, self._queued = self._queued, []
            if not events:
                return
            listeners = list(self._listeners)
            snapshot = self._snapshot()
        for event in events:
            for listener in listeners:
                try:
                    listener(event, snapshot)
                except Exception:
                    logger.exception(f"Pomodoro listener failed on {event}")

    # queries

    def current_state(self) -> SessionSnapshot:
        with self._lock:
            return self._snapshot()

    @property
    def phase(self) -> Phase:
        with self._lock:
            return self._phase

    def handoff(self) -> SessionHandoff | None:
        """Describe the open session so another controller can take it over."""
        with self._lock:
            if self._phase not in (Phase.WORKING, Phase.PAUSED) or self._pomodoro_id is None:
                return None
            return SessionHandoff(
                pomodoro_id=self._pomodoro_id,
                task_id=self._task_id,
                estimated_minutes=self._estimated_minutes,
                elapsed_work_seconds=self._work_elapsed,
                running=self._phase == Phase.WORKING,
            )

    def _snapshot(self) -> SessionSnapshot:
        if self._phase in (Phase.WORKING, Phase.PAUSED):
            remaining = self._remaining(self._estimated_minutes * 60, self._work_elapsed)
        elif self._phase == Phase.RELAXING:
            remaining = self._remaining(self._relax_minutes * 60, self._relax_elapsed)
        else:
            remaining = 0
        return SessionSnapshot(
            phase=self._phase,
            elapsed_work_seconds=self._work_elapsed,
            elapsed_relax_seconds=self._relax_elapsed,
            active_pomodoro_id=self._pomodoro_id,
            task_id=self._task_id,
            estimated_minutes=self._estimated_minutes,
            relax_minutes=self._relax_minutes if self._phase == Phase.RELAXING else 0,
            remaining_seconds=remaining,
        )

    @staticmethod
    def _remaining(target: float, elapsed: float) -> int:
        return max(0, math.ceil(round(target - elapsed, 6)))

    # transitions

    def _set_phase(self, phase: Phase) -> None:
        if phase == self._phase:
            return
        logger.bind(pomodoro_id=self._pomodoro_id).debug(f"Pomodoro phase {self._phase} -> {phase}")
        self._phase = phase
        self._queue(EVENT_PHASE_CHANGED)

    def _reset_to_idle(self) -> None:
        self._pomodoro_id = None
        self._task_id = None
        self._estimated_minutes = 0
        self._relax_minutes = 0
        self._work_elapsed = 0.0
        self._relax_elapsed = 0.0
        self._set_phase(Phase.IDLE)

    def _require(self, operation: str, *allowed: Phase) -> None:
        if self._phase not in allowed:
            raise InvalidStateError(operation, self._phase.value)

    def _close(self, pending: _PendingClose) -> None:
        """Write the close-out; on failure park the write and move to finalizing."""
        try:
            self._repository.close(
                pending.pomodoro_id,
                pending.status,
                pending.ended_at,
                pending.finished_minutes,
                pending.task_id,
            )
        except PersistenceError:
            self._pending = pending
            self._set_phase(Phase.FINALIZING)
            logger.bind(pomodoro_id=pending.pomodoro_id, status=pending.status.value).error(
                "Failed to finalize pomodoro, keeping it pending"
            )
            raise

        self._pending = None
        logger.bind(
            pomodoro_id=pending.pomodoro_id,
            status=pending.status.value,
            finished_minutes=pending.finished_minutes,
        ).info("Pomodoro finalized")
        if pending.next_phase == Phase.COMPLETED:
            self._pomodoro_id = None
            self._work_elapsed = 0.0
            self._relax_elapsed = 0.0
            self._set_phase(Phase.COMPLETED)
            self._queue(EVENT_WORK_COMPLETED)
        else:
            self._reset_to_idle()

    def _completion(self) -> _PendingClose:
        return _PendingClose(
            pomodoro_id=self._pomodoro_id or "",
            status=PomodoroStatus.FINISHED,
            ended_at=self._clock(),
            finished_minutes=self._estimated_minutes,
            task_id=self._task_id,
            next_phase=Phase.COMPLETED,
        )

    def start(self, task_id: str | None = None, estimated_minutes: int | None = None) -> SessionSnapshot:
        """Open a new pomodoro and start working.

        Raises:
            InvalidStateError: Not idle, or an open pomodoro record already exists
            PersistenceError: The record could not be written, or a pending
                close-out still fails
            ValueError: Non-positive estimated minutes
        """
        try:
            with self._lock:
                if self._phase == Phase.FINALIZING and self._pending is not None:
                    self._close(self._pending)
                self._require("start", Phase.IDLE)

                if estimated_minutes is None:
                    estimated_minutes = self._settings.session_durations().work_minutes
                if estimated_minutes <= 0:
                    raise ValueError("Estimated minutes must be positive.")

                existing = self._repository.find_open()
                if existing is not None:
                    raise InvalidStateError("start", self._phase.value, f"Pomodoro {existing.id} is still open")

                try:
                    pomodoro_id = self._repository.open(task_id, self._clock(), estimated_minutes)
                except ConstraintViolation as e:
                    # another process opened a record after find_open()
                    if "open_slot" not in (e.constraint or ""):
                        raise
                    raise InvalidStateError("start", self._phase.value, "Another pomodoro is already open") from e
                self._pomodoro_id = pomodoro_id
                self._task_id = task_id
                self._estimated_minutes = estimated_minutes
                self._work_elapsed = 0.0
                self._relax_elapsed = 0.0
                self._set_phase(Phase.WORKING)
                logger.bind(pomodoro_id=pomodoro_id, task_id=task_id, estimated_minutes=estimated_minutes).info(
                    "Pomodoro started"
                )
                return self._snapshot()
        finally:
            self._flush()

    def pause(self) -> SessionSnapshot:
        try:
            with self._lock:
                self._require("pause", Phase.WORKING)
                self._set_phase(Phase.PAUSED)
                return self._snapshot()
        finally:
            self._flush()

    def resume(self) -> SessionSnapshot:
        try:
            with self._lock:
                self._require("resume", Phase.PAUSED)
                self._set_phase(Phase.WORKING)
                return self._snapshot()
        finally:
            self._flush()

    def tick(self, delta_seconds: float) -> bool:
        """Advance the running counter by delta_seconds.

        Work and relax completion are detected here. In finalizing the pending
        close-out is retried instead, and a repeated failure is logged rather than
        raised. Returns True when the phase changed.
        """
        if delta_seconds < 0:
            raise ValueError("delta_seconds cannot be negative.")

        try:
            with self._lock:
                before = self._phase
                if before == Phase.WORKING:
                    self._work_elapsed = round(self._work_elapsed + delta_seconds, 6)
                    if self._work_elapsed >= self._estimated_minutes * 60:
                        self._close_quietly(self._completion())
                elif before == Phase.RELAXING:
                    self._relax_elapsed = round(self._relax_elapsed + delta_seconds, 6)
                    if self._relax_elapsed >= self._relax_minutes * 60:
                        logger.debug("Relax finished")
                        self._reset_to_idle()
                elif before == Phase.FINALIZING and self._pending is not None:
                    self._close_quietly(self._pending)
                else:
                    return False
                return self._phase != before
        finally:
            self._flush()

    def _close_quietly(self, pending: _PendingClose) -> None:
        try:
            self._close(pending)
        except PersistenceError:
            pass  # parked in finalizing, retried on the next tick

    def finish_now(self) -> SessionSnapshot:
        """Complete the session immediately, crediting the full estimate.

        Raises:
            InvalidStateError: Not working or paused
            PersistenceError: Close-out failed; the controller is left in finalizing
        """
        try:
            with self._lock:
                self._require("finish", Phase.WORKING, Phase.PAUSED)
                self._close(self._completion())
                return self._snapshot()
        finally:
            self._flush()

    def abandon(self) -> SessionSnapshot:
        """Stop the session early.

        An open pomodoro is closed as abandoned with whole minutes worked so far.
        From relaxing the pomodoro is already closed, so only the relax phase ends.

        Raises:
            InvalidStateError: Not working, paused or relaxing
            PersistenceError: Close-out failed; the controller is left in finalizing
        """
        try:
            with self._lock:
                self._require("abandon", Phase.WORKING, Phase.PAUSED, Phase.RELAXING)
                if self._phase == Phase.RELAXING:
                    self._reset_to_idle()
                else:
                    self._close(
                        _PendingClose(
                            pomodoro_id=self._pomodoro_id or "",
                            status=PomodoroStatus.ABANDONED,
                            ended_at=self._clock(),
                            finished_minutes=int(self._work_elapsed // 60),
                            task_id=self._task_id,
                            next_phase=Phase.IDLE,
                        )
                    )
                return self._snapshot()
        finally:
            self._flush()

    def begin_relax(self) -> SessionSnapshot:
        try:
            with self._lock:
                self._require("relax", Phase.COMPLETED)
                self._relax_minutes = self._settings.session_durations().relax_minutes
                self._relax_elapsed = 0.0
                self._set_phase(Phase.RELAXING)
                return self._snapshot()
        finally:
            self._flush()

    def skip_relax(self) -> SessionSnapshot:
        try:
            with self._lock:
                self._require("skip relax", Phase.COMPLETED)
                self._reset_to_idle()
                return self._snapshot()
        finally:
            self._flush()

    def reassign_task(self, task_id: str | None) -> SessionSnapshot:
        """Link the session to another task without touching its timing.

        Raises:
            InvalidStateError: No active session
            PersistenceError: The open record could not be updated; the link is unchanged
        """
        with self._lock:
            if self._phase not in ACTIVE_PHASES:
                raise InvalidStateError("reassign task", self._phase.value)
            if self._pomodoro_id is not None:
                self._repository.set_task(self._pomodoro_id, task_id)
            self._task_id = task_id
            return self._snapshot()

    def retry_finalize(self) -> SessionSnapshot:
        """Retry the parked close-out write.

        Raises:
            InvalidStateError: Nothing is pending
            PersistenceError: The write failed again; still finalizing
        """
        try:
            with self._lock:
                self._require("retry finalize", Phase.FINALIZING)
                if self._pending is None:
                    raise InvalidStateError("retry finalize", self._phase.value, "No close-out is pending")
                self._close(self._pending)
                return self._snapshot()
        finally:
            self._flush()
