"""Tests for pomodoro persistence and the controller running on the real store."""

from datetime import UTC, datetime, timedelta

import pytest

from taskflow.db.errors import ConstraintViolation, PersistenceError
from taskflow.db.models import Pomodoro
from taskflow.db.store import open_store
from taskflow.plans.types import PomodoroStatus
from taskflow.pomodoro import InvalidStateError, Phase, PomodoroSessionController, SessionHandoff, SqlPomodoroRepository
from taskflow.pomodoro.repository import list_pomodoros
from taskflow.preferences import StoredSettingsProvider, update_day_settings
from taskflow.tasks.service import create_task, delete_task

STARTED = datetime(2026, 3, 11, 9, 0, tzinfo=UTC)


@pytest.fixture
def repository():
    return SqlPomodoroRepository()


def _get(pomodoro_id):
    with open_store() as store:
        return store.get(Pomodoro, pomodoro_id)


def test_open_creates_open_record(repository):
    pomodoro_id = repository.open(None, STARTED, 20)

    record = _get(pomodoro_id)
    assert record.is_open
    assert record.status is None
    assert record.open_slot == 1
    assert record.estimated_minutes == 20
    assert repository.find_open().id == pomodoro_id


def test_second_open_record_rejected_by_store(repository):
    repository.open(None, STARTED, 20)

    with pytest.raises(ConstraintViolation):
        repository.open(None, STARTED + timedelta(minutes=1), 20)

    assert len(list_pomodoros()) == 1


def test_close_sets_outcome_and_frees_slot(repository):
    pomodoro_id = repository.open(None, STARTED, 20)
    ended = STARTED + timedelta(minutes=20)

    repository.close(pomodoro_id, PomodoroStatus.FINISHED, ended, 20, None)

    record = _get(pomodoro_id)
    assert not record.is_open
    assert record.status == PomodoroStatus.FINISHED.value
    assert record.finished_minutes == 20
    assert record.ended_at.replace(tzinfo=None) == ended.replace(tzinfo=None)
    assert record.open_slot is None
    assert repository.find_open() is None
    repository.open(None, ended, 20)


def test_close_is_repeatable(repository):
    pomodoro_id = repository.open(None, STARTED, 20)
    ended = STARTED + timedelta(minutes=5)

    repository.close(pomodoro_id, PomodoroStatus.ABANDONED, ended, 5, None)
    repository.close(pomodoro_id, PomodoroStatus.ABANDONED, ended, 5, None)

    assert _get(pomodoro_id).finished_minutes == 5


def test_close_unknown_record_raises(repository):
    with pytest.raises(PersistenceError):
        repository.close("missing", PomodoroStatus.FINISHED, STARTED, 1, None)


def test_set_task_links_open_record(repository, today):
    task = create_task("Write report", day=today)
    pomodoro_id = repository.open(None, STARTED, 20)

    repository.set_task(pomodoro_id, task.id)

    assert _get(pomodoro_id).task_id == task.id


def test_deleting_task_keeps_pomodoro(repository, today):
    task = create_task("Write report", day=today)
    pomodoro_id = repository.open(task.id, STARTED, 20)
    repository.close(pomodoro_id, PomodoroStatus.FINISHED, STARTED + timedelta(minutes=20), 20, task.id)

    delete_task(task.id)

    record = _get(pomodoro_id)
    assert record is not None
    assert record.task_id is None


def test_controller_uses_stored_durations(repository):
    update_day_settings(work_minutes=3, relax_minutes=1)
    controller = PomodoroSessionController(repository, StoredSettingsProvider())

    snapshot = controller.start()
    controller.tick(180)
    relax = controller.begin_relax()

    assert snapshot.estimated_minutes == 3
    assert relax.relax_minutes == 1
    record = _get(snapshot.active_pomodoro_id)
    assert record.status == PomodoroStatus.FINISHED.value
    assert record.finished_minutes == 3


def test_close_with_deleted_task_leaves_record_unlinked(repository, today):
    task = create_task("Write report", day=today)
    pomodoro_id = repository.open(task.id, STARTED, 20)
    delete_task(task.id)

    repository.close(pomodoro_id, PomodoroStatus.FINISHED, STARTED + timedelta(minutes=20), 20, task.id)

    record = _get(pomodoro_id)
    assert record.status == PomodoroStatus.FINISHED.value
    assert record.task_id is None
    assert repository.find_open() is None


def test_session_completes_after_its_task_is_deleted(repository, today):
    update_day_settings(work_minutes=15, relax_minutes=5)
    task = create_task("Write report", day=today)
    controller = PomodoroSessionController(repository, StoredSettingsProvider())
    snapshot = controller.start(task.id)

    delete_task(task.id)
    for _ in range(5):
        controller.tick(180)

    assert controller.phase == Phase.COMPLETED
    record = _get(snapshot.active_pomodoro_id)
    assert record.status == PomodoroStatus.FINISHED.value
    assert record.finished_minutes == 15
    assert record.task_id is None


def test_session_abandons_after_its_task_is_deleted(repository, today):
    update_day_settings(work_minutes=15, relax_minutes=5)
    task = create_task("Write report", day=today)
    controller = PomodoroSessionController(repository, StoredSettingsProvider())
    snapshot = controller.start(task.id)
    controller.tick(125)

    delete_task(task.id)
    controller.abandon()

    assert controller.phase == Phase.IDLE
    record = _get(snapshot.active_pomodoro_id)
    assert record.status == PomodoroStatus.ABANDONED.value
    assert record.finished_minutes == 2
    assert record.task_id is None
    controller.start()


def test_new_controller_cannot_start_while_record_open(repository):
    first = PomodoroSessionController(repository, StoredSettingsProvider())
    first.start()

    second = PomodoroSessionController(repository, StoredSettingsProvider())
    with pytest.raises(InvalidStateError):
        second.start()

    assert second.phase == Phase.IDLE


class _StaleFindOpen(SqlPomodoroRepository):
    def find_open(self):
        return None


def test_start_after_another_writer_opened_raises_invalid_state():
    repository = _StaleFindOpen()
    repository.open(None, STARTED, 20)
    controller = PomodoroSessionController(repository, StoredSettingsProvider())

    with pytest.raises(InvalidStateError):
        controller.start()

    assert controller.phase == Phase.IDLE
    assert len(list_pomodoros()) == 1


def test_resume_left_open_record_through_handoff(repository):
    pomodoro_id = repository.open(None, STARTED, 3)
    record = repository.find_open()

    handoff = SessionHandoff.from_open_record(record, STARTED + timedelta(seconds=120), running=True)
    controller = PomodoroSessionController(repository, StoredSettingsProvider(), handoff=handoff)
    controller.tick(60)

    assert controller.phase == Phase.COMPLETED
    assert _get(pomodoro_id).status == PomodoroStatus.FINISHED.value
