"""Tests for the unit-of-work store."""

from datetime import date

import pytest
from sqlalchemy.exc import OperationalError

from taskflow.db.errors import ConstraintViolation, PersistenceError
from taskflow.db.models import DayMarker, Task
from taskflow.db.session import get_session
from taskflow.db.store import Store, open_store


def test_save_commits_all_pending_changes():
    with open_store() as store:
        store.create_all([Task(name="a", date=date(2026, 3, 11)), Task(name="b", date=date(2026, 3, 11))])
        store.save()

    with open_store() as store:
        assert sorted(task.name for task in store.query(Task, order_by=Task.name)) == ["a", "b"]


def test_unsaved_changes_are_discarded_on_close():
    with open_store() as store:
        store.create(Task(name="draft", date=date(2026, 3, 11)))

    with open_store() as store:
        assert store.query(Task) == []


def test_constraint_violation_rolls_back_whole_unit():
    day = date(2026, 3, 11)
    with open_store() as store:
        store.create(DayMarker(date=day))
        store.save()

    with open_store() as store:
        store.create(Task(name="extra", date=day))
        store.create(DayMarker(date=day))
        with pytest.raises(ConstraintViolation) as exc:
            store.save()

    assert "day_markers" in exc.value.constraint
    with open_store() as store:
        assert store.query(Task) == []
        assert len(store.query(DayMarker)) == 1


def test_other_database_errors_become_persistence_errors(monkeypatch):
    with open_store() as store:
        store.create(Task(name="x", date=date(2026, 3, 11)))

        def broken_commit():
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        monkeypatch.setattr(store.session, "commit", broken_commit)
        with pytest.raises(PersistenceError) as exc:
            store.save()

    assert not isinstance(exc.value, ConstraintViolation)


def test_update_rejects_unknown_fields():
    with open_store() as store:
        task = store.create(Task(name="x", date=date(2026, 3, 11)))
        with pytest.raises(AttributeError):
            store.update(task, colour="red")


def test_update_and_delete():
    with open_store() as store:
        task = store.create(Task(name="x", date=date(2026, 3, 11)))
        store.save()
        store.update(task, name="y")
        store.save()
        assert store.get(Task, task.id).name == "y"
        store.delete(task)
        store.save()
        assert store.get(Task, task.id) is None


def test_get_session_commits_on_exit_and_rolls_back_on_error():
    with get_session() as session:
        session.add(Task(name="kept", date=date(2026, 3, 11)))

    with pytest.raises(RuntimeError):
        with get_session() as session:
            session.add(Task(name="dropped", date=date(2026, 3, 11)))
            session.flush()
            raise RuntimeError("boom")

    with get_session() as session:
        assert [task.name for task in Store(session).query(Task)] == ["kept"]
