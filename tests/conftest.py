"""Root conftest for all tests.

Every test gets its own in-memory SQLite database wired into the lazy engine and
session factory, so services that open their own sessions share it.
"""

import os
from datetime import UTC, date, datetime

os.environ["TASKFLOW_DATABASE_URL"] = "sqlite://"
os.environ["TASKFLOW_TIMEZONE"] = "UTC"

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from taskflow.db.models import Base
from taskflow.db.session import _enable_sqlite_foreign_keys


@pytest.fixture(autouse=True)
def db_engine(monkeypatch):
    """Provide an isolated in-memory SQLite database per test.

    StaticPool keeps one connection so every session sees the same database,
    including sessions opened from other threads.
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    Base.metadata.create_all(engine)

    session_local = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    monkeypatch.setattr("taskflow.db.session._engine", engine)
    monkeypatch.setattr("taskflow.db.session._SessionLocal", session_local)

    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def db_session(db_engine):
    """Session on the test database for direct assertions."""
    from taskflow.db.session import new_session

    session = new_session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def today() -> date:
    return date(2026, 3, 11)


@pytest.fixture
def now(today) -> datetime:
    """Fixed instant on the test day (a Wednesday)."""
    return datetime(today.year, today.month, today.day, 9, 30, tzinfo=UTC)
