from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import Boolean, CheckConstraint, Date, DateTime, ForeignKey, Integer, String, Text, Time
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from taskflow.plans.types import PlanPriority, PlanStatus, PomodoroStatus

SETTINGS_RECORD_ID = 1


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all database models."""


class Plan(Base):
    """Long-lived goal with a date window and lifecycle status.

    Schema:
    - start_date / estimated_end_date: day-granularity window (end optional, defaults to start)
    - ended_at: actual end timestamp, set iff status is finished or abandoned
    - priority / is_urgent: copied onto tasks materialized from this plan
    """

    __tablename__ = "plans"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default=PlanStatus.NOT_STARTED.value, index=True)
    priority: Mapped[str | None] = mapped_column(String, nullable=True, default=PlanPriority.NORMAL.value)
    is_urgent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    start_date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    estimated_end_date: Mapped[dt.date | None] = mapped_column(Date, nullable=True)
    ended_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    review: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    modified_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self) -> str:
        return f"Plan(id={self.id!r}, name={self.name!r}, status={self.status!r})"


class Task(Base):
    """A single day's actionable item, optionally derived from a Plan.

    plan_id is a weak reference: deleting the plan clears it, the task survives.
    """

    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String, nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    is_finished: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    priority: Mapped[str] = mapped_column(String, nullable=False, default=PlanPriority.NORMAL.value)
    is_urgent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    review: Mapped[str | None] = mapped_column(Text, nullable=True)
    notification_time: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    plan_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("plans.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    modified_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self) -> str:
        return f"Task(id={self.id!r}, name={self.name!r}, date={self.date!r}, finished={self.is_finished!r})"


class Pomodoro(Base):
    """One timed focus session.

    A record is open while ended_at is NULL. open_slot is 1 for the open record and
    NULL otherwise; its unique constraint keeps at most one open record in the store.
    status stays NULL until the session is closed as finished or abandoned.
    """

    __tablename__ = "pomodoros"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    task_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True, index=True
    )
    started_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    ended_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str | None] = mapped_column(String, nullable=True)
    estimated_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    finished_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    open_slot: Mapped[int | None] = mapped_column(Integer, nullable=True, unique=True)

    __table_args__ = (
        CheckConstraint(
            f"status IS NULL OR status IN ('{PomodoroStatus.FINISHED.value}', '{PomodoroStatus.ABANDONED.value}')",
            name="ck_pomodoros_status",
        ),
        CheckConstraint("open_slot IS NULL OR open_slot = 1", name="ck_pomodoros_open_slot"),
    )

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    def __repr__(self) -> str:
        return f"Pomodoro(id={self.id!r}, status={self.status!r}, started_at={self.started_at!r})"


class DayMarker(Base):
    """Guard record: task materialization ran for this calendar day.

    Unique on date so concurrent writers cannot both materialize the same day.
    """

    __tablename__ = "day_markers"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, unique=True)
    created_task_for_today: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class DaySettings(Base):
    """Single well-known configuration record (id is always SETTINGS_RECORD_ID)."""

    __tablename__ = "day_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=SETTINGS_RECORD_ID)
    work_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=20)
    relax_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    notification_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notification_time: Mapped[dt.time] = mapped_column(Time, nullable=False, default=dt.time(18, 15))

    __table_args__ = (CheckConstraint(f"id = {SETTINGS_RECORD_ID}", name="ck_day_settings_singleton"),)
