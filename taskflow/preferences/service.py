"""Day settings: the single configuration record and the settings collaborator.

The record always has id SETTINGS_RECORD_ID. First access creates it with the
configured defaults; a concurrent creator losing the race simply re-reads it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import time
from typing import Protocol

from loguru import logger

from taskflow.config.settings import settings
from taskflow.db.errors import ConstraintViolation
from taskflow.db.models import SETTINGS_RECORD_ID, DaySettings
from taskflow.db.store import open_store


@dataclass(frozen=True)
class SessionDurations:
    work_minutes: int
    relax_minutes: int


class SettingsProvider(Protocol):
    def session_durations(self) -> SessionDurations: ...


def get_day_settings() -> DaySettings:
    """Return the settings record, creating it with defaults on first access."""
    with open_store() as store:
        record = store.get(DaySettings, SETTINGS_RECORD_ID)
        if record is not None:
            return record

        record = store.create(
            DaySettings(
                id=SETTINGS_RECORD_ID,
                work_minutes=settings.default_work_minutes,
                relax_minutes=settings.default_relax_minutes,
                notification_enabled=False,
                notification_time=time(18, 15),
            )
        )
        try:
            store.save()
        except ConstraintViolation:
            logger.debug("Day settings created concurrently, re-reading")
            existing = store.get(DaySettings, SETTINGS_RECORD_ID)
            if existing is None:
                raise
            return existing
        logger.bind(work_minutes=record.work_minutes, relax_minutes=record.relax_minutes).info("Created default day settings")
        return record


def validate_work_minutes(value: int) -> int:
    if not settings.work_minutes_min <= value <= settings.work_minutes_max:
        raise ValueError(f"Work minutes must be between {settings.work_minutes_min} and {settings.work_minutes_max}.")
    return value


def validate_relax_minutes(value: int) -> int:
    if not settings.relax_minutes_min <= value <= settings.relax_minutes_max:
        raise ValueError(f"Relax minutes must be between {settings.relax_minutes_min} and {settings.relax_minutes_max}.")
    return value


def update_day_settings(
    work_minutes: int | None = None,
    relax_minutes: int | None = None,
    notification_enabled: bool | None = None,
    notification_time: time | None = None,
) -> DaySettings:
    """Update any subset of the settings record.

    Raises:
        ValueError: Work or relax minutes outside the configured range
    """
    changes: dict[str, object] = {}
    if work_minutes is not None:
        changes["work_minutes"] = validate_work_minutes(work_minutes)
    if relax_minutes is not None:
        changes["relax_minutes"] = validate_relax_minutes(relax_minutes)
    if notification_enabled is not None:
        changes["notification_enabled"] = notification_enabled
    if notification_time is not None:
        changes["notification_time"] = notification_time.replace(second=0, microsecond=0)

    get_day_settings()
    with open_store() as store:
        record = store.get(DaySettings, SETTINGS_RECORD_ID)
        if record is None:
            raise ValueError("Day settings record missing.")
        store.update(record, **changes)
        store.save()
    logger.bind(**changes).info("Updated day settings")
    return record


class StoredSettingsProvider:
    """Reads durations from the settings record on every call."""

    def session_durations(self) -> SessionDurations:
        record = get_day_settings()
        return SessionDurations(work_minutes=record.work_minutes, relax_minutes=record.relax_minutes)


class StaticSettingsProvider:
    """Fixed durations, for command-line overrides and tests."""

    def __init__(self, work_minutes: int, relax_minutes: int) -> None:
        self._durations = SessionDurations(work_minutes=work_minutes, relax_minutes=relax_minutes)

    def session_durations(self) -> SessionDurations:
        return self._durations
