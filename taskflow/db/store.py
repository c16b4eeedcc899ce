"""Unit-of-work store over a SQLAlchemy session.

The store is the only persistence collaborator the core services talk to:
create/update/delete/get/query stage work, save() commits it all-or-nothing.
"""

from __future__ import annotations

from collections.abc import Generator, Iterable
from contextlib import contextmanager
from typing import Any, TypeVar

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from taskflow.db.errors import ConstraintViolation, PersistenceError
from taskflow.db.models import Base
from taskflow.db.session import new_session

ModelT = TypeVar("ModelT", bound=Base)


def _constraint_from_error(error: IntegrityError) -> str | None:
    """Best-effort constraint name from a driver message like 'UNIQUE constraint failed: day_markers.date'."""
    message = str(error.orig) if error.orig is not None else str(error)
    if ":" in message:
        return message.split(":", 1)[1].strip().splitlines()[0] or None
    return None


class Store:
    """Pending mutations over one session, committed atomically by save()."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def create(self, record: ModelT) -> ModelT:
        self.session.add(record)
        return record

    def create_all(self, records: Iterable[Base]) -> None:
        self.session.add_all(list(records))

    def update(self, record: ModelT, **changes: Any) -> ModelT:
        for field, value in changes.items():
            if not hasattr(record, field):
                raise AttributeError(f"{type(record).__name__} has no field {field!r}")
            setattr(record, field, value)
        return record

    def delete(self, record: Base) -> None:
        self.session.delete(record)

    def get(self, model: type[ModelT], record_id: Any) -> ModelT | None:
        try:
            return self.session.get(model, record_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load {model.__name__} {record_id}: {e}") from e

    def query(self, model: type[ModelT], *criteria: Any, order_by: Any = None) -> list[ModelT]:
        """Return all records of model matching every criterion."""
        stmt = select(model)
        if criteria:
            stmt = stmt.where(*criteria)
        if order_by is not None:
            stmt = stmt.order_by(order_by)
        try:
            return list(self.session.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to query {model.__name__}: {e}") from e

    def save(self) -> None:
        """Commit all pending mutations; on failure roll back everything and raise."""
        pending = len(self.session.new) + len(self.session.dirty) + len(self.session.deleted)
        try:
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            constraint = _constraint_from_error(e)
            logger.bind(pending=pending).warning(f"Store save rejected by constraint: {constraint}")
            raise ConstraintViolation(f"Constraint violated: {constraint}", constraint=constraint) from e
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.bind(pending=pending).error(f"Store save failed, rolled back: {type(e).__name__}: {e}")
            raise PersistenceError(f"Failed to save changes: {e}") from e
        logger.debug(f"Store saved {pending} pending change(s)")

    def close(self) -> None:
        self.session.close()


@contextmanager
def open_store() -> Generator[Store, None, None]:
    """Open a store on a fresh session; anything not saved is discarded on exit."""
    store = Store(new_session())
    try:
        yield store
    finally:
        store.close()
