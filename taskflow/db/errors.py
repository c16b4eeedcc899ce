"""Error types for the persistence layer.

Raised by the store instead of raw SQLAlchemy exceptions so callers can decide
between retrying later and treating a duplicate write as already done.
"""


class PersistenceError(RuntimeError):
    """Raised when the store rejects a read or write.

    Nothing from the failed unit of work is committed; the caller keeps its
    in-memory state and retries later.
    """


class ConstraintViolation(PersistenceError):
    """Raised when a write violates a unique or check constraint.

    Attributes:
        constraint: Constraint or column name reported by the database, if known
    """

    def __init__(self, message: str, constraint: str | None = None) -> None:
        self.constraint = constraint
        super().__init__(message)
