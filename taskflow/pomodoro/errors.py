"""Error types for the pomodoro session controller."""


class InvalidStateError(RuntimeError):
    """Raised when an operation is invoked from a phase that forbids it.

    Non-fatal: the controller state is unchanged. Callers must transition first
    rather than retrying the same call.

    Attributes:
        operation: Name of the rejected operation
        phase: Phase the controller was in
    """

    def __init__(self, operation: str, phase: str, message: str | None = None) -> None:
        self.operation = operation
        self.phase = phase
        self.message = message or f"Cannot {operation} while {phase}"
        super().__init__(self.message)
