"""Exceptions raised by the task engine.

Transition and boundary errors are raised before any write is attempted, so
a caller that catches one can rely on the stored task being untouched.
"""

from __future__ import annotations

from typing import Any, Optional


class TaskEngineError(Exception):
    """Base class for all task engine errors."""


class InvalidTransition(TaskEngineError):
    """Raised when a requested status is not reachable from the current one."""

    def __init__(self, current: Any, requested: Any):
        self.current = current
        self.requested = requested
        super().__init__(
            f"Cannot change from {_status_value(current)} to {_status_value(requested)}"
        )

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        return {
            "error": str(self),
            "current_status": _status_value(self.current),
            "requested_status": _status_value(self.requested),
        }


class NotATask(TaskEngineError):
    """Raised when a Plan record is routed into a task-only code path.

    This is a routing bug on the caller's side. It must not be shown to end
    users as a validation message.
    """

    def __init__(self, record_id: Optional[str] = None, operation: Optional[str] = None):
        self.record_id = record_id
        self.operation = operation
        where = f" in {operation}" if operation else ""
        super().__init__(f"Record '{record_id}' is a plan listing, not a task{where}")


class TaskNotFound(TaskEngineError):
    """Raised when the store has no record for the given id."""

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task '{task_id}' not found")


class PartialUpdateError(TaskEngineError):
    """Raised when the first half of a combined admin edit was persisted but
    the second half failed."""

    def __init__(self, task_id: str, applied: str, failed: str, cause: BaseException):
        self.task_id = task_id
        self.applied = applied
        self.failed = failed
        self.cause = cause
        super().__init__(
            f"Task '{task_id}': {applied} was saved but {failed} failed: {cause}"
        )


def _status_value(status: Any) -> str:
    return getattr(status, "value", status)
