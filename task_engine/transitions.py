"""Status transition rules for tasks.

The table below is the only path by which a task's status may change.
Terminal states have no outgoing edges; leaving them is done with
``reopen``, which is deliberately kept out of the table because it jumps
back to ACTIVE regardless of adjacency.

PENDING_APPROVAL has no row: the store's approve action moves a purchased
task to PENDING, after which the table governs it.
"""

from __future__ import annotations

from typing import Dict, FrozenSet

from .errors import InvalidTransition
from .models import TaskStatus, parse_status

TRANSITIONS: Dict[TaskStatus, FrozenSet[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.ACTIVE, TaskStatus.CANCELLED}),
    TaskStatus.ACTIVE: frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES: FrozenSet[TaskStatus] = frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED})

REOPEN_STATUS = TaskStatus.ACTIVE


def allowed_transitions(current: TaskStatus) -> FrozenSet[TaskStatus]:
    """Statuses reachable from ``current`` in one step (excluding itself)."""
    return TRANSITIONS.get(parse_status(current), frozenset())


def is_terminal(status: TaskStatus) -> bool:
    return parse_status(status) in TERMINAL_STATUSES


def can_transition(current: TaskStatus, requested: TaskStatus) -> bool:
    """True when ``requested`` is the current status or one step away."""
    current = parse_status(current)
    requested = parse_status(requested)
    if requested == current:
        return True
    return requested in allowed_transitions(current)


def validate_transition(current: TaskStatus, requested: TaskStatus) -> bool:
    """Check a requested status change.

    Returns:
        False when ``requested`` equals ``current`` (a no-op, nothing to
        persist), True when the change is allowed.

    Raises:
        InvalidTransition: If ``requested`` is not reachable from ``current``.
    """
    current = parse_status(current)
    requested = parse_status(requested)
    if requested == current:
        return False
    if requested not in allowed_transitions(current):
        raise InvalidTransition(current, requested)
    return True


def reopen(current: TaskStatus) -> TaskStatus:
    """Return the status a terminal task is revived into.

    Raises:
        InvalidTransition: If ``current`` is not terminal.
    """
    current = parse_status(current)
    if current not in TERMINAL_STATUSES:
        raise InvalidTransition(current, REOPEN_STATUS)
    return REOPEN_STATUS


def transition_guide() -> Dict[str, object]:
    """Describe the lifecycle for tool users and admin screens."""
    return {
        "transitions": {
            status.value: sorted(t.value for t in targets)
            for status, targets in TRANSITIONS.items()
        },
        "terminal": sorted(s.value for s in TERMINAL_STATUSES),
        "reopen_to": REOPEN_STATUS.value,
        "entry_only": [TaskStatus.PENDING_APPROVAL.value],
    }
