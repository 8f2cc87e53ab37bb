"""Admin edit drafts.

An admin screen keeps the last-known server copy of a task next to a
local draft. ``diff`` turns the pair into the minimal field patch; the
requested status is kept apart because it goes through the transition
validator rather than a plain field write.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from .models import Milestone, Task, TaskStatus, parse_status, require_task

Patch = Dict[str, Any]

EDITABLE_FIELDS = (
    "title",
    "description",
    "public_notes",
    "internal_notes",
    "progress",
    "progress_target",
    "progress_achieved",
    "start_date",
    "end_date",
    "quantity",
    "credit_cost",
    "offer_price",
    "original_price",
    "show_quantity_to_client",
    "show_credits_to_client",
    "show_progress_details",
    "milestones",
)


def _normalize(name: str, value: Any) -> Any:
    if name == "milestones" and value is not None:
        return [m if isinstance(m, Milestone) else Milestone.from_dict(m) for m in value]
    return value


def diff(original: Task, draft: Mapping[str, Any]) -> Patch:
    """Return the editable fields of ``draft`` that differ from ``original``.

    Raises:
        ValueError: If ``draft`` names a field that cannot be edited.
    """
    patch: Patch = {}
    for name, value in draft.items():
        if name == "status":
            continue
        if name not in EDITABLE_FIELDS:
            raise ValueError(f"Field '{name}' is not editable")
        value = _normalize(name, value)
        if getattr(original, name) != value:
            patch[name] = value
    return patch


class TaskDraft:
    """Local edit buffer over a snapshot of a stored task."""

    def __init__(self, original: Task):
        require_task(original, "TaskDraft")
        self.original = original.copy()
        self.changes: Dict[str, Any] = {}

    def set(self, name: str, value: Any) -> "TaskDraft":
        if name == "status":
            value = parse_status(value)
        elif name not in EDITABLE_FIELDS:
            raise ValueError(f"Field '{name}' is not editable")
        self.changes[name] = value
        return self

    def update(self, values: Mapping[str, Any]) -> "TaskDraft":
        for name, value in values.items():
            self.set(name, value)
        return self

    def reset(self) -> None:
        self.changes.clear()

    @property
    def requested_status(self) -> Optional[TaskStatus]:
        """The draft's status if it differs from the original, else None."""
        status = self.changes.get("status")
        if status is None or status == self.original.status:
            return None
        return status

    def field_patch(self) -> Patch:
        return diff(self.original, self.changes)

    @property
    def has_changes(self) -> bool:
        return bool(self.field_patch()) or self.requested_status is not None

    def changed_fields(self) -> List[str]:
        names = sorted(self.field_patch())
        if self.requested_status is not None:
            names.append("status")
        return names
