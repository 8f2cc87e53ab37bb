"""Data models for the task lifecycle engine.

This module contains the core data structures used throughout the engine:
the closed status and progress-mode enumerations, milestones, the task
record itself (which doubles as a plan listing when ``is_listed_in_plans``
is set), and the small value objects returned by the resolver and the
visibility filter.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import NotATask


class TaskStatus(str, Enum):
    """Lifecycle status of a task.

    ``PENDING_APPROVAL`` is entry-only: it is produced by a plan purchase and
    left only through the store's approve action.
    """

    PENDING_APPROVAL = "PENDING_APPROVAL"
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ProgressMode(str, Enum):
    """How a task's percentage is derived when no override is stored."""

    AUTO = "AUTO"
    MANUAL = "MANUAL"


# Client-facing status labels; internal codes are never shown to purchasers.
STATUS_LABELS: Dict[TaskStatus, str] = {
    TaskStatus.PENDING_APPROVAL: "Pending Admin Approval",
    TaskStatus.PENDING: "Scheduled",
    TaskStatus.ACTIVE: "In Progress",
    TaskStatus.COMPLETED: "Delivered",
    TaskStatus.CANCELLED: "Cancelled",
}

# Legacy status string some stored plan listings carry instead of the flag.
LISTED_STATUS = "LISTED"


def parse_status(value: Any) -> TaskStatus:
    """Parse a status string, accepting any case and '-' separators."""
    if isinstance(value, TaskStatus):
        return value
    normalized = str(value).strip().upper().replace("-", "_")
    try:
        return TaskStatus(normalized)
    except ValueError:
        valid = ", ".join(s.value for s in TaskStatus)
        raise ValueError(f"Invalid status '{value}'. Valid statuses: {valid}")


def parse_progress_mode(value: Any) -> ProgressMode:
    """Parse a progress mode; anything unrecognised falls back to AUTO."""
    if isinstance(value, ProgressMode):
        return value
    try:
        return ProgressMode(str(value).strip().upper())
    except ValueError:
        return ProgressMode.AUTO


def utc_now() -> datetime:
    """Default clock used wherever a ``now()`` provider is not injected."""
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    """Render an aware or naive datetime as an ISO-8601 UTC string."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp or date; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


def _optional_bool(value: Any) -> Optional[bool]:
    """Accept real booleans and the strings "true" / "false" in any case."""
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ValueError(f"Expected true or false, got: {value!r}")


@dataclass(slots=True)
class Milestone:
    """A named percentage threshold on a task's progress timeline."""

    name: str
    percentage: float
    color: Optional[str] = None
    reached_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "percentage": self.percentage,
            "color": self.color,
            "reached_at": self.reached_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Milestone":
        """Create from dictionary representation."""
        try:
            return cls(
                name=data["name"],
                percentage=float(data["percentage"]),
                color=data.get("color"),
                reached_at=data.get("reached_at"),
            )
        except (KeyError, TypeError, AttributeError):
            raise ValueError(f"Milestone requires name and percentage, got: {data!r}")

    @property
    def is_reached(self) -> bool:
        return self.reached_at is not None


def default_milestones() -> List[Milestone]:
    """Fresh copies of the milestone set new tasks start with."""
    return [
        Milestone("Work Started", 10, "#8b5cf6"),
        Milestone("First Draft", 30, "#6366f1"),
        Milestone("Review Phase", 60, "#3b82f6"),
        Milestone("Almost Ready", 80, "#0ea5e9"),
        Milestone("Delivered", 100, "#059669"),
        Milestone("Overachieved", 120, "#10b981"),
    ]


@dataclass(slots=True)
class Task:
    """A unit of client work, or a plan listing when ``is_listed_in_plans``.

    ``progress`` is the admin's explicit override and wins over both computed
    modes. The three ``show_*`` flags are ``None`` until an admin sets them;
    the visibility filter gives each one its own default.
    """

    id: str
    title: str
    description: str = ""
    public_notes: str = ""
    internal_notes: str = ""
    client_id: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    progress_mode: ProgressMode = ProgressMode.AUTO
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    progress_target: Optional[float] = None
    progress_achieved: Optional[float] = None
    progress: Optional[float] = None
    milestones: List[Milestone] = field(default_factory=list)
    show_quantity_to_client: Optional[bool] = None
    show_credits_to_client: Optional[bool] = None
    show_progress_details: Optional[bool] = None
    quantity: Optional[float] = None
    credit_cost: Optional[float] = None
    credits_used: Optional[float] = None
    offer_price: Optional[float] = None
    original_price: Optional[float] = None
    is_listed_in_plans: bool = False
    plan_id: Optional[str] = None
    created_at: str = field(default_factory=lambda: format_timestamp(utc_now()))
    updated_at: str = field(default_factory=lambda: format_timestamp(utc_now()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "public_notes": self.public_notes,
            "internal_notes": self.internal_notes,
            "client_id": self.client_id,
            "status": None if self.is_listed_in_plans else self.status.value,
            "progress_mode": self.progress_mode.value,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "progress_target": self.progress_target,
            "progress_achieved": self.progress_achieved,
            "progress": self.progress,
            "milestones": [m.to_dict() for m in self.milestones],
            "show_quantity_to_client": self.show_quantity_to_client,
            "show_credits_to_client": self.show_credits_to_client,
            "show_progress_details": self.show_progress_details,
            "quantity": self.quantity,
            "credit_cost": self.credit_cost,
            "credits_used": self.credits_used,
            "offer_price": self.offer_price,
            "original_price": self.original_price,
            "is_listed_in_plans": self.is_listed_in_plans,
            "plan_id": self.plan_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Create from dictionary representation."""
        raw_status = data.get("status")
        is_plan = bool(data.get("is_listed_in_plans", False)) or raw_status == LISTED_STATUS
        if raw_status is None or raw_status == LISTED_STATUS:
            status = TaskStatus.PENDING
        else:
            status = parse_status(raw_status)

        now = format_timestamp(utc_now())
        return cls(
            id=data["id"],
            title=data["title"],
            description=data.get("description", ""),
            public_notes=data.get("public_notes", ""),
            internal_notes=data.get("internal_notes", ""),
            client_id=data.get("client_id"),
            status=status,
            progress_mode=parse_progress_mode(data.get("progress_mode")),
            start_date=data.get("start_date"),
            end_date=data.get("end_date"),
            progress_target=_optional_float(data.get("progress_target")),
            progress_achieved=_optional_float(data.get("progress_achieved")),
            progress=_optional_float(data.get("progress")),
            milestones=[Milestone.from_dict(m) for m in data.get("milestones", [])],
            show_quantity_to_client=_optional_bool(data.get("show_quantity_to_client")),
            show_credits_to_client=_optional_bool(data.get("show_credits_to_client")),
            show_progress_details=_optional_bool(data.get("show_progress_details")),
            quantity=_optional_float(data.get("quantity")),
            credit_cost=_optional_float(data.get("credit_cost")),
            credits_used=_optional_float(data.get("credits_used")),
            offer_price=_optional_float(data.get("offer_price")),
            original_price=_optional_float(data.get("original_price")),
            is_listed_in_plans=is_plan,
            plan_id=data.get("plan_id"),
            created_at=data.get("created_at", now),
            updated_at=data.get("updated_at", now),
        )

    def copy(self, **changes: Any) -> "Task":
        """Return a copy with fresh milestone objects and ``changes`` applied."""
        if "milestones" not in changes:
            changes["milestones"] = [replace(m) for m in self.milestones]
        return replace(self, **changes)

    @property
    def is_plan(self) -> bool:
        return self.is_listed_in_plans

    def validate(self) -> List[str]:
        """Validate task data and return any issues."""
        issues = []

        if not self.id:
            issues.append("Task ID is required")
        if not self.title or not self.title.strip():
            issues.append("Title is required")
        for name in ("progress_target", "progress_achieved", "quantity",
                     "credit_cost", "credits_used", "offer_price", "original_price"):
            value = getattr(self, name)
            if value is not None and value < 0:
                issues.append(f"{name} must not be negative, got: {value}")
        if self.progress is not None and self.progress < 0:
            issues.append(f"progress must not be negative, got: {self.progress}")

        try:
            start = parse_timestamp(self.start_date)
            end = parse_timestamp(self.end_date)
        except ValueError as e:
            issues.append(f"Invalid date: {e}")
        else:
            if start and end and end < start:
                issues.append("end_date must not be before start_date")

        for milestone in self.milestones:
            if milestone.percentage < 0:
                issues.append(f"Milestone '{milestone.name}' has a negative percentage")

        return issues


def require_task(record: Task, operation: Optional[str] = None) -> Task:
    """Return ``record`` unchanged, or raise NotATask for a plan listing."""
    if record.is_plan:
        raise NotATask(record.id, operation)
    return record


@dataclass(slots=True)
class MilestonePosition:
    """Where a progress value sits on a milestone timeline."""

    active: Optional[Milestone] = None
    next: Optional[Milestone] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "active": self.active.to_dict() if self.active else None,
            "next": self.next.to_dict() if self.next else None,
        }


@dataclass(slots=True)
class VisibilityFlags:
    """Admin-owned switches for what the client projection exposes."""

    show_quantity_to_client: Optional[bool] = None
    show_credits_to_client: Optional[bool] = None
    show_progress_details: Optional[bool] = None

    @classmethod
    def from_task(cls, task: Task) -> "VisibilityFlags":
        return cls(
            show_quantity_to_client=task.show_quantity_to_client,
            show_credits_to_client=task.show_credits_to_client,
            show_progress_details=task.show_progress_details,
        )

    @property
    def quantity_visible(self) -> bool:
        return self.show_quantity_to_client is True

    @property
    def credits_visible(self) -> bool:
        # Credits are shown unless an admin explicitly hid them.
        return self.show_credits_to_client is not False

    @property
    def progress_details_visible(self) -> bool:
        return self.show_progress_details is True

    def to_dict(self) -> Dict[str, Optional[bool]]:
        """Convert to dictionary representation."""
        return {
            "show_quantity_to_client": self.show_quantity_to_client,
            "show_credits_to_client": self.show_credits_to_client,
            "show_progress_details": self.show_progress_details,
        }
