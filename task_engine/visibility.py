"""Client and admin projections of a task.

Both projections share ``progress_view`` so the admin detail screen, the
client list and the client detail screen always agree on percentage,
milestones and colour.

Client-side gating:

- ``quantity`` needs ``show_quantity_to_client`` to be set true.
- ``credit_cost`` / ``credits_used`` are shown unless
  ``show_credits_to_client`` is explicitly false.
- raw ``progress_target`` / ``progress_achieved`` need
  ``show_progress_details``; the computed percentage is always shown.
- ``internal_notes`` is never shown.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from .milestones import resolve, sort_milestones
from .models import STATUS_LABELS, Task, VisibilityFlags, require_task, utc_now
from .progress import (
    Clock,
    bar_width,
    compute_progress,
    display_progress,
    is_overachieving,
    progress_color,
)

# Fields every client projection carries, copied as-is from the record.
CLIENT_BASE_FIELDS = (
    "id",
    "title",
    "description",
    "public_notes",
    "start_date",
    "end_date",
    "offer_price",
    "original_price",
)


def progress_view(task: Task, clock: Clock = utc_now) -> Dict[str, Any]:
    """Derived progress block shared by every read path."""
    progress = compute_progress(task, clock)
    position = resolve(task.milestones, progress)
    return {
        "progress": progress,
        "progress_display": display_progress(progress),
        "progress_mode": task.progress_mode.value,
        "bar_width": bar_width(progress),
        "is_overachieving": is_overachieving(progress),
        "color": progress_color(progress, position.active),
        "active_milestone": position.active.to_dict() if position.active else None,
        "next_milestone": position.next.to_dict() if position.next else None,
        "milestones": [
            dict(m.to_dict(), reached=m.percentage <= progress)
            for m in sort_milestones(task.milestones)
        ],
    }


def filter_for_client(
    task: Task,
    flags: Optional[VisibilityFlags] = None,
    clock: Clock = utc_now,
) -> Dict[str, Any]:
    """Build the payload a purchasing client is allowed to see."""
    require_task(task, "filter_for_client")
    if flags is None:
        flags = VisibilityFlags.from_task(task)

    view: Dict[str, Any] = {name: getattr(task, name) for name in CLIENT_BASE_FIELDS}
    view["status"] = task.status.value
    view["status_label"] = STATUS_LABELS[task.status]
    view.update(progress_view(task, clock))

    if flags.quantity_visible:
        view["quantity"] = task.quantity

    if flags.credits_visible:
        view["credit_cost"] = task.credit_cost
        view["credits_used"] = task.credits_used

    if flags.progress_details_visible:
        view["progress_target"] = task.progress_target
        view["progress_achieved"] = task.progress_achieved

    return view


def admin_view(task: Task, clock: Clock = utc_now) -> Dict[str, Any]:
    """Full record plus the derived progress block."""
    require_task(task, "admin_view")
    view = task.to_dict()
    view["status_label"] = STATUS_LABELS[task.status]
    view["derived"] = progress_view(task, clock)
    return view
