"""Progress computation for tasks.

Effective progress is resolved in priority order:

1. an explicit ``progress`` override written by an admin,
2. MANUAL mode: achieved / target,
3. AUTO mode: elapsed share of the [start_date, end_date] window.

The result is a real-valued percentage. Values over 100 mean the task is
overachieving (MANUAL) or overdue (AUTO); AUTO progress of a completed or
cancelled task stops at 100. Incomplete inputs yield 0 rather than an
error.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Callable, Optional

from .models import (
    Milestone,
    ProgressMode,
    Task,
    TaskStatus,
    parse_timestamp,
    require_task,
    utc_now,
)

Clock = Callable[[], datetime]

OVERACHIEVING_THRESHOLD = 100.0

AUTO_COMPLETION_CAP = 100.0

CLOSED_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED})


def compute_progress(task: Task, clock: Clock = utc_now) -> float:
    """Return the effective progress percentage for ``task``."""
    require_task(task, "compute_progress")

    if task.progress is not None:
        return float(task.progress)

    if task.progress_mode == ProgressMode.MANUAL:
        return manual_progress(task.progress_target, task.progress_achieved)

    progress = auto_progress(task.start_date, task.end_date, clock())
    if task.status in CLOSED_STATUSES:
        # overdue only means something while the task is still open
        return min(progress, AUTO_COMPLETION_CAP)
    return progress


def manual_progress(target: Optional[float], achieved: Optional[float]) -> float:
    """Achieved over target as a percentage; 0 without a positive target."""
    if not target or target <= 0:
        return 0.0
    if not achieved:
        return 0.0
    return (achieved / target) * 100


def auto_progress(start_date, end_date, now: datetime) -> float:
    """Elapsed share of the scheduled window as a percentage.

    Zero before the window opens and unclamped once it has closed.
    """
    start = parse_timestamp(start_date)
    end = parse_timestamp(end_date)
    if start is None or end is None:
        return 0.0

    now = parse_timestamp(now)
    if now < start:
        return 0.0

    total = (end - start).total_seconds()
    if total <= 0:
        return 100.0

    elapsed = (now - start).total_seconds()
    return (elapsed / total) * 100


def is_overachieving(progress: float) -> bool:
    return progress > OVERACHIEVING_THRESHOLD


def display_progress(progress: float) -> int:
    """Round for display; halves round up."""
    return int(math.floor(progress + 0.5))


def bar_width(progress: float) -> float:
    """Width of a progress bar in percent of its track."""
    return max(0.0, min(float(progress), 100.0))


def progress_color(progress: float, active: Optional[Milestone] = None) -> str:
    """Bar colour: the active milestone's colour, else a fallback gradient."""
    if active is not None and active.color:
        return active.color
    if progress >= 100:
        return "#22c55e"
    if progress >= 70:
        return "#3b82f6"
    if progress >= 40:
        return "#6366f1"
    return "#8b5cf6"
