"""Milestone resolution against effective progress.

Milestones are kept in insertion order on the task; every function here
works on a stable-sorted copy, so among milestones sharing a percentage the
one inserted first wins. Nothing in this module mutates its input.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable, List, Optional

from .models import Milestone, MilestonePosition


def sort_milestones(milestones: Optional[Iterable[Milestone]]) -> List[Milestone]:
    """Ascending by percentage; ``sorted`` is stable so ties keep input order."""
    return sorted(milestones or [], key=lambda m: m.percentage)


def resolve(milestones: Optional[Iterable[Milestone]], progress: float) -> MilestonePosition:
    """Find the active (last reached) and next (first unreached) milestones."""
    active: Optional[Milestone] = None
    upcoming: Optional[Milestone] = None
    current_pct: Optional[float] = None

    for milestone in sort_milestones(milestones):
        if milestone.percentage <= progress:
            # first of a run of equal percentages stays active
            if current_pct is None or milestone.percentage > current_pct:
                active = milestone
                current_pct = milestone.percentage
        elif upcoming is None:
            upcoming = milestone

    return MilestonePosition(active=active, next=upcoming)


def crossed(
    milestones: Optional[Iterable[Milestone]],
    previous: float,
    current: float,
) -> List[Milestone]:
    """Milestones whose threshold lies in ``(previous, current]``."""
    return [
        m for m in sort_milestones(milestones)
        if previous < m.percentage <= current
    ]


def stamp_reached(
    milestones: Optional[Iterable[Milestone]],
    progress: float,
    reached_at: str,
) -> List[Milestone]:
    """Copies of ``milestones`` with ``reached_at`` set where first crossed.

    Insertion order is preserved. A milestone that already carries a stamp
    keeps it, including when progress has since dropped below it.
    """
    stamped: List[Milestone] = []
    for milestone in milestones or []:
        if milestone.reached_at is None and milestone.percentage <= progress:
            stamped.append(replace(milestone, reached_at=reached_at))
        else:
            stamped.append(replace(milestone))
    return stamped
