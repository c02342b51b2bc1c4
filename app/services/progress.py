"""
Stage progress calculation.

Pure function over a stage's checklist items; no database access.

Usage:
    from app.services.progress import stage_progress
    p = stage_progress(stage.items)
    # -> StageProgress(completed_count=2, total_count=4, percent=50, is_fully_complete=False)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable


@dataclass(frozen=True)
class StageProgress:
    """Checklist completion of one stage."""
    completed_count: int
    total_count: int
    percent: int
    is_fully_complete: bool

    def to_dict(self) -> dict:
        return {
            "completed_count": self.completed_count,
            "total_count": self.total_count,
            "percent": self.percent,
            "is_fully_complete": self.is_fully_complete,
        }


def _round_percent(completed: int, total: int) -> int:
    """Integer percentage rounded half-up (1/8 -> 13, not 12)."""
    return (200 * completed + total) // (2 * total)


def stage_progress(items: Iterable) -> StageProgress:
    """Compute completion for a stage from its checklist items.

    An empty checklist is 0 % and never fully complete.
    """
    items = list(items)
    total = len(items)
    completed = sum(1 for item in items if item.is_completed)
    if total == 0:
        return StageProgress(0, 0, 0, False)
    return StageProgress(
        completed_count=completed,
        total_count=total,
        percent=min(100, _round_percent(completed, total)),
        is_fully_complete=completed == total,
    )


def status_label(progress: StageProgress) -> str:
    """Display status for a stage derived from its progress."""
    if progress.is_fully_complete:
        return "completed"
    if progress.completed_count > 0:
        return "in_progress"
    return "pending"
