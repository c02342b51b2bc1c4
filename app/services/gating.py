"""
Stage gating engine.

Derives the ``blocked`` facet of every stage of a project from the stage
order, each stage's ``requires_client_approval`` flag and the status of its
latest approval.  Pure function, recomputed on every read.

Rule (single left-to-right pass over stages sorted by ``order``):
    - the gate starts open, so the first stage is never blocked;
    - a stage is blocked when the gate is closed on arrival;
    - a stage that does not require approval leaves the gate as it is;
    - a stage that requires approval keeps the gate open only when its
      latest approval is ``approved``.  Once closed, the gate stays closed
      for the remaining stages.

Usage:
    from app.services.gating import derive_blocking
    blocked = derive_blocking(stages, {stage_id: latest_approval_status})
    # -> {1: False, 2: True, 3: True}
"""

from __future__ import annotations

from typing import Iterable, Mapping


def derive_blocking(
    stages: Iterable,
    latest_approval_status: Mapping[int, str | None],
) -> dict[int, bool]:
    """Return ``{stage_id: blocked}`` for the given stages.

    Args:
        stages: Stage objects exposing ``id``, ``order`` and
            ``requires_client_approval``.  Sorted here, any order accepted.
        latest_approval_status: Status of the most recent approval per stage
            id; missing key or ``None`` means no approval was ever requested.
    """
    blocked: dict[int, bool] = {}
    gate_open = True
    for stage in sorted(stages, key=lambda s: s.order):
        blocked[stage.id] = not gate_open
        if stage.requires_client_approval:
            gate_open = gate_open and latest_approval_status.get(stage.id) == "approved"
    return blocked


def first_closed_gate(
    stages: Iterable,
    latest_approval_status: Mapping[int, str | None],
):
    """Return the stage currently holding the gate closed, or None."""
    for stage in sorted(stages, key=lambda s: s.order):
        if stage.requires_client_approval and latest_approval_status.get(stage.id) != "approved":
            return stage
    return None
