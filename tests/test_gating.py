"""
Tests: stage gating engine.

Pure function tests over lightweight stage stand-ins.
"""

from types import SimpleNamespace

from app.services.gating import derive_blocking, first_closed_gate


def _stage(sid, order, gated=False):
    return SimpleNamespace(id=sid, order=order, requires_client_approval=gated)


def test_three_ungated_stages_are_all_open():
    stages = [_stage(1, 1), _stage(2, 2), _stage(3, 3)]
    assert derive_blocking(stages, {}) == {1: False, 2: False, 3: False}


def test_gated_first_stage_without_approval_blocks_the_rest():
    stages = [_stage(1, 1, gated=True), _stage(2, 2), _stage(3, 3)]
    assert derive_blocking(stages, {}) == {1: False, 2: True, 3: True}


def test_pending_and_rejected_approvals_keep_gate_closed():
    stages = [_stage(1, 1, gated=True), _stage(2, 2), _stage(3, 3)]
    for status in ("pending", "rejected", None):
        assert derive_blocking(stages, {1: status}) == {1: False, 2: True, 3: True}


def test_approved_gate_opens_following_stages():
    stages = [_stage(1, 1, gated=True), _stage(2, 2), _stage(3, 3)]
    assert derive_blocking(stages, {1: "approved"}) == {1: False, 2: False, 3: False}


def test_first_stage_never_blocked_even_when_gated_and_rejected():
    stages = [_stage(7, 1, gated=True)]
    assert derive_blocking(stages, {7: "rejected"}) == {7: False}


def test_closed_gate_stays_closed_past_a_later_approved_gate():
    stages = [
        _stage(1, 1, gated=True),
        _stage(2, 2, gated=True),
        _stage(3, 3),
    ]
    blocked = derive_blocking(stages, {1: "pending", 2: "approved"})
    assert blocked == {1: False, 2: True, 3: True}


def test_second_gate_blocks_only_what_follows_it():
    stages = [
        _stage(1, 1, gated=True),
        _stage(2, 2),
        _stage(3, 3, gated=True),
        _stage(4, 4),
    ]
    blocked = derive_blocking(stages, {1: "approved", 3: "pending"})
    assert blocked == {1: False, 2: False, 3: False, 4: True}


def test_input_order_does_not_matter():
    stages = [_stage(3, 30), _stage(1, 10, gated=True), _stage(2, 20)]
    assert derive_blocking(stages, {}) == {1: False, 2: True, 3: True}


def test_every_stage_after_unapproved_gate_is_blocked():
    stages = [_stage(i, i, gated=(i == 3)) for i in range(1, 8)]
    blocked = derive_blocking(stages, {3: "rejected"})
    assert [blocked[i] for i in range(1, 8)] == [False, False, False, True, True, True, True]


def test_first_closed_gate():
    stages = [_stage(1, 1, gated=True), _stage(2, 2, gated=True), _stage(3, 3)]
    assert first_closed_gate(stages, {1: "approved", 2: "pending"}).id == 2
    assert first_closed_gate(stages, {1: "approved", 2: "approved"}) is None
    assert first_closed_gate([], {}) is None
