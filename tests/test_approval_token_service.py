"""
Tests: approval token service: token generation and one-shot resolution.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from app.models import db as _db
from app.models.approval import ApprovalChangeRequest, StageApproval
from app.services import approval_token_service as tokens
from app.services import stage_repository as repo
from app.utils.errors import E


def _pending(make_stage, **kwargs):
    stage = make_stage(requires_client_approval=True, items=1, completed=1)
    approval = tokens.request_approval(stage, "alice", **kwargs)
    _db.session.commit()
    return approval


def test_tokens_are_long_and_unique():
    seen = {tokens.generate_token() for _ in range(200)}
    assert len(seen) == 200
    assert all(len(t) >= 43 for t in seen)


def test_request_approval_stores_pending_row(make_stage):
    approval = _pending(make_stage, notes="  please check  ", client_email="client@example.com")
    assert approval.status == "pending"
    assert approval.notes == "please check"
    assert approval.client_email == "client@example.com"
    assert approval.notification_count == 0
    assert repo.find_approval_by_token(approval.approval_token).id == approval.id


def test_resolve_approve_records_decision(make_stage):
    approval = _pending(make_stage)
    result, err = tokens.resolve(
        approval.approval_token, "approve", "Carol Client",
        approver_email="carol@example.com", client_message="Looks great",
    )
    assert err is None
    assert result.status == "approved"
    assert result.decision == "approve"
    assert result.approved_by_name == "Carol Client"
    assert result.approved_by_email == "carol@example.com"
    assert result.client_message == "Looks great"
    assert result.approved_at is not None


def test_resolve_reject(make_stage):
    approval = _pending(make_stage)
    result, err = tokens.resolve(approval.approval_token, "reject", "Carol")
    assert err is None
    assert result.status == "rejected"
    assert result.decision == "reject"


def test_request_changes_is_a_rejection_with_change_row(make_stage):
    approval = _pending(make_stage)
    result, err = tokens.resolve(
        approval.approval_token, "request_changes", "Carol",
        change_description="Swap the hero image",
    )
    assert err is None
    assert result.status == "rejected"
    assert result.decision == "request_changes"
    changes = ApprovalChangeRequest.query.filter_by(approval_id=approval.id).all()
    assert [c.change_description for c in changes] == ["Swap the hero image"]
    assert changes[0].resolved is False


def test_request_changes_requires_description(make_stage):
    approval = _pending(make_stage)
    result, err = tokens.resolve(approval.approval_token, "request_changes", "Carol")
    assert result is None
    assert err["code"] == E.VALIDATION_REQUIRED
    assert err["details"]["field"] == "change_description"
    assert repo.find_approval_by_token(approval.approval_token).status == "pending"


def test_unknown_token_is_not_found(make_stage):
    result, err = tokens.resolve("no-such-token", "approve", "Carol")
    assert result is None
    assert err["code"] == E.NOT_FOUND


def test_invalid_decision_is_rejected(make_stage):
    approval = _pending(make_stage)
    for bad in ("maybe", None, ["approve"]):
        result, err = tokens.resolve(approval.approval_token, bad, "Carol")
        assert result is None
        assert err["code"] == E.VALIDATION_INVALID


def test_approver_name_required(make_stage):
    approval = _pending(make_stage)
    result, err = tokens.resolve(approval.approval_token, "approve", "   ")
    assert result is None
    assert err["code"] == E.VALIDATION_REQUIRED
    assert err["details"]["field"] == "approver_name"


def test_second_resolution_reports_already_resolved_and_keeps_first(make_stage):
    approval = _pending(make_stage)
    first, err = tokens.resolve(approval.approval_token, "approve", "Carol")
    assert err is None
    _db.session.commit()
    first_at = first.approved_at

    result, err = tokens.resolve(approval.approval_token, "reject", "Mallory")
    assert result is None
    assert err["code"] == E.ALREADY_RESOLVED
    assert err["details"]["decision"] == "approve"
    assert err["details"]["approved_by_name"] == "Carol"

    stored = _db.session.get(StageApproval, approval.id)
    assert stored.status == "approved"
    assert stored.approved_by_name == "Carol"
    assert stored.approved_at == first_at


def test_lost_compare_and_swap_reports_already_resolved(make_stage, monkeypatch):
    """A concurrent winner between lookup and update leaves our call empty-handed."""
    approval = _pending(make_stage)

    def _someone_else_won(approval_id, patch):
        repo.update_approval(
            _db.session.get(StageApproval, approval_id),
            {"status": "approved", "decision": "approve", "approved_by_name": "Winner"},
        )
        return False

    monkeypatch.setattr(repo, "update_approval_if_pending", _someone_else_won)
    result, err = tokens.resolve(approval.approval_token, "reject", "Loser")
    assert result is None
    assert err["code"] == E.ALREADY_RESOLVED
    assert err["details"]["approved_by_name"] == "Winner"


def test_conditional_update_only_applies_while_pending(make_stage):
    approval = _pending(make_stage)
    assert repo.update_approval_if_pending(approval.id, {"status": "approved"}) is True
    assert repo.update_approval_if_pending(approval.id, {"status": "rejected"}) is False
    _db.session.commit()
    _db.session.refresh(approval)
    assert approval.status == "approved"


def test_approver_email_is_validated_and_normalized(make_stage):
    approval = _pending(make_stage)
    result, err = tokens.resolve(approval.approval_token, "approve", "Carol",
                                 approver_email="not-an-address")
    assert result is None
    assert err["code"] == E.VALIDATION_INVALID
    assert err["details"]["field"] == "approver_email"

    result, err = tokens.resolve(approval.approval_token, "approve", "Carol",
                                 approver_email="  carol@EXAMPLE.com ")
    assert err is None
    assert result.approved_by_email == "carol@example.com"


def test_approver_email_can_be_required(make_stage):
    approval = _pending(make_stage)
    result, err = tokens.resolve(approval.approval_token, "approve", "Carol", require_email=True)
    assert result is None
    assert err["code"] == E.VALIDATION_REQUIRED
    assert err["details"]["field"] == "approver_email"
    assert repo.find_approval_by_token(approval.approval_token).status == "pending"


def test_database_allows_one_pending_approval_per_stage(make_stage):
    approval = _pending(make_stage)
    with pytest.raises(IntegrityError):
        tokens.request_approval(approval.stage, "bob")
    _db.session.rollback()
    assert StageApproval.query.filter_by(stage_id=approval.stage_id).count() == 1
