"""
Approval Token Service: capability links for client approvals.

An approval request is a StageApproval row carrying a random token.  The
token is the only credential the client needs: whoever holds the link can
record one decision, exactly once.

Design decisions:
    - Tokens come from ``secrets.token_urlsafe`` with 32 bytes of entropy
      (256 bits), well above what online guessing can reach behind the
      public rate limit.
    - Resolution is a compare-and-swap on ``status = 'pending'``.  Of two
      concurrent submissions of the same token only one transitions the row;
      the other reports ALREADY_RESOLVED and leaves the first decision intact.
    - ``request_changes`` is recorded as a rejection plus an
      ApprovalChangeRequest row, so the gate stays closed until a fresh
      approval is requested and approved.

Functions flush but never commit; the workflow service owns the transaction.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timezone

from email_validator import EmailNotValidError, validate_email

from app.models import db
from app.models.approval import DECISION_STATUS, VALID_DECISIONS, ApprovalChangeRequest, StageApproval
from app.services import stage_repository as repo
from app.utils.errors import E, failure

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32


def generate_token() -> str:
    """Return a fresh URL-safe approval token."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def request_approval(
    stage,
    requested_by: str,
    notes: str | None = None,
    client_email: str | None = None,
) -> StageApproval:
    """Create a pending approval for ``stage``.

    Callers check the workflow preconditions (approval required, stage
    complete, nothing pending) before calling.
    """
    approval = StageApproval(
        stage_id=stage.id,
        requested_by=requested_by,
        notes=_clean(notes),
        client_email=_clean(client_email),
        approval_token=generate_token(),
        status="pending",
        notification_count=0,
    )
    repo.insert_approval(approval)
    logger.info(
        "Approval requested",
        extra={"project_id": stage.project_id, "stage_id": stage.id, "approval_id": approval.id},
    )
    return approval


def _clean(value) -> str | None:
    """Stripped string, or None for blanks and non-string JSON values."""
    if not isinstance(value, str):
        return None
    return value.strip() or None


def normalize_email(value, field: str) -> tuple[str | None, dict | None]:
    """Validate an optional email address.

    Returns:
        (normalized_email_or_None, None), or (None, failure) for a malformed address.
    """
    value = _clean(value)
    if value is None:
        return None, None
    try:
        return validate_email(value, check_deliverability=False).normalized, None
    except EmailNotValidError as exc:
        return None, failure(E.VALIDATION_INVALID, f"Invalid email: {exc}", field=field)


def _already_resolved(approval: StageApproval) -> dict:
    return failure(
        E.ALREADY_RESOLVED,
        "This decision was already recorded.",
        status=approval.status,
        decision=approval.decision,
        approved_by_name=approval.approved_by_name,
        approved_at=approval.approved_at.isoformat() if approval.approved_at else None,
    )


def resolve(
    token: str,
    decision: str,
    approver_name: str,
    approver_email: str | None = None,
    client_message: str | None = None,
    signature_data: str | None = None,
    change_description: str | None = None,
    require_email: bool = False,
) -> tuple[StageApproval, None] | tuple[None, dict]:
    """Record the client's decision against ``token``.

    ``require_email`` makes ``approver_email`` mandatory (the public form);
    a given address is always validated.

    Returns:
        (approval, None) on success: the row is refreshed with the stored
        terminal fields.
        (None, failure) with NOT_FOUND, ALREADY_RESOLVED or a validation code.
    """
    approval = repo.find_approval_by_token(token)
    if approval is None:
        return None, failure(E.NOT_FOUND, "Approval link not found")
    if not approval.is_pending:
        return None, _already_resolved(approval)

    if not isinstance(decision, str) or decision not in VALID_DECISIONS:
        return None, failure(
            E.VALIDATION_INVALID,
            f"decision must be one of {sorted(VALID_DECISIONS)}",
            field="decision",
        )
    approver_name = _clean(approver_name) or ""
    if not approver_name:
        return None, failure(E.VALIDATION_REQUIRED, "approver_name is required", field="approver_name")
    approver_email, err = normalize_email(approver_email, "approver_email")
    if err:
        return None, err
    if require_email and approver_email is None:
        return None, failure(E.VALIDATION_REQUIRED, "approver_email is required", field="approver_email")
    change_description = _clean(change_description) or ""
    if decision == "request_changes" and not change_description:
        return None, failure(
            E.VALIDATION_REQUIRED,
            "change_description is required when requesting changes",
            field="change_description",
        )

    won = repo.update_approval_if_pending(approval.id, {
        "status": DECISION_STATUS[decision],
        "decision": decision,
        "approved_at": datetime.now(timezone.utc),
        "approved_by_name": approver_name,
        "approved_by_email": approver_email,
        "client_message": _clean(client_message),
        "signature_data": signature_data or None,
    })
    db.session.refresh(approval)
    if not won:
        logger.warning(
            "Concurrent approval resolution lost",
            extra={"stage_id": approval.stage_id, "approval_id": approval.id},
        )
        return None, _already_resolved(approval)

    if decision == "request_changes":
        repo.insert_change_request(ApprovalChangeRequest(
            approval_id=approval.id,
            change_description=change_description,
        ))
        db.session.refresh(approval)

    logger.info(
        "Approval resolved",
        extra={"stage_id": approval.stage_id, "approval_id": approval.id, "event_type": decision},
    )
    return approval, None
