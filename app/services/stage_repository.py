"""
Stage repository: the narrow storage surface the workflow core consumes.

Reads are scoped by project or stage; writes touch one record at a time and
only flush.  Committing is owned by the workflow service so that a failed
precondition never leaves a partial write behind.

The one guarded write is :func:`update_approval_if_pending`: a conditional
``UPDATE ... WHERE status = 'pending'`` that lets exactly one of several
concurrent resolutions of the same approval succeed.
"""

from __future__ import annotations

from sqlalchemy import func, select, update

from app.models import db
from app.models.approval import ApprovalChangeRequest, StageApproval
from app.models.stage import ProjectStage, StageAttachment, StageChecklistItem


# ── Reads ──────────────────────────────────────────────────────────────────────


def get_stage(stage_id: int) -> ProjectStage | None:
    return db.session.get(ProjectStage, stage_id)


def get_checklist_item(item_id: int) -> StageChecklistItem | None:
    return db.session.get(StageChecklistItem, item_id)


def get_change_request(change_id: int) -> ApprovalChangeRequest | None:
    return db.session.get(ApprovalChangeRequest, change_id)


def list_stages(project_id: str) -> list[ProjectStage]:
    """Stages of a project in workflow order."""
    return db.session.execute(
        select(ProjectStage)
        .where(ProjectStage.project_id == str(project_id))
        .order_by(ProjectStage.order.asc())
    ).scalars().all()


def list_checklist_items(stage_id: int) -> list[StageChecklistItem]:
    return db.session.execute(
        select(StageChecklistItem)
        .where(StageChecklistItem.stage_id == stage_id)
        .order_by(StageChecklistItem.order.asc(), StageChecklistItem.id.asc())
    ).scalars().all()


def list_attachments(stage_id: int) -> list[StageAttachment]:
    """Attachments of a stage, newest first."""
    return db.session.execute(
        select(StageAttachment)
        .where(StageAttachment.stage_id == stage_id)
        .order_by(StageAttachment.created_at.desc(), StageAttachment.id.desc())
    ).scalars().all()


def list_approvals(stage_id: int) -> list[StageApproval]:
    """Approval history of a stage, newest first."""
    return db.session.execute(
        select(StageApproval)
        .where(StageApproval.stage_id == stage_id)
        .order_by(StageApproval.id.desc())
    ).scalars().all()


def latest_approvals(stage_ids) -> dict[int, StageApproval]:
    """Return the most recent approval per stage id (max id wins)."""
    stage_ids = list(stage_ids)
    if not stage_ids:
        return {}
    latest_sub = (
        select(func.max(StageApproval.id).label("max_id"))
        .where(StageApproval.stage_id.in_(stage_ids))
        .group_by(StageApproval.stage_id)
        .subquery()
    )
    rows = db.session.execute(
        select(StageApproval).join(latest_sub, StageApproval.id == latest_sub.c.max_id)
    ).scalars().all()
    return {a.stage_id: a for a in rows}


def find_approval_by_token(token: str) -> StageApproval | None:
    if not token:
        return None
    return db.session.execute(
        select(StageApproval).where(StageApproval.approval_token == token)
    ).scalar_one_or_none()


def find_pending_approval(stage_id: int) -> StageApproval | None:
    return db.session.execute(
        select(StageApproval)
        .where(StageApproval.stage_id == stage_id, StageApproval.status == "pending")
        .order_by(StageApproval.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def list_pending_approvals(project_id: str | None = None, created_before=None) -> list[StageApproval]:
    stmt = select(StageApproval).where(StageApproval.status == "pending")
    if project_id is not None:
        stmt = stmt.join(ProjectStage, ProjectStage.id == StageApproval.stage_id).where(
            ProjectStage.project_id == str(project_id)
        )
    if created_before is not None:
        stmt = stmt.where(StageApproval.created_at < created_before)
    return db.session.execute(stmt.order_by(StageApproval.created_at.asc())).scalars().all()


# ── Writes ─────────────────────────────────────────────────────────────────────


def _apply_patch(obj, patch: dict):
    for field, value in patch.items():
        setattr(obj, field, value)
    db.session.flush()
    return obj


def update_checklist_item(item: StageChecklistItem, patch: dict) -> StageChecklistItem:
    return _apply_patch(item, patch)


def update_stage(stage: ProjectStage, patch: dict) -> ProjectStage:
    return _apply_patch(stage, patch)


def insert_stage(record: ProjectStage) -> ProjectStage:
    db.session.add(record)
    db.session.flush()
    return record


def insert_checklist_item(record: StageChecklistItem) -> StageChecklistItem:
    db.session.add(record)
    db.session.flush()
    return record


def insert_approval(record: StageApproval) -> StageApproval:
    db.session.add(record)
    db.session.flush()
    return record


def insert_attachment(record: StageAttachment) -> StageAttachment:
    db.session.add(record)
    db.session.flush()
    return record


def insert_change_request(record: ApprovalChangeRequest) -> ApprovalChangeRequest:
    db.session.add(record)
    db.session.flush()
    return record


def update_approval(approval: StageApproval, patch: dict) -> StageApproval:
    return _apply_patch(approval, patch)


def update_change_request(change: ApprovalChangeRequest, patch: dict) -> ApprovalChangeRequest:
    return _apply_patch(change, patch)


def update_approval_if_pending(approval_id: int, patch: dict) -> bool:
    """Apply ``patch`` only while the approval is still pending.

    Returns True when this call performed the transition, False when another
    resolution got there first.
    """
    result = db.session.execute(
        update(StageApproval)
        .where(StageApproval.id == approval_id, StageApproval.status == "pending")
        .values(**patch)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
