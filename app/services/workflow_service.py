"""
Stage Workflow Service: orchestration of checklists, gating and approvals.

Every operation that changes workflow state goes through this module:
    - toggle a checklist item (refused while the stage is blocked)
    - flip a stage's ``requires_client_approval`` flag
    - request a client approval and hand back the shareable link
    - record the client's decision from the public link
    - set up the stages of a new project from a template payload
    - link deliverables (attachments) to a stage for the client to review

Design decisions:
    - ``blocked`` is always derived by the gating engine from the stage order
      and the latest approval per stage.  The ``is_blocked`` column is only a
      cache, rewritten on every read and on every write that can move a gate.
    - Every precondition is checked before the first write, so a failure
      leaves nothing behind.  This module owns the commit; the repository and
      token service only flush.
    - Notifications are handed to the dispatcher after the commit and run
      off the request thread.  Their failures are logged by the dispatcher
      and never reach the caller.
    - Returns ``(result, None)`` or ``(None, failure)`` for expected business
      outcomes; only programming errors raise.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from urllib.parse import urlparse

from flask import current_app
from sqlalchemy.exc import IntegrityError

from app.models import db
from app.models.stage import ProjectStage, StageAttachment, StageChecklistItem
from app.services import approval_token_service
from app.services import stage_repository as repo
from app.services.gating import derive_blocking, first_closed_gate
from app.services.notification import NotificationDispatcher
from app.services.progress import stage_progress, status_label
from app.utils.errors import E, failure
from app.utils.helpers import as_utc, commit_or_failure

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────────


def share_url(token: str) -> str:
    """Public link the client opens to review a stage."""
    base = (current_app.config.get("APP_BASE_URL") or "").rstrip("/")
    return f"{base}/approval/{token}"


def _latest_statuses(latest: dict) -> dict[int, str | None]:
    return {stage_id: approval.status for stage_id, approval in latest.items()}


def _gating_snapshot(project_id: str):
    """Load a project's stages and derive their blocked facet.

    Returns:
        (stages, latest_approvals, blocked): nothing is written.
    """
    stages = repo.list_stages(project_id)
    latest = repo.latest_approvals(s.id for s in stages)
    blocked = derive_blocking(stages, _latest_statuses(latest))
    return stages, latest, blocked


def _sync_blocked_cache(stages, blocked: dict[int, bool]) -> int:
    """Overwrite ``is_blocked`` where the cache disagrees.  Returns rows changed."""
    changed = 0
    for stage in stages:
        value = blocked.get(stage.id, False)
        if stage.is_blocked != value:
            repo.update_stage(stage, {"is_blocked": value})
            changed += 1
    return changed


def _refresh_gating(project_id: str):
    """Recompute gating for a project and write the cache (flush only)."""
    stages, latest, blocked = _gating_snapshot(project_id)
    changed = _sync_blocked_cache(stages, blocked)
    if changed:
        logger.info("Gating recomputed", extra={"project_id": project_id, "event_type": "gating_changed"})
    return stages, latest, blocked


def _blocked_failure(stage: ProjectStage, stages, latest) -> dict:
    gate = first_closed_gate(stages, _latest_statuses(latest))
    details = {"stage_id": stage.id}
    if gate is not None:
        gate_approval = latest.get(gate.id)
        details.update({
            "blocking_stage_id": gate.id,
            "blocking_stage_name": gate.name,
            "blocking_approval_status": gate_approval.status if gate_approval else None,
        })
    return failure(
        E.STAGE_BLOCKED,
        "Stage is waiting for a client approval on an earlier stage",
        **details,
    )


def _stage_view(stage: ProjectStage, blocked: bool, latest_approval=None) -> dict:
    progress = stage_progress(stage.items)
    d = stage.to_dict()
    d["blocked"] = blocked
    d["progress"] = progress.to_dict()
    d["items"] = [i.to_dict() for i in stage.items]
    d["latest_approval"] = latest_approval.to_dict() if latest_approval else None
    return d


# ── Reads ──────────────────────────────────────────────────────────────────────


def get_project_workflow(project_id: str) -> dict:
    """Full workflow of a project: ordered stages with items, progress,
    blocked facet and latest approval.

    The ``is_blocked`` cache is rewritten when it disagrees with the derived
    value.  An unknown project simply has no stages.
    """
    project_id = str(project_id)
    stages, latest, blocked = _gating_snapshot(project_id)
    if _sync_blocked_cache(stages, blocked):
        err = commit_or_failure()
        if err:
            logger.warning("Could not persist blocked cache", extra={"project_id": project_id})

    views = [_stage_view(s, blocked[s.id], latest.get(s.id)) for s in stages]
    completed = sum(1 for v in views if v["progress"]["is_fully_complete"])
    return {
        "project_id": project_id,
        "stages": views,
        "summary": {
            "total_stages": len(views),
            "completed_stages": completed,
            "blocked_stages": sum(1 for v in views if v["blocked"]),
        },
    }


def get_stage_approvals(stage_id: int) -> tuple[list, None] | tuple[None, dict]:
    """Approval history of a stage, newest first."""
    stage = repo.get_stage(stage_id)
    if stage is None:
        return None, failure(E.NOT_FOUND, "Stage not found", stage_id=stage_id)
    return [a.to_dict() for a in repo.list_approvals(stage.id)], None


def list_pending_approvals(project_id: str | None = None, now: datetime | None = None) -> list[dict]:
    """Pending approvals, oldest first, with the number of days they have waited."""
    now = now or datetime.now(timezone.utc)
    result = []
    for approval in repo.list_pending_approvals(project_id=project_id):
        d = approval.to_dict()
        d["stage_name"] = approval.stage.name
        d["project_id"] = approval.stage.project_id
        d["days_pending"] = (now - as_utc(approval.created_at)).days
        result.append(d)
    return result


def get_public_approval(token: str) -> tuple[dict, None] | tuple[None, dict]:
    """What the public approval link shows.

    Exposes the stage and its checklist, never internal ids of other stages
    or the token itself.
    """
    approval = repo.find_approval_by_token(token)
    if approval is None:
        return None, failure(E.NOT_FOUND, "Approval link not found")

    stage = approval.stage
    progress = stage_progress(stage.items)
    view = {
        "stage": {
            "name": stage.name,
            "description": stage.description,
            "progress": progress.to_dict(),
            "items": [
                {"description": i.description, "is_completed": i.is_completed}
                for i in stage.items
            ],
        },
        "requested_by": approval.requested_by,
        "notes": approval.notes,
        "status": approval.status,
        "requested_at": approval.created_at.isoformat() if approval.created_at else None,
        "resolved": not approval.is_pending,
        "attachments": [
            {
                "file_name": a.file_name,
                "file_url": a.file_url,
                "file_type": a.file_type,
                "file_size": a.file_size,
                "description": a.description,
            }
            for a in repo.list_attachments(stage.id)
        ],
    }
    if not approval.is_pending:
        view.update({
            "decision": approval.decision,
            "approved_by_name": approval.approved_by_name,
            "approved_at": approval.approved_at.isoformat() if approval.approved_at else None,
            "client_message": approval.client_message,
            "changes": [c.change_description for c in approval.changes],
        })
    return view, None


def list_stage_attachments(stage_id: int) -> tuple[list, None] | tuple[None, dict]:
    stage = repo.get_stage(stage_id)
    if stage is None:
        return None, failure(E.NOT_FOUND, "Stage not found", stage_id=stage_id)
    return [a.to_dict() for a in repo.list_attachments(stage.id)], None


# ── Writes ─────────────────────────────────────────────────────────────────────


def toggle_checklist_item(item_id: int, actor_id: str) -> tuple[dict, None] | tuple[None, dict]:
    """Flip the completion of a checklist item.

    Refused with STAGE_BLOCKED while an earlier gated stage is not approved;
    nothing is written in that case.  When the toggle completes the last
    open item of the stage, a ``stage_completed`` event is returned.
    """
    item = repo.get_checklist_item(item_id)
    if item is None:
        return None, failure(E.NOT_FOUND, "Checklist item not found", item_id=item_id)

    stage = item.stage
    stages, latest, blocked = _gating_snapshot(stage.project_id)
    if blocked.get(stage.id, False):
        logger.info(
            "Toggle refused on blocked stage",
            extra={"project_id": stage.project_id, "stage_id": stage.id, "event_type": "stage_blocked"},
        )
        return None, _blocked_failure(stage, stages, latest)

    before = stage_progress(stage.items)
    now_completed = not item.is_completed
    repo.update_checklist_item(item, {
        "is_completed": now_completed,
        "completed_at": datetime.now(timezone.utc) if now_completed else None,
        "completed_by": actor_id if now_completed else None,
    })
    after = stage_progress(stage.items)
    new_status = status_label(after)
    if stage.status != new_status:
        repo.update_stage(stage, {"status": new_status})
    _sync_blocked_cache(stages, blocked)

    err = commit_or_failure()
    if err:
        return None, err

    events = []
    if after.is_fully_complete and not before.is_fully_complete:
        events.append({"type": "stage_completed", "stage_id": stage.id, "stage_name": stage.name})
        logger.info(
            "Stage completed",
            extra={"project_id": stage.project_id, "stage_id": stage.id, "event_type": "stage_completed"},
        )

    return {
        "item": item.to_dict(),
        "stage": _stage_view(stage, False, latest.get(stage.id)),
        "events": events,
    }, None


def set_requires_approval(stage_id: int, value: bool) -> tuple[dict, None] | tuple[None, dict]:
    """Turn the client approval gate of a stage on or off and recompute gating."""
    stage = repo.get_stage(stage_id)
    if stage is None:
        return None, failure(E.NOT_FOUND, "Stage not found", stage_id=stage_id)

    repo.update_stage(stage, {"requires_client_approval": bool(value)})
    stages, latest, blocked = _refresh_gating(stage.project_id)
    err = commit_or_failure()
    if err:
        return None, err

    logger.info(
        "Stage approval requirement changed",
        extra={"project_id": stage.project_id, "stage_id": stage.id},
    )
    return _stage_view(stage, blocked[stage.id], latest.get(stage.id)), None


def request_approval(
    stage_id: int,
    actor_id: str,
    notes: str | None = None,
    client_email: str | None = None,
) -> tuple[dict, None] | tuple[None, dict]:
    """Create a pending client approval for a completed, gated stage.

    Returns:
        ({"approval": ..., "share_url": ...}, None) on success.
        (None, failure) with NOT_FOUND, NOT_READY or ALREADY_PENDING.
    """
    stage = repo.get_stage(stage_id)
    if stage is None:
        return None, failure(E.NOT_FOUND, "Stage not found", stage_id=stage_id)
    if not stage.requires_client_approval:
        return None, failure(
            E.NOT_READY, "Stage does not require client approval",
            stage_id=stage.id, reason="approval_not_required",
        )
    progress = stage_progress(stage.items)
    if not progress.is_fully_complete:
        return None, failure(
            E.NOT_READY, "Complete every checklist item before requesting approval",
            stage_id=stage.id, reason="checklist_incomplete", progress=progress.to_dict(),
        )
    pending = repo.find_pending_approval(stage.id)
    if pending is not None:
        return None, failure(
            E.ALREADY_PENDING, "An approval is already pending for this stage",
            stage_id=stage.id, approval_id=pending.id,
        )

    client_email, err = approval_token_service.normalize_email(client_email, "client_email")
    if err:
        return None, err

    try:
        approval = approval_token_service.request_approval(
            stage, requested_by=actor_id, notes=notes, client_email=client_email,
        )
    except IntegrityError:
        # A concurrent request inserted its pending row first
        db.session.rollback()
        pending = repo.find_pending_approval(stage_id)
        return None, failure(
            E.ALREADY_PENDING, "An approval is already pending for this stage",
            stage_id=stage_id, approval_id=pending.id if pending else None,
        )
    _refresh_gating(stage.project_id)
    err = commit_or_failure()
    if err:
        return None, err

    url = share_url(approval.approval_token)
    NotificationDispatcher.notify(
        "approval_requested", stage.id, approval.id,
        approval_url=url, recipient=actor_id,
    )
    return {"approval": approval.to_dict(include_token=True), "share_url": url}, None


def resolve_approval(
    token: str,
    decision: str,
    approver_name: str,
    approver_email: str | None = None,
    client_message: str | None = None,
    signature_data: str | None = None,
    change_description: str | None = None,
    require_email: bool = False,
) -> tuple[dict, None] | tuple[None, dict]:
    """Record the client's decision and recompute gating for the project.

    At most one resolution per approval succeeds; a second one (sequential
    or concurrent) gets ALREADY_RESOLVED with the first decision untouched.
    """
    approval, err = approval_token_service.resolve(
        token, decision, approver_name,
        approver_email=approver_email,
        client_message=client_message,
        signature_data=signature_data,
        change_description=change_description,
        require_email=require_email,
    )
    if err:
        db.session.rollback()
        return None, err

    stage = approval.stage
    _refresh_gating(stage.project_id)
    err = commit_or_failure()
    if err:
        return None, err

    if approval.status == "approved":
        NotificationDispatcher.notify("approval_confirmed", stage.id, approval.id)

    return {
        "approval": approval.to_dict(),
        "stage": {"id": stage.id, "name": stage.name, "project_id": stage.project_id},
    }, None


def resolve_change_request(change_id: int, actor_id: str) -> tuple[dict, None] | tuple[None, dict]:
    """Mark a client's change request as handled by the agency."""
    change = repo.get_change_request(change_id)
    if change is None:
        return None, failure(E.NOT_FOUND, "Change request not found", change_id=change_id)
    if change.resolved:
        return None, failure(
            E.ALREADY_RESOLVED, "Change request was already resolved",
            change_id=change.id, resolved_by=change.resolved_by,
        )

    repo.update_change_request(change, {
        "resolved": True,
        "resolved_at": datetime.now(timezone.utc),
        "resolved_by": actor_id,
    })
    err = commit_or_failure()
    if err:
        return None, err
    logger.info("Change request resolved", extra={"approval_id": change.approval_id})
    return change.to_dict(), None


def add_stage_attachment(stage_id: int, actor_id: str, data: dict) -> tuple[dict, None] | tuple[None, dict]:
    """Link a deliverable to a stage so the client sees it on the approval link.

    ``file_url`` must be an absolute http(s) link; the file itself lives in
    external storage.
    """
    stage = repo.get_stage(stage_id)
    if stage is None:
        return None, failure(E.NOT_FOUND, "Stage not found", stage_id=stage_id)

    file_name = data.get("file_name")
    if not isinstance(file_name, str) or not file_name.strip():
        return None, failure(E.VALIDATION_REQUIRED, "file_name is required", field="file_name")
    file_url = data.get("file_url")
    if not isinstance(file_url, str) or not file_url.strip():
        return None, failure(E.VALIDATION_REQUIRED, "file_url is required", field="file_url")
    parsed = urlparse(file_url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc or len(file_url) > 2048:
        return None, failure(E.VALIDATION_INVALID, "file_url must be an http(s) URL", field="file_url")
    file_size = data.get("file_size")
    if file_size is not None and (isinstance(file_size, bool) or not isinstance(file_size, int) or file_size < 0):
        return None, failure(E.VALIDATION_INVALID, "file_size must be a non-negative integer", field="file_size")
    file_type = data.get("file_type")
    if not isinstance(file_type, str) or not file_type.strip():
        file_type = "application/octet-stream"
    description = data.get("description")
    if isinstance(description, str):
        description = description.strip() or None
    else:
        description = None

    attachment = repo.insert_attachment(StageAttachment(
        stage_id=stage.id,
        file_name=file_name.strip()[:255],
        file_url=file_url.strip(),
        file_type=file_type.strip()[:100],
        file_size=file_size,
        description=description,
        uploaded_by=actor_id,
    ))
    err = commit_or_failure()
    if err:
        return None, err

    logger.info(
        "Stage attachment added",
        extra={"project_id": stage.project_id, "stage_id": stage.id},
    )
    return attachment.to_dict(), None


def setup_project_stages(project_id: str, stages: list) -> tuple[dict, None] | tuple[None, dict]:
    """Create the stages of a project and their checklist items.

    Args:
        project_id: Opaque project identifier.
        stages: List of ``{"name", "description"?, "order"?,
            "requires_client_approval"?, "items": [str | {"description", "notes"?}]}``.
            ``order`` defaults to the list position (1-based).

    Returns:
        (workflow, None) on success.
        (None, failure) on validation error, or CONFLICT_DUPLICATE when the
        project already has stages.
    """
    project_id = str(project_id or "").strip()
    if not project_id:
        return None, failure(E.VALIDATION_REQUIRED, "project_id is required", field="project_id")
    if not isinstance(stages, list) or not stages:
        return None, failure(E.VALIDATION_REQUIRED, "stages must be a non-empty list", field="stages")

    planned = []
    seen_orders = set()
    for pos, raw in enumerate(stages, start=1):
        if not isinstance(raw, dict) or not str(raw.get("name") or "").strip():
            return None, failure(E.VALIDATION_REQUIRED, f"stage #{pos}: name is required", field="name")
        order = raw.get("order", pos)
        if isinstance(order, bool) or not isinstance(order, int):
            return None, failure(E.VALIDATION_INVALID, f"stage #{pos}: order must be an integer", field="order")
        if order in seen_orders:
            return None, failure(E.VALIDATION_INVALID, f"stage #{pos}: duplicate order {order}", field="order")
        seen_orders.add(order)

        items = raw.get("items") or []
        if not isinstance(items, list):
            return None, failure(E.VALIDATION_INVALID, f"stage #{pos}: items must be a list", field="items")
        planned_items = []
        for raw_item in items:
            if isinstance(raw_item, str):
                raw_item = {"description": raw_item}
            description = str((raw_item or {}).get("description") or "").strip() if isinstance(raw_item, dict) else ""
            if not description:
                return None, failure(
                    E.VALIDATION_REQUIRED, f"stage #{pos}: item description is required", field="items",
                )
            planned_items.append({"description": description, "notes": raw_item.get("notes")})

        planned.append({
            "order": order,
            "name": str(raw["name"]).strip(),
            "description": str(raw.get("description") or ""),
            "requires_client_approval": bool(raw.get("requires_client_approval", False)),
            "items": planned_items,
        })

    if repo.list_stages(project_id):
        return None, failure(
            E.CONFLICT_DUPLICATE, "Project already has stages", project_id=project_id,
        )

    for entry in planned:
        stage = repo.insert_stage(ProjectStage(
            project_id=project_id,
            order=entry["order"],
            name=entry["name"],
            description=entry["description"],
            requires_client_approval=entry["requires_client_approval"],
            status="pending",
            is_blocked=False,
        ))
        for idx, planned_item in enumerate(entry["items"], start=1):
            repo.insert_checklist_item(StageChecklistItem(
                stage_id=stage.id,
                description=planned_item["description"],
                notes=planned_item["notes"],
                order=idx,
            ))
    db.session.expire_all()
    _refresh_gating(project_id)
    err = commit_or_failure()
    if err:
        return None, err

    logger.info("Project stages created", extra={"project_id": project_id})
    return get_project_workflow(project_id), None
