"""
Stage Workflow Blueprint: agency-facing API.

Endpoints:
    GET    /api/v1/projects/<project_id>/workflow
           Returns: 200 with ordered stages, items, progress, blocked facet
           and latest approval.

    POST   /api/v1/projects/<project_id>/stages
           Body: { "stages": [ { "name", "description", "order",
                   "requires_client_approval", "items": [...] } ] }
           Returns: 201 with the created workflow; 409 if stages exist.

    PATCH  /api/v1/stages/<id>/requires-approval
           Body: { "requires_client_approval": true|false }

    POST   /api/v1/checklist-items/<id>/toggle
           Returns: 200 with item, stage and emitted events;
                    409 ERR_STAGE_BLOCKED while an earlier gate is closed.

    POST   /api/v1/stages/<id>/approvals
           Body: { "notes": "...", "client_email": "..." }
           Returns: 201 with the approval and its share_url.

    GET    /api/v1/stages/<id>/approvals
    POST   /api/v1/stages/<id>/attachments
           Body: { "file_name", "file_url", "file_type"?, "file_size"?,
                   "description"? }
    GET    /api/v1/stages/<id>/attachments
    GET    /api/v1/approvals/pending?project_id=...
    POST   /api/v1/approval-changes/<id>/resolve

    GET    /api/v1/approval-settings
    PUT    /api/v1/approval-settings

    GET    /api/v1/notifications?project_id=...&unread_only=true
    POST   /api/v1/notifications/<id>/read

The acting user comes from the X-User header; authentication is handled
in front of this service.

Layer contract:
    - Blueprint: parse + validate input, call service, return JSON response.
    - NO db.session calls here; all writes are owned by the services.
"""

import logging

from flask import Blueprint, jsonify, request

from app.blueprints import page_params
from app.services import approval_reminders, workflow_service
from app.services.notification import NotificationDispatcher
from app.utils.errors import E, api_error, failure_response
from app.utils.helpers import parse_bool

logger = logging.getLogger(__name__)

stages_bp = Blueprint("stages", __name__, url_prefix="/api/v1")


def _current_user():
    """Best-effort current user extraction (no auth enforcement)."""
    return (
        request.headers.get("X-User", "")
        or request.headers.get("X-Forwarded-User", "")
        or "system"
    )


# ═════════════════════════════════════════════════════════════════════════════
# PROJECT WORKFLOW
# ═════════════════════════════════════════════════════════════════════════════

@stages_bp.route("/projects/<project_id>/workflow", methods=["GET"])
def get_workflow(project_id):
    return jsonify(workflow_service.get_project_workflow(project_id)), 200


@stages_bp.route("/projects/<project_id>/stages", methods=["POST"])
def setup_stages(project_id):
    """Create a project's stages from a template payload."""
    data = request.get_json(silent=True) or {}
    result, err = workflow_service.setup_project_stages(project_id, data.get("stages"))
    if err:
        return failure_response(err)
    return jsonify(result), 201


# ═════════════════════════════════════════════════════════════════════════════
# STAGES & CHECKLIST
# ═════════════════════════════════════════════════════════════════════════════

@stages_bp.route("/stages/<int:stage_id>/requires-approval", methods=["PATCH"])
def set_requires_approval(stage_id):
    data = request.get_json(silent=True) or {}
    value = parse_bool(data.get("requires_client_approval"))
    if value is None:
        return api_error(
            E.VALIDATION_INVALID,
            "requires_client_approval must be a boolean",
            details={"field": "requires_client_approval"},
        )
    result, err = workflow_service.set_requires_approval(stage_id, value)
    if err:
        return failure_response(err)
    return jsonify(result), 200


@stages_bp.route("/checklist-items/<int:item_id>/toggle", methods=["POST"])
def toggle_item(item_id):
    result, err = workflow_service.toggle_checklist_item(item_id, _current_user())
    if err:
        return failure_response(err)
    return jsonify(result), 200


# ═════════════════════════════════════════════════════════════════════════════
# APPROVALS
# ═════════════════════════════════════════════════════════════════════════════

@stages_bp.route("/stages/<int:stage_id>/approvals", methods=["POST"])
def request_approval(stage_id):
    """Create a client approval request and return its shareable link."""
    data = request.get_json(silent=True) or {}
    result, err = workflow_service.request_approval(
        stage_id,
        _current_user(),
        notes=data.get("notes"),
        client_email=data.get("client_email"),
    )
    if err:
        return failure_response(err)
    return jsonify(result), 201


@stages_bp.route("/stages/<int:stage_id>/approvals", methods=["GET"])
def list_stage_approvals(stage_id):
    items, err = workflow_service.get_stage_approvals(stage_id)
    if err:
        return failure_response(err)
    return jsonify({"items": items, "total": len(items)}), 200


@stages_bp.route("/stages/<int:stage_id>/attachments", methods=["POST"])
def add_attachment(stage_id):
    """Link a deliverable to the stage; it shows up on the approval link."""
    data = request.get_json(silent=True) or {}
    result, err = workflow_service.add_stage_attachment(stage_id, _current_user(), data)
    if err:
        return failure_response(err)
    return jsonify(result), 201


@stages_bp.route("/stages/<int:stage_id>/attachments", methods=["GET"])
def list_attachments(stage_id):
    items, err = workflow_service.list_stage_attachments(stage_id)
    if err:
        return failure_response(err)
    return jsonify({"items": items, "total": len(items)}), 200


@stages_bp.route("/approvals/pending", methods=["GET"])
def list_pending():
    project_id = request.args.get("project_id") or None
    items = workflow_service.list_pending_approvals(project_id=project_id)
    return jsonify({"items": items, "total": len(items)}), 200


@stages_bp.route("/approval-changes/<int:change_id>/resolve", methods=["POST"])
def resolve_change(change_id):
    result, err = workflow_service.resolve_change_request(change_id, _current_user())
    if err:
        return failure_response(err)
    return jsonify(result), 200


# ═════════════════════════════════════════════════════════════════════════════
# REMINDER SETTINGS
# ═════════════════════════════════════════════════════════════════════════════

@stages_bp.route("/approval-settings", methods=["GET"])
def get_settings():
    return jsonify(approval_reminders.get_settings()), 200


@stages_bp.route("/approval-settings", methods=["PUT"])
def update_settings():
    data = request.get_json(silent=True) or {}
    result, err = approval_reminders.update_settings(data)
    if err:
        return failure_response(err)
    return jsonify(result), 200


# ═════════════════════════════════════════════════════════════════════════════
# NOTIFICATIONS
# ═════════════════════════════════════════════════════════════════════════════

@stages_bp.route("/notifications", methods=["GET"])
def list_notifications():
    """Notifications for the current user (plus broadcasts), newest first."""
    unread_only = parse_bool(request.args.get("unread_only", "false")) or False
    limit, offset = page_params()
    items, total = NotificationDispatcher.list_for_recipient(
        recipient=_current_user(),
        project_id=request.args.get("project_id") or None,
        unread_only=unread_only,
        limit=limit,
        offset=offset,
    )
    return jsonify({"items": [n.to_dict() for n in items], "total": total}), 200


@stages_bp.route("/notifications/<int:nid>/read", methods=["POST"])
def mark_notification_read(nid):
    notif = NotificationDispatcher.mark_read(nid)
    if notif is None:
        return api_error(E.NOT_FOUND, "Notification not found")
    return jsonify(notif.to_dict()), 200
