"""
Public Approval Blueprint: the client-facing approval link.

Endpoints (no authentication; the token in the URL is the credential):
    GET  /approval/<token>
         Returns: 200 with the stage under review and its checklist.
                  Already-decided links still render, with the recorded
                  decision, so a client can see what was submitted.

    POST /approval/<token>
         Body: { "decision": "approve|reject|request_changes",
                 "approver_name": "...", "approver_email": "...",
                 "client_message": "...", "signature_data": "data:...",
                 "change_description": "..." }
         approver_name and approver_email are required.
         Returns: 200 with the recorded decision.
                  409 ERR_ALREADY_RESOLVED with the earlier decision when the
                  link was already used.

Rate limited per remote address (PUBLIC_APPROVAL_RATE_LIMIT) and served with
no-referrer / no-store headers; see app.middleware.
"""

import logging

from flask import Blueprint, jsonify, request

from app.services import workflow_service
from app.utils.errors import E, failure_response

logger = logging.getLogger(__name__)

public_approval_bp = Blueprint("public_approval", __name__, url_prefix="/approval")

_MAX_SIGNATURE_CHARS = 500_000


@public_approval_bp.route("/<token>", methods=["GET"])
def view_approval(token):
    view, err = workflow_service.get_public_approval(token)
    if err:
        return failure_response(err)
    return jsonify(view), 200


@public_approval_bp.route("/<token>", methods=["POST"])
def submit_decision(token):
    data = request.get_json(silent=True) or {}

    signature = data.get("signature_data")
    if signature is not None and (not isinstance(signature, str) or len(signature) > _MAX_SIGNATURE_CHARS):
        return failure_response({
            "code": E.VALIDATION_INVALID,
            "error": "signature_data must be a data URL string",
            "details": {"field": "signature_data"},
        })

    result, err = workflow_service.resolve_approval(
        token,
        data.get("decision"),
        data.get("approver_name"),
        approver_email=data.get("approver_email"),
        client_message=data.get("client_message"),
        signature_data=signature,
        change_description=data.get("change_description"),
        require_email=True,
    )
    if err:
        return failure_response(err)

    approval = result["approval"]
    return jsonify({
        "message": "Thank you, your decision has been recorded.",
        "status": approval["status"],
        "decision": approval["decision"],
        "approved_by_name": approval["approved_by_name"],
        "approved_at": approval["approved_at"],
        "stage_name": result["stage"]["name"],
    }), 200
