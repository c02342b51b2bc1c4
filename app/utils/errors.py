"""Standardised API error responses and typed workflow failures.

Usage
-----
    from app.utils.errors import api_error, failure, E

    return api_error(E.NOT_FOUND, "Stage not found")
    return None, failure(E.STAGE_BLOCKED, "Stage is waiting for client approval")

Services return ``(result, None)`` on success and ``(None, failure)`` on an
expected business outcome.  Blueprints hand the failure to
:func:`failure_response`.
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants."""

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"

    # Workflow state – HTTP 409
    STAGE_BLOCKED = "ERR_STAGE_BLOCKED"
    NOT_READY = "ERR_NOT_READY"
    ALREADY_PENDING = "ERR_ALREADY_PENDING"
    ALREADY_RESOLVED = "ERR_ALREADY_RESOLVED"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.STAGE_BLOCKED: 409,
    E.NOT_READY: 409,
    E.ALREADY_PENDING: 409,
    E.ALREADY_RESOLVED: 409,
    E.INTERNAL: 500,
}

# "Not yet" outcomes: expected while a project moves forward, shown as
# information rather than as an error.
NOT_YET_CODES = frozenset({E.STAGE_BLOCKED, E.NOT_READY})


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (blocking stage, recorded decision, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def failure(code: str, message: str, **details) -> dict:
    """Build a typed failure returned by a service instead of raising."""
    if code in NOT_YET_CODES:
        details.setdefault("state", "not_yet")
    return {"code": code, "error": message, "details": details}


def failure_response(err: dict):
    """Translate a service failure into the standard JSON error response."""
    return api_error(err["code"], err["error"], details=err.get("details") or None)
