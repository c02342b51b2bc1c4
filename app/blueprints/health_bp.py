"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready   : simple 200 for load balancers
    GET /api/v1/health/live    : detailed system health (DB, Redis)
    GET /api/v1/health/db-diag : workflow tables exist and are queryable
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from app.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")

_WORKFLOW_TABLES = (
    "project_stages",
    "stage_checklist_items",
    "stage_attachments",
    "stage_approvals",
    "approval_change_requests",
    "approval_settings",
    "notifications",
    "email_logs",
)


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness check: always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except SQLAlchemyError as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check database failed: %s", exc)

    # ── Redis (rate limiter storage) ─────────────────────────────────
    redis_url = current_app.config.get("REDIS_URL", "")
    if redis_url and redis_url.startswith("redis"):
        try:
            import redis as redis_lib
            t0 = time.perf_counter()
            r = redis_lib.from_url(redis_url, socket_timeout=2)
            r.ping()
            redis_ms = (time.perf_counter() - t0) * 1000
            checks["redis"] = {"status": "ok", "latency_ms": round(redis_ms, 1)}
        except ImportError:
            checks["redis"] = {"status": "skipped", "detail": "redis package not installed"}
        except Exception as exc:
            checks["redis"] = {"status": "error", "detail": str(exc)}
            # Redis is optional: don't fail overall health
    else:
        checks["redis"] = {"status": "skipped", "detail": "in-memory rate limit storage"}

    # ── App info ─────────────────────────────────────────────────────
    checks["app"] = {
        "name": "Agency Delivery Workflow",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code


@health_bp.route("/db-diag", methods=["GET"])
def db_diagnostic():
    """
    Quick DB diagnostic: check that the workflow tables exist and are queryable.
    Useful for debugging 500 errors right after a deployment.
    """
    results = {}
    for tbl in _WORKFLOW_TABLES:
        try:
            row = db.session.execute(db.text(f"SELECT COUNT(*) FROM {tbl}")).scalar()
            results[tbl] = {"status": "ok", "count": row}
        except SQLAlchemyError as exc:
            db.session.rollback()
            results[tbl] = {"status": "error", "detail": str(exc)}
    return jsonify(results), 200
