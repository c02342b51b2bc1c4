"""
Agency Delivery Workflow
Notification Dispatcher.

Fire-and-forget delivery of approval events:
    - approval_requested: a client approval link was created
    - approval_confirmed: the client approved a stage
    - approval_reminder:  a pending approval is getting old

Each event becomes an in-app Notification for the agency team and, when the
approval carries a client address and email is enabled in ApprovalSettings,
an email through EmailService.

``notify`` is called after the workflow transaction has been committed and
hands the work to a daemon thread with its own app context and session, so
SMTP latency never delays the caller's response (``NOTIFICATIONS_ASYNC``;
tests run inline).  ``dispatch_now`` does the same work synchronously and is
used by the reminder sweep.  Any failure is logged and swallowed: a lost
notification never undoes or fails the operation that triggered it.
"""

from __future__ import annotations

import logging
import threading

from flask import current_app

from app.models import db
from app.models.approval import ApprovalSettings, StageApproval
from app.models.notification import Notification
from app.models.stage import ProjectStage

logger = logging.getLogger(__name__)

NOTIFICATION_KINDS = frozenset({"approval_requested", "approval_confirmed", "approval_reminder"})

_SEVERITY_BY_URGENCY = {"high": "error", "medium": "warning", "normal": "info"}

# Background dispatch threads still running
_workers: set[threading.Thread] = set()
_workers_lock = threading.Lock()


class NotificationDispatcher:
    """Stateless dispatcher for workflow notifications."""

    @classmethod
    def notify(cls, kind: str, stage_id: int, approval_id: int, **context) -> None:
        """Dispatch one event without blocking the caller.  Never raises."""
        app = current_app._get_current_object()
        if not app.config.get("NOTIFICATIONS_ASYNC", True):
            cls.dispatch_now(kind, stage_id, approval_id, **context)
            return

        worker = threading.Thread(
            target=cls._dispatch_in_background,
            args=(app, kind, stage_id, approval_id, context),
            name=f"notify-{kind}-{approval_id}",
            daemon=True,
        )
        with _workers_lock:
            _workers.add(worker)
        worker.start()

    @classmethod
    def dispatch_now(cls, kind: str, stage_id: int, approval_id: int, **context) -> Notification | None:
        """Dispatch one event in the current thread.  Never raises.

        Returns:
            The in-app Notification created, or None when dispatch failed.
        """
        try:
            notif = cls._dispatch(kind, stage_id, approval_id, context)
            db.session.commit()
            return notif
        except Exception:
            db.session.rollback()
            logger.exception(
                "Notification dispatch failed",
                extra={"event_type": kind, "stage_id": stage_id, "approval_id": approval_id},
            )
            return None

    @staticmethod
    def wait_for_pending(timeout: float | None = None) -> None:
        """Join background dispatch threads (shutdown hooks and tests)."""
        with _workers_lock:
            pending = list(_workers)
        for worker in pending:
            worker.join(timeout)

    @classmethod
    def _dispatch_in_background(cls, app, kind: str, stage_id: int, approval_id: int, context: dict):
        try:
            with app.app_context():
                cls.dispatch_now(kind, stage_id, approval_id, **context)
        finally:
            with _workers_lock:
                _workers.discard(threading.current_thread())

    # ── Queries ───────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(recipient="all", project_id=None, unread_only=False,
                           limit=50, offset=0):
        """
        Retrieve notifications for a recipient, newest first.
        """
        q = Notification.query.filter(
            (Notification.recipient == recipient) | (Notification.recipient == "all")
        )
        if project_id:
            q = q.filter_by(project_id=str(project_id))
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def mark_read(notification_id):
        """Mark a single notification as read.  Returns None when it does not exist."""
        notif = db.session.get(Notification, notification_id)
        if notif:
            notif.mark_read()
            db.session.commit()
        return notif

    # ── Internals ─────────────────────────────────────────────────────────

    @classmethod
    def _dispatch(cls, kind: str, stage_id: int, approval_id: int, context: dict) -> Notification:
        if kind not in NOTIFICATION_KINDS:
            raise ValueError(f"Unknown notification kind: {kind}")

        stage = db.session.get(ProjectStage, stage_id)
        approval = db.session.get(StageApproval, approval_id)
        if stage is None or approval is None:
            raise LookupError(f"stage={stage_id} approval={approval_id} no longer exists")

        title, message, severity = cls._compose(kind, stage, approval, context)
        notif = Notification(
            project_id=stage.project_id,
            recipient=context.get("recipient") or "all",
            title=title,
            message=message,
            category="approval",
            severity=severity,
            entity_type="stage_approval",
            entity_id=approval.id,
        )
        db.session.add(notif)
        db.session.flush()

        # Only the address the agency entered; never one typed on the public link
        email = approval.client_email
        if email and ApprovalSettings.current().email_enabled:
            cls._send_email(kind, stage, approval, email, context)
        return notif

    @staticmethod
    def _compose(kind: str, stage: ProjectStage, approval: StageApproval, context: dict):
        if kind == "approval_requested":
            return (
                f"Approval requested for stage '{stage.name}'",
                f"Requested by {approval.requested_by}. Waiting for the client decision.",
                "info",
            )
        if kind == "approval_confirmed":
            return (
                f"Stage '{stage.name}' approved",
                f"Approved by {approval.approved_by_name}.",
                "success",
            )
        days = context.get("days_pending", 0)
        urgency = context.get("urgency", "normal")
        prefix = "URGENT: " if urgency == "high" else ""
        return (
            f"{prefix}Approval pending for {days} days",
            f"The client has not yet decided on stage '{stage.name}'.",
            _SEVERITY_BY_URGENCY.get(urgency, "info"),
        )

    @staticmethod
    def _send_email(kind: str, stage: ProjectStage, approval: StageApproval, email: str, context: dict):
        from app.services.email_service import URGENCY_COLORS, EmailService

        EmailService.send_from_template(
            to_email=email,
            template_name=kind,
            context={
                "stage_name": stage.name,
                "notes": approval.notes or "",
                "approval_url": context.get("approval_url", ""),
                "days_pending": context.get("days_pending", 0),
                "header_color": URGENCY_COLORS.get(context.get("urgency", "normal"), URGENCY_COLORS["normal"]),
                "approved_by_name": approval.approved_by_name or "",
            },
            approval_id=approval.id,
        )
