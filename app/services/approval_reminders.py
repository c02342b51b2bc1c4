"""
Approval reminder sweep.

Pending approvals that have waited longer than
``ApprovalSettings.days_before_notification`` days get an
``approval_reminder`` notification, at most once every
``notification_frequency_days`` days.

Urgency grows with the wait:
    > 7 days   high
    > 5 days   medium
    otherwise  normal

Run out-of-band, typically from cron::

    flask send-approval-reminders
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from app.models import db
from app.models.approval import ApprovalSettings
from app.services import stage_repository as repo
from app.services.notification import NotificationDispatcher
from app.services.workflow_service import share_url
from app.utils.errors import E, failure
from app.utils.helpers import as_utc, commit_or_failure, parse_bool

logger = logging.getLogger(__name__)

HIGH_URGENCY_DAYS = 7
MEDIUM_URGENCY_DAYS = 5

_SETTINGS_INT_FIELDS = ("days_before_notification", "notification_frequency_days")


def get_settings() -> dict:
    return ApprovalSettings.current().to_dict()


def update_settings(data: dict) -> tuple[dict, None] | tuple[None, dict]:
    """Update the reminder policy, creating the settings row on first write."""
    patch = {}
    for name in _SETTINGS_INT_FIELDS:
        if name not in data:
            continue
        value = data[name]
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            return None, failure(E.VALIDATION_INVALID, f"{name} must be a non-negative integer", field=name)
        patch[name] = value
    if "email_enabled" in data:
        value = parse_bool(data["email_enabled"])
        if value is None:
            return None, failure(E.VALIDATION_INVALID, "email_enabled must be a boolean", field="email_enabled")
        patch["email_enabled"] = value

    settings = ApprovalSettings.current()
    if settings.id is None:
        db.session.add(settings)
    for name, value in patch.items():
        setattr(settings, name, value)
    err = commit_or_failure()
    if err:
        return None, err
    logger.info("Approval settings updated: %s", ", ".join(sorted(patch)) or "no changes")
    return settings.to_dict(), None


def urgency_for(days_pending: int) -> str:
    if days_pending > HIGH_URGENCY_DAYS:
        return "high"
    if days_pending > MEDIUM_URGENCY_DAYS:
        return "medium"
    return "normal"


@dataclass
class ReminderReport:
    """Outcome of one sweep."""
    checked: int = 0
    sent: int = 0
    skipped: int = 0
    failed: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "checked": self.checked,
            "sent": self.sent,
            "skipped": self.skipped,
            "failed": list(self.failed),
        }


def _is_due(approval, now: datetime, frequency_days: int) -> bool:
    last = as_utc(approval.last_notification_sent_at)
    if last is None:
        return True
    return now - last >= timedelta(days=frequency_days)


def send_approval_reminders(now: datetime | None = None) -> ReminderReport:
    """Send reminders for every pending approval that is old enough and due.

    Each approval is handled in its own transaction; one failure is logged
    and the sweep moves on.
    """
    now = as_utc(now) if now else datetime.now(timezone.utc)
    settings = ApprovalSettings.current()
    cutoff = now - timedelta(days=settings.days_before_notification)
    report = ReminderReport()

    candidates = repo.list_pending_approvals()
    for approval in candidates:
        report.checked += 1
        created = as_utc(approval.created_at)
        if created >= cutoff or not _is_due(approval, now, settings.notification_frequency_days):
            report.skipped += 1
            continue

        days_pending = (now - created).days
        approval_id = approval.id
        stage_id = approval.stage_id
        token = approval.approval_token
        try:
            # Resolved since the listing: no bookkeeping, no reminder
            still_pending = repo.update_approval_if_pending(approval_id, {
                "last_notification_sent_at": now,
                "notification_count": (approval.notification_count or 0) + 1,
            })
            db.session.commit()
        except Exception:
            db.session.rollback()
            logger.exception(
                "Reminder bookkeeping failed",
                extra={"stage_id": stage_id, "approval_id": approval_id},
            )
            report.failed.append(approval_id)
            continue
        if not still_pending:
            report.skipped += 1
            continue

        NotificationDispatcher.dispatch_now(
            "approval_reminder", stage_id, approval_id,
            days_pending=days_pending,
            urgency=urgency_for(days_pending),
            approval_url=share_url(token),
        )
        report.sent += 1
        logger.info(
            "Approval reminder sent",
            extra={"stage_id": stage_id, "approval_id": approval_id, "event_type": "approval_reminder"},
        )

    logger.info(
        "Reminder sweep finished: checked=%d sent=%d skipped=%d failed=%d",
        report.checked, report.sent, report.skipped, len(report.failed),
    )
    return report
