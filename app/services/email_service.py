"""
Agency Delivery Workflow
Email Service.

Sends approval-related emails with template support.
When SMTP is not configured, emails are logged but not sent (dev/test mode).

Uses:
    - Flask-Mail compatible config (MAIL_SERVER, MAIL_PORT, etc.)
    - Falls back to logging-only mode when SMTP is not configured
    - All emails are recorded in EmailLog for audit

Configuration (env vars):
    MAIL_SERVER     SMTP host (default: None → log-only mode)
    MAIL_PORT       SMTP port (default: 587)
    MAIL_USE_TLS    Use TLS (default: true)
    MAIL_USERNAME   SMTP username
    MAIL_PASSWORD   SMTP password
    MAIL_DEFAULT_SENDER  Default from address
"""

from __future__ import annotations

import logging
import smtplib
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from flask import current_app
from markupsafe import escape

from app.models import db
from app.models.notification import EmailLog

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Email Templates
# ═══════════════════════════════════════════════════════════════════════════

_LAYOUT = """
<div style="font-family: 'Inter', Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <div style="background: {header_color}; color: white; padding: 16px 24px; border-radius: 8px 8px 0 0;">
        <h2 style="margin: 0; font-size: 18px;">{heading}</h2>
    </div>
    <div style="background: #f8fafc; padding: 24px; border: 1px solid #e2e8f0; border-top: none;">
        {body}
    </div>
    <div style="background: #f1f5f9; padding: 12px 24px; border-radius: 0 0 8px 8px;
                border: 1px solid #e2e8f0; border-top: none; text-align: center;">
        <p style="color: #94a3b8; font-size: 12px; margin: 0;">Automated message, please do not reply</p>
    </div>
</div>
"""

_BUTTON = (
    '<p><a href="{approval_url}" style="background: #2563eb; color: white; padding: 10px 18px;'
    ' border-radius: 6px; text-decoration: none;">Review stage</a></p>'
)

_TEMPLATES: dict[str, dict[str, str]] = {
    "approval_requested": {
        "subject": "Approval requested: {stage_name}",
        "html": _LAYOUT.format(
            header_color="#1e293b",
            heading="Your approval is requested",
            body=(
                '<p style="color: #64748b; line-height: 1.6;">The stage <strong>{stage_name}</strong>'
                " is ready for your review.</p>"
                '<p style="color: #64748b;">{notes}</p>' + _BUTTON
            ),
        ),
    },
    "approval_reminder": {
        "subject": "Reminder: {stage_name} has been waiting {days_pending} days",
        "html": _LAYOUT.format(
            header_color="{header_color}",
            heading="Approval still pending",
            body=(
                '<p style="color: #64748b; line-height: 1.6;">The stage <strong>{stage_name}</strong>'
                " has been waiting for your decision for {days_pending} days.</p>" + _BUTTON
            ),
        ),
    },
    "approval_confirmed": {
        "subject": "Stage approved: {stage_name}",
        "html": _LAYOUT.format(
            header_color="#16a34a",
            heading="Thank you for your approval",
            body=(
                '<p style="color: #64748b; line-height: 1.6;">{approved_by_name} approved the stage'
                " <strong>{stage_name}</strong>. The team will proceed with the next stage.</p>"
            ),
        ),
    },
}

URGENCY_COLORS = {
    "normal": "#1e293b",
    "medium": "#f59e0b",
    "high": "#dc2626",
}


class EmailService:
    """
    Email sending service with template support.

    In development/test mode (no MAIL_SERVER configured), emails are
    logged to the database but not actually sent via SMTP.
    """

    @staticmethod
    def is_configured() -> bool:
        """Check if SMTP is configured."""
        return bool(current_app.config.get("MAIL_SERVER"))

    @staticmethod
    def get_template(template_name: str) -> dict[str, str] | None:
        return _TEMPLATES.get(template_name)

    @classmethod
    def send(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        subject: str,
        html_body: str,
        template_name: str | None = None,
        approval_id: int | None = None,
    ) -> EmailLog:
        """
        Send an email and log it.

        If SMTP is not configured, the email is logged with status='sent'
        (in dev mode) to simulate sending without actual delivery.
        """
        log = EmailLog(
            recipient_email=to_email,
            recipient_name=to_name,
            subject=subject,
            template_name=template_name,
            status="queued",
            approval_id=approval_id,
        )
        db.session.add(log)
        db.session.flush()

        if not cls.is_configured():
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            logger.info(
                "Email (dev mode): to=%s subject='%s' template=%s",
                to_email, subject, template_name,
            )
            return log

        try:
            cls._send_smtp(to_email=to_email, to_name=to_name,
                           subject=subject, html_body=html_body)
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            logger.info("Email sent: to=%s subject='%s'", to_email, subject)
        except (smtplib.SMTPException, OSError) as exc:
            log.status = "failed"
            log.error_message = str(exc)[:1000]
            logger.error("Email failed: to=%s error=%s", to_email, exc)

        return log

    @classmethod
    def send_from_template(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        template_name: str,
        context: dict[str, Any],
        approval_id: int | None = None,
    ) -> EmailLog | None:
        """Send an email using a named template; variables come from ``context``.

        Values are HTML-escaped in the body and flattened to one line in the
        subject; some of them were typed by the client on the public link.
        """
        template = cls.get_template(template_name)
        if not template:
            logger.warning("Email template not found: %s", template_name)
            return None

        subject = template["subject"].format_map(_SafeDict(
            {k: " ".join(str(v).split()) for k, v in context.items()}
        ))
        html_body = template["html"].format_map(_SafeDict(
            {k: escape(v) for k, v in context.items()}
        ))

        return cls.send(
            to_email=to_email,
            to_name=to_name,
            subject=subject,
            html_body=html_body,
            template_name=template_name,
            approval_id=approval_id,
        )

    @staticmethod
    def _send_smtp(*, to_email: str, to_name: str | None,
                   subject: str, html_body: str) -> None:
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        port = cfg.get("MAIL_PORT", 587)
        use_tls = cfg.get("MAIL_USE_TLS", True)
        username = cfg.get("MAIL_USERNAME")
        password = cfg.get("MAIL_PASSWORD")
        sender = cfg.get("MAIL_DEFAULT_SENDER", f"noreply@{server}")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = f"{to_name} <{to_email}>" if to_name else to_email
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(server, port, timeout=30) as smtp:
            if use_tls:
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"
