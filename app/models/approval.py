"""
Client Approval models: stage gating.

Models:
    - StageApproval: one approval request for a stage, resolved once through
      its public token
    - ApprovalChangeRequest: change description left by a client who asked
      for changes instead of approving
    - ApprovalSettings: singleton reminder policy for pending approvals

Business rules:
    - The most recent StageApproval (highest id) of a stage is the
      authoritative one; older rows are kept as history.
    - A StageApproval moves out of ``pending`` exactly once.  Terminal rows
      are never updated again.
    - ``approval_token`` is the only credential of the public link.
"""

from datetime import datetime, timezone

from app.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

APPROVAL_STATUSES = ("pending", "approved", "rejected")
TERMINAL_STATUSES = frozenset({"approved", "rejected"})

# Decision submitted on the public link → terminal status it produces
DECISION_STATUS = {
    "approve": "approved",
    "reject": "rejected",
    "request_changes": "rejected",
}
VALID_DECISIONS = frozenset(DECISION_STATUS)

DEFAULT_DAYS_BEFORE_NOTIFICATION = 3
DEFAULT_NOTIFICATION_FREQUENCY_DAYS = 2


class StageApproval(db.Model):
    """Client approval request for a project stage."""

    __tablename__ = "stage_approvals"
    __table_args__ = (
        db.Index("ix_stage_approvals_stage_status", "stage_id", "status"),
        # At most one pending approval per stage
        db.Index(
            "uq_stage_approvals_one_pending", "stage_id", unique=True,
            sqlite_where=db.text("status = 'pending'"),
            postgresql_where=db.text("status = 'pending'"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    stage_id = db.Column(
        db.Integer, db.ForeignKey("project_stages.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    requested_by = db.Column(db.String(150), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    client_email = db.Column(db.String(255), nullable=True,
                             comment="Where the approval link and reminders are emailed")

    approval_token = db.Column(db.String(64), nullable=False, unique=True, index=True)
    status = db.Column(db.String(20), nullable=False, default="pending",
                       comment="pending | approved | rejected")
    decision = db.Column(db.String(20), nullable=True,
                         comment="approve | reject | request_changes")

    # Decision snapshot: set only on the transition out of pending
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by_name = db.Column(db.String(255), nullable=True)
    approved_by_email = db.Column(db.String(255), nullable=True)
    client_message = db.Column(db.Text, nullable=True)
    signature_data = db.Column(db.Text, nullable=True,
                               comment="Data URL of the drawn signature, if captured")

    # Reminder bookkeeping
    last_notification_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notification_count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False,
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    stage = db.relationship("ProjectStage", lazy="joined")
    changes = db.relationship(
        "ApprovalChangeRequest", backref="approval", lazy="selectin",
        order_by="ApprovalChangeRequest.id",
    )

    @property
    def is_pending(self):
        return self.status == "pending"

    def to_dict(self, include_token=False):
        """Serialize.  The token is only exposed to the requesting agency user."""
        d = {
            "id": self.id,
            "stage_id": self.stage_id,
            "requested_by": self.requested_by,
            "notes": self.notes,
            "client_email": self.client_email,
            "status": self.status,
            "decision": self.decision,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "approved_by_name": self.approved_by_name,
            "approved_by_email": self.approved_by_email,
            "client_message": self.client_message,
            "has_signature": bool(self.signature_data),
            "notification_count": self.notification_count,
            "last_notification_sent_at": (
                self.last_notification_sent_at.isoformat() if self.last_notification_sent_at else None
            ),
            "changes": [c.to_dict() for c in self.changes],
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_token:
            d["approval_token"] = self.approval_token
        return d

    def __repr__(self):
        return f"<StageApproval #{self.id} stage={self.stage_id} {self.status}>"


class ApprovalChangeRequest(db.Model):
    """Changes a client asked for when sending a stage back."""

    __tablename__ = "approval_change_requests"

    id = db.Column(db.Integer, primary_key=True)
    approval_id = db.Column(
        db.Integer, db.ForeignKey("stage_approvals.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    change_description = db.Column(db.Text, nullable=False)
    resolved = db.Column(db.Boolean, nullable=False, default=False)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_by = db.Column(db.String(150), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "approval_id": self.approval_id,
            "change_description": self.change_description,
            "resolved": self.resolved,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolved_by": self.resolved_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class ApprovalSettings(db.Model):
    """Reminder policy for pending approvals (single row)."""

    __tablename__ = "approval_settings"

    id = db.Column(db.Integer, primary_key=True)
    days_before_notification = db.Column(
        db.Integer, nullable=False, default=DEFAULT_DAYS_BEFORE_NOTIFICATION,
        comment="Pending approvals younger than this are not reminded",
    )
    notification_frequency_days = db.Column(
        db.Integer, nullable=False, default=DEFAULT_NOTIFICATION_FREQUENCY_DAYS,
        comment="Minimum days between two reminders of the same approval",
    )
    email_enabled = db.Column(db.Boolean, nullable=False, default=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    @classmethod
    def current(cls):
        """Return the stored settings, or an unsaved row carrying the defaults."""
        row = cls.query.order_by(cls.id).first()
        if row is None:
            row = cls(
                days_before_notification=DEFAULT_DAYS_BEFORE_NOTIFICATION,
                notification_frequency_days=DEFAULT_NOTIFICATION_FREQUENCY_DAYS,
                email_enabled=True,
            )
        return row

    def to_dict(self):
        return {
            "days_before_notification": self.days_before_notification,
            "notification_frequency_days": self.notification_frequency_days,
            "email_enabled": self.email_enabled,
        }
