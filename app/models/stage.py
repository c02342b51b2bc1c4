"""
Agency Delivery Workflow
Project stage domain models.

Models:
    - ProjectStage: ordered delivery phase of a project, optionally gated
      behind a client approval
    - StageChecklistItem: one checklist entry inside a stage
    - StageAttachment: deliverable linked to a stage for the client to review

A project is an opaque identifier owned by the surrounding application;
stages only carry it to scope themselves.
"""

from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

STAGE_STATUSES = ("pending", "in_progress", "completed")


class ProjectStage(db.Model):
    """
    Ordered delivery stage.

    Business rules:
    - ``order`` is unique per project and defines the sequence.
    - ``status`` is a display label refreshed from checklist progress;
      it never gates anything.
    - ``is_blocked`` is a cache of the gating result.  It is never accepted
      from a request and is overwritten on every workflow read.
    """

    __tablename__ = "project_stages"
    __table_args__ = (
        db.UniqueConstraint("project_id", "order", name="uq_project_stage_order"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.String(64), nullable=False, index=True,
                           comment="Opaque project identifier owned by the host application")
    order = db.Column(db.Integer, nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, default="")
    status = db.Column(db.String(20), nullable=False, default="pending",
                       comment="pending | in_progress | completed")
    requires_client_approval = db.Column(db.Boolean, nullable=False, default=False)
    is_blocked = db.Column(db.Boolean, nullable=False, default=False,
                           comment="Derived by the gating engine; cache only")

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    items = db.relationship(
        "StageChecklistItem", backref="stage", lazy="selectin",
        order_by="StageChecklistItem.order",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "order": self.order,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "requires_client_approval": self.requires_client_approval,
            "blocked": self.is_blocked,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<ProjectStage #{self.id} {self.project_id}/{self.order} {self.name!r}>"


class StageChecklistItem(db.Model):
    """
    Checklist entry of a stage.

    ``completed_at`` and ``completed_by`` are set together and cleared
    together by the toggle operation only, so ``is_completed`` always
    matches ``completed_at is not None``.
    """

    __tablename__ = "stage_checklist_items"

    id = db.Column(db.Integer, primary_key=True)
    stage_id = db.Column(
        db.Integer, db.ForeignKey("project_stages.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    description = db.Column(db.Text, nullable=False)
    order = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    is_completed = db.Column(db.Boolean, nullable=False, default=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_by = db.Column(db.String(150), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "stage_id": self.stage_id,
            "description": self.description,
            "order": self.order,
            "notes": self.notes,
            "is_completed": self.is_completed,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "completed_by": self.completed_by,
        }


class StageAttachment(db.Model):
    """
    Deliverable of a stage, shown to the client on the approval link.

    Files live in external storage; only the link and its metadata are kept.
    """

    __tablename__ = "stage_attachments"

    id = db.Column(db.Integer, primary_key=True)
    stage_id = db.Column(
        db.Integer, db.ForeignKey("project_stages.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    file_name = db.Column(db.String(255), nullable=False)
    file_url = db.Column(db.String(2048), nullable=False, comment="http(s) link to the stored file")
    file_type = db.Column(db.String(100), nullable=False, default="application/octet-stream")
    file_size = db.Column(db.Integer, nullable=True, comment="Bytes")
    description = db.Column(db.Text, nullable=True)
    uploaded_by = db.Column(db.String(150), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "stage_id": self.stage_id,
            "file_name": self.file_name,
            "file_url": self.file_url,
            "file_type": self.file_type,
            "file_size": self.file_size,
            "description": self.description,
            "uploaded_by": self.uploaded_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
