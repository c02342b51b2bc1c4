"""Stage workflow, client approvals and notification tables

Revision ID: a1c4e7f20b13
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "a1c4e7f20b13"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "project_stages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("project_id", sa.String(64), nullable=False, index=True),
        sa.Column("order", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), server_default=""),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("requires_client_approval", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_blocked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("project_id", "order", name="uq_project_stage_order"),
    )

    op.create_table(
        "stage_checklist_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("stage_id", sa.Integer(), sa.ForeignKey("project_stages.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text()),
        sa.Column("is_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("completed_by", sa.String(150)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "stage_approvals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("stage_id", sa.Integer(), sa.ForeignKey("project_stages.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("requested_by", sa.String(150), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("client_email", sa.String(255)),
        sa.Column("approval_token", sa.String(64), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("decision", sa.String(20)),
        sa.Column("approved_at", sa.DateTime(timezone=True)),
        sa.Column("approved_by_name", sa.String(255)),
        sa.Column("approved_by_email", sa.String(255)),
        sa.Column("client_message", sa.Text()),
        sa.Column("signature_data", sa.Text()),
        sa.Column("last_notification_sent_at", sa.DateTime(timezone=True)),
        sa.Column("notification_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_stage_approvals_approval_token", "stage_approvals", ["approval_token"], unique=True)
    op.create_index("ix_stage_approvals_stage_status", "stage_approvals", ["stage_id", "status"])
    op.create_index(
        "uq_stage_approvals_one_pending", "stage_approvals", ["stage_id"], unique=True,
        sqlite_where=sa.text("status = 'pending'"),
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "approval_change_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("approval_id", sa.Integer(), sa.ForeignKey("stage_approvals.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("change_description", sa.Text(), nullable=False),
        sa.Column("resolved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("resolved_at", sa.DateTime(timezone=True)),
        sa.Column("resolved_by", sa.String(150)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "approval_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("days_before_notification", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("notification_frequency_days", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("email_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("project_id", sa.String(64), index=True),
        sa.Column("recipient", sa.String(150), server_default="all", index=True),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("message", sa.Text(), server_default=""),
        sa.Column("category", sa.String(30), server_default="system"),
        sa.Column("severity", sa.String(20), server_default="info"),
        sa.Column("entity_type", sa.String(30), server_default=""),
        sa.Column("entity_id", sa.Integer()),
        sa.Column("is_read", sa.Boolean(), server_default=sa.false()),
        sa.Column("read_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "email_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("recipient_email", sa.String(255), nullable=False, index=True),
        sa.Column("recipient_name", sa.String(150)),
        sa.Column("subject", sa.String(500), nullable=False),
        sa.Column("template_name", sa.String(100)),
        sa.Column("status", sa.String(20), server_default="queued"),
        sa.Column("error_message", sa.Text()),
        sa.Column("approval_id", sa.Integer(), index=True),
        sa.Column("sent_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade():
    op.drop_table("email_logs")
    op.drop_table("notifications")
    op.drop_table("approval_settings")
    op.drop_table("approval_change_requests")
    op.drop_index("uq_stage_approvals_one_pending", table_name="stage_approvals")
    op.drop_index("ix_stage_approvals_stage_status", table_name="stage_approvals")
    op.drop_index("ix_stage_approvals_approval_token", table_name="stage_approvals")
    op.drop_table("stage_approvals")
    op.drop_table("stage_checklist_items")
    op.drop_table("project_stages")
