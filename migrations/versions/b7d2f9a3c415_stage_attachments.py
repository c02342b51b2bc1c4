"""Stage attachments

Revision ID: b7d2f9a3c415
Revises: a1c4e7f20b13
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "b7d2f9a3c415"
down_revision = "a1c4e7f20b13"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "stage_attachments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("stage_id", sa.Integer(), sa.ForeignKey("project_stages.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("file_url", sa.String(2048), nullable=False),
        sa.Column("file_type", sa.String(100), nullable=False, server_default="application/octet-stream"),
        sa.Column("file_size", sa.Integer()),
        sa.Column("description", sa.Text()),
        sa.Column("uploaded_by", sa.String(150), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade():
    op.drop_table("stage_attachments")
