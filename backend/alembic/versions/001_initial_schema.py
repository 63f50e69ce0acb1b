"""Initial schema: profile directory, attendance sessions, audit logs.

Revision ID: 001
Revises: None
Create Date: 2025-09-01
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("display_name", sa.String(255), server_default=""),
        sa.Column("role_key", sa.String(50), server_default=""),
        sa.Column("birth_date", sa.Date(), nullable=True),
        sa.Column("birth_date_text", sa.String(32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_profiles_role_key", "profiles", ["role_key"])

    op.create_table(
        "attendance_sessions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("class_id", sa.String(100), nullable=False),
        sa.Column("subject_id", sa.String(100), server_default=""),
        sa.Column("cohort_year", sa.String(20), nullable=False),
        sa.Column("session_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.String(5), server_default=""),
        sa.Column("end_time", sa.String(5), server_default=""),
        sa.Column("absent_student_ids", JSONB(), server_default="[]"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_sessions_year_date", "attendance_sessions", ["cohort_year", "session_date"])

    op.create_table(
        "audit_logs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("client_id", sa.String(100), server_default=""),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("detail", sa.Text(), server_default=""),
        sa.Column("ip_address", sa.String(45), server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_audit_logs_client_id", "audit_logs", ["client_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("attendance_sessions")
    op.drop_table("profiles")
