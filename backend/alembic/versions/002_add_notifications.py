"""Add notifications ledger with a unique dedup key.

Revision ID: 002
Revises: 001
Create Date: 2025-09-08
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "002"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

notification_kind = sa.Enum("birthday", "absence_alert", "external_event", name="notification_kind")


def upgrade() -> None:
    op.create_table(
        "notifications",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("kind", notification_kind, nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("body", sa.Text(), server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("read", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("audience", sa.String(50), nullable=False),
        sa.Column("dedup_key", sa.String(500), nullable=False),
        sa.Column("meta", JSONB(), server_default="{}"),
        sa.UniqueConstraint("dedup_key", name="uq_notifications_dedup_key"),
    )
    op.create_index("ix_notifications_audience", "notifications", ["audience"])
    op.create_index("idx_notifications_audience_read", "notifications", ["audience", "read"])


def downgrade() -> None:
    op.drop_index("idx_notifications_audience_read", table_name="notifications")
    op.drop_index("ix_notifications_audience", table_name="notifications")
    op.drop_table("notifications")
    notification_kind.drop(op.get_bind(), checkfirst=True)
