"""Notification ledger model."""

import enum
import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, String, Text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID

from ..database.base import Base


class NotificationKind(enum.StrEnum):
    BIRTHDAY = "birthday"
    ABSENCE_ALERT = "absence_alert"
    EXTERNAL_EVENT = "external_event"


class Notification(Base):
    """One alert for the supervisory audience. Only ``read`` ever changes."""

    __tablename__ = "notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    kind = Column(
        SQLEnum(NotificationKind, values_callable=lambda e: [k.value for k in e], name="notification_kind"),
        nullable=False,
    )
    title = Column(String(500), nullable=False)
    body = Column(Text, default="")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    read = Column(Boolean, default=False, nullable=False)
    audience = Column(String(50), nullable=False, index=True)
    # Unique: a second insert for the same fact loses instead of duplicating
    dedup_key = Column(String(500), nullable=False, unique=True)
    meta = Column(JSON, default=dict)

    __table_args__ = (Index("idx_notifications_audience_read", "audience", "read"),)
