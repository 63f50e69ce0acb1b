"""Profile directory and attendance session models.

Both tables are owned by the CRUD side of the portal; the notification engine
only ever reads them.
"""

import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, Column, Date, DateTime, Index, String
from sqlalchemy.dialects.postgresql import UUID

from ..database.base import Base


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    display_name = Column(String(255), default="")
    role_key = Column(String(50), default="", index=True)
    birth_date = Column(Date, nullable=True)
    # Older records were imported with the date as "YYYY-MM-DD" text
    birth_date_text = Column(String(32), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )


class AttendanceSession(Base):
    __tablename__ = "attendance_sessions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    class_id = Column(String(100), nullable=False)
    subject_id = Column(String(100), default="")
    cohort_year = Column(String(20), nullable=False)
    session_date = Column(Date, nullable=False)
    start_time = Column(String(5), default="")
    end_time = Column(String(5), default="")
    absent_student_ids = Column(JSON, default=list)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )

    __table_args__ = (Index("idx_sessions_year_date", "cohort_year", "session_date"),)
