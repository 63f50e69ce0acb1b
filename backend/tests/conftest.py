"""Shared test fixtures."""

from datetime import UTC, datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from portal.audit.models import AuditLog
from portal.database.base import Base
from portal.directory.models import AttendanceSession, Profile
from portal.integrations.cache import MemoryCacheService
from portal.notifications.ledger import NotificationLedger
from portal.notifications.models import Notification, NotificationKind
from portal.notifications.schemas import ExternalEventMeta, NotificationDraft

# Models must be imported so Base.metadata.create_all() sees all tables.
_ALL_MODELS = [AuditLog, AttendanceSession, Notification, Profile]

AUDIENCE = "directeur"


class ListProfileSource:
    """Profile source over a fixed list."""

    def __init__(self, profiles):
        self.profiles = list(profiles)

    def list_profiles(self):
        return list(self.profiles)


class ListAttendanceSource:
    """Attendance source over a fixed list; records the last query."""

    def __init__(self, sessions):
        self.sessions = list(sessions)
        self.calls = []

    def sessions_between(self, start, end, cohort_year):
        self.calls.append((start, end, cohort_year))
        return list(self.sessions)


@pytest.fixture
def session_factory():
    """In-memory SQLite shared by every session of a test.

    Note: SQLite doesn't support all PostgreSQL features (JSONB, native UUID,
    timezone-aware timestamps), but works for ledger logic testing.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(bind=engine, expire_on_commit=False)
    finally:
        engine.dispose()


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def ledger(session_factory):
    return NotificationLedger(session_factory)


@pytest.fixture
def memory_cache():
    return MemoryCacheService()


@pytest.fixture
def make_draft():
    """Factory for external-event drafts with a given key and timestamp."""

    def _make(dedup_key: str, created_at: datetime | None = None, audience: str = AUDIENCE) -> NotificationDraft:
        return NotificationDraft(
            kind=NotificationKind.EXTERNAL_EVENT,
            title=f"Event {dedup_key}",
            body="",
            audience=audience,
            dedup_key=dedup_key,
            meta=ExternalEventMeta(source="test"),
            created_at=created_at or datetime.now(UTC),
        )

    return _make
