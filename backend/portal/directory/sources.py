"""Read-only sources consumed by the notification detectors.

Protocol pattern so detectors can be driven by the SQL-backed implementations
in production and by plain lists in tests.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..database.base import session_scope
from ..notifications.exceptions import ReadError
from .models import AttendanceSession, Profile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProfileRecord:
    subject_id: str
    display_name: str = ""
    birth_date: date | datetime | str | None = None


@dataclass(frozen=True)
class AttendanceSessionRecord:
    class_id: str | None
    session_date: date | datetime | None
    start_time: str | None
    end_time: str | None
    cohort_year: str = ""
    absent_student_ids: frozenset[str] = field(default_factory=frozenset)
    subject_id: str = ""


class ProfileSource(Protocol):
    def list_profiles(self) -> Iterable[ProfileRecord]: ...


class AttendanceSource(Protocol):
    def sessions_between(self, start: datetime, end: datetime, cohort_year: str) -> list[AttendanceSessionRecord]: ...


class SqlProfileSource:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def list_profiles(self) -> list[ProfileRecord]:
        try:
            with session_scope(self._session_factory) as db:
                rows = db.query(Profile).all()
                return [
                    ProfileRecord(
                        subject_id=str(p.id),
                        display_name=p.display_name or "",
                        birth_date=p.birth_date or p.birth_date_text,
                    )
                    for p in rows
                ]
        except SQLAlchemyError as exc:
            logger.warning("Profile directory unreachable: %s", exc)
            raise ReadError("profile directory unreachable") from exc


class SqlAttendanceSource:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def sessions_between(self, start: datetime, end: datetime, cohort_year: str) -> list[AttendanceSessionRecord]:
        try:
            with session_scope(self._session_factory) as db:
                rows = (
                    db.query(AttendanceSession)
                    .filter(
                        AttendanceSession.cohort_year == cohort_year,
                        AttendanceSession.session_date >= start.date(),
                        AttendanceSession.session_date <= end.date(),
                    )
                    .all()
                )
                return [
                    AttendanceSessionRecord(
                        class_id=s.class_id,
                        session_date=s.session_date,
                        start_time=s.start_time,
                        end_time=s.end_time,
                        cohort_year=s.cohort_year,
                        absent_student_ids=frozenset(str(i) for i in (s.absent_student_ids or [])),
                        subject_id=s.subject_id or "",
                    )
                    for s in rows
                ]
        except SQLAlchemyError as exc:
            logger.warning("Attendance sessions unreachable (year=%s): %s", cohort_year, exc)
            raise ReadError("attendance sessions unreachable") from exc
