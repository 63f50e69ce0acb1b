"""Absence streak detector.

For every student seen in this week's attendance sessions, rebuild the
chronological list of class slots the student was scheduled in (every slot of
every class the student appears in), walk it once and keep the longest run of
consecutive absences. Students whose run reaches the threshold get one alert
per ISO week.
"""

import logging
from collections import defaultdict
from collections.abc import Iterable
from datetime import date, datetime

from ..directory.sources import AttendanceSessionRecord, AttendanceSource
from .dedup import absence_key
from .exceptions import WriteError
from .ledger import NotificationLedger
from .models import NotificationKind
from .periods import iso_date, iso_week_key, week_bounds
from .schemas import AbsenceMeta, NotificationDraft

logger = logging.getLogger(__name__)

ABSENCE_STREAK_THRESHOLD = 8

# (class_id, YYYY-MM-DD, start, end)
SlotKey = tuple[str, str, str, str]


def slot_key(session: AttendanceSessionRecord) -> SlotKey | None:
    """Identify the class occurrence a session record belongs to, or None if incomplete."""
    if not (session.class_id and session.session_date and session.start_time and session.end_time):
        return None
    return (session.class_id, iso_date(session.session_date), session.start_time, session.end_time)


def _chronological(key: SlotKey) -> tuple[str, str, str, str]:
    class_id, day, start, end = key
    return (day, start, end, class_id)


def build_slot_index(sessions: Iterable[AttendanceSessionRecord]) -> dict[SlotKey, set[str]]:
    """Map each distinct slot to the students marked absent at it.

    Re-imported records for the same slot are merged into one occurrence.
    """
    index: dict[SlotKey, set[str]] = {}
    malformed = 0
    for session in sessions:
        key = slot_key(session)
        if key is None:
            malformed += 1
            continue
        index.setdefault(key, set()).update(session.absent_student_ids)
    if malformed:
        logger.debug("Absence scan: skipped %d session records with missing slot fields", malformed)
    return index


def student_sequences(index: dict[SlotKey, set[str]]) -> dict[str, list[SlotKey]]:
    """Sorted slot sequence per student, over every slot of the student's classes."""
    slots_by_class: dict[str, set[SlotKey]] = defaultdict(set)
    classes_by_student: dict[str, set[str]] = defaultdict(set)
    for key, absent in index.items():
        slots_by_class[key[0]].add(key)
        for student_id in absent:
            classes_by_student[student_id].add(key[0])

    sequences = {}
    for student_id, class_ids in classes_by_student.items():
        slots = set().union(*(slots_by_class[c] for c in class_ids))
        sequences[student_id] = sorted(slots, key=_chronological)
    return sequences


def longest_absence_run(flags: Iterable[bool]) -> int:
    """Length of the longest run of consecutive True values."""
    run = max_run = 0
    for absent in flags:
        if absent:
            run += 1
            max_run = max(max_run, run)
        else:
            run = 0
    return max_run


def compute_absence_streaks(sessions: Iterable[AttendanceSessionRecord]) -> dict[str, int]:
    """Longest consecutive-absence run per student observed in ``sessions``."""
    index = build_slot_index(sessions)
    return {
        student_id: longest_absence_run(student_id in index[key] for key in slots)
        for student_id, slots in student_sequences(index).items()
    }


def absence_draft(student_id: str, max_run: int, week_key: str, audience: str) -> NotificationDraft:
    return NotificationDraft(
        kind=NotificationKind.ABSENCE_ALERT,
        title=f"Absence alert: {student_id}",
        body=f"At least {max_run} consecutive classes missed this week.",
        audience=audience,
        dedup_key=absence_key(week_key, student_id),
        meta=AbsenceMeta(student_id=student_id, max_run=max_run, week_key=week_key),
    )


def generate_absence_alerts(
    ledger: NotificationLedger,
    attendance: AttendanceSource,
    academic_year: str,
    now: date | datetime,
    audience: str,
) -> int:
    """Record this week's absence streak alerts. Returns the number of new records.

    Failure handling mirrors the birthday detector: a ReadError aborts the
    pass, WriteErrors are collected and raised after the last candidate.
    """
    start, end = week_bounds(now)
    week_key = iso_week_key(now)
    sessions = attendance.sessions_between(start, end, academic_year)
    streaks = compute_absence_streaks(sessions)

    flagged = sorted(
        (student_id, run) for student_id, run in streaks.items() if run >= ABSENCE_STREAK_THRESHOLD
    )

    created = 0
    failures = []
    for student_id, max_run in flagged:
        try:
            if ledger.record_if_new(absence_draft(student_id, max_run, week_key, audience)) is not None:
                created += 1
        except WriteError as exc:
            failures.append(exc)

    logger.info(
        "Absence scan %s (year=%s): %d sessions, %d students, %d over threshold, %d new",
        week_key,
        academic_year,
        len(sessions),
        len(streaks),
        len(flagged),
        created,
    )
    if failures:
        raise WriteError(f"{len(failures)} absence alerts not recorded") from failures[0]
    return created
