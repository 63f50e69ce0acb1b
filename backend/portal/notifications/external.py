"""Notifications pushed in by other subsystems.

They go through the same dedup-then-insert path as the detectors; the caller
owns the dedup key.
"""

import logging
from uuid import UUID

from .dedup import STAFF_ATTENDANCE_PREFIX
from .dedup import dedup_key as build_dedup_key
from .ledger import NotificationLedger
from .models import NotificationKind
from .periods import iso_date
from .schemas import NotificationDraft, StaffAttendanceSubmission, parse_meta

logger = logging.getLogger(__name__)


def ingest_external_event(
    ledger: NotificationLedger,
    kind: NotificationKind,
    dedup_key: str,
    title: str,
    body: str,
    meta: dict | None,
    audience: str,
) -> UUID | None:
    """Record a pre-built notification. Returns None if its dedup key is already taken."""
    draft = NotificationDraft(
        kind=kind,
        title=title,
        body=body,
        audience=audience,
        dedup_key=dedup_key,
        meta=parse_meta(kind, meta),
    )
    new_id = ledger.record_if_new(draft)
    if new_id is not None:
        logger.info("External %s notification recorded: %s", kind.value, dedup_key)
    return new_id


def staff_attendance_key(submission: StaffAttendanceSubmission) -> str:
    """One key per teacher, class, subject and time slot of a day."""
    return build_dedup_key(
        STAFF_ATTENDANCE_PREFIX,
        iso_date(submission.date),
        submission.teacher_id or submission.teacher_name or "NA",
        submission.class_id,
        submission.subject_id,
        f"{submission.start}-{submission.end}",
    )


def notify_staff_attendance_submission(
    ledger: NotificationLedger,
    submission: StaffAttendanceSubmission,
    audience: str,
) -> UUID | None:
    """Tell the supervisors that a teacher signed the attendance sheet of a class."""
    day = iso_date(submission.date)
    key = staff_attendance_key(submission)

    body = f"{day} • {submission.subject_label or submission.subject_id} ({submission.start}–{submission.end})"
    if submission.class_label:
        body += f" • {submission.class_label}"
    if submission.room:
        body += f" • Room {submission.room}"

    details = {
        "teacher_id": submission.teacher_id,
        "teacher_name": submission.teacher_name,
        "class_id": submission.class_id,
        "class_label": submission.class_label,
        "subject_id": submission.subject_id,
        "subject_label": submission.subject_label,
        "date": day,
        "start": submission.start,
        "end": submission.end,
        "room": submission.room,
    }
    return ingest_external_event(
        ledger,
        NotificationKind.EXTERNAL_EVENT,
        key,
        f"Attendance sheet submitted: {submission.teacher_name or 'Teacher'}",
        body,
        {"source": "staff_attendance", "details": details},
        audience,
    )
