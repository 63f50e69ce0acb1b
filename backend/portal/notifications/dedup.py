"""Deduplication keys: one key per fact, per subject, per period."""

BIRTHDAY_PREFIX = "birthday"
ABSENCE_PREFIX = "absence"
STAFF_ATTENDANCE_PREFIX = "prof_emargement"

_SEPARATOR = "::"


def dedup_key(kind: str, temporal_scope: str, subject: str, *extra: str) -> str:
    """Build ``kind::scope::subject[::extra...]``.

    >>> dedup_key("birthday", "2025-09-11", "u123")
    'birthday::2025-09-11::u123'
    """
    return _SEPARATOR.join([kind, temporal_scope, subject, *extra])


def birthday_key(day_iso: str, subject_id: str) -> str:
    return dedup_key(BIRTHDAY_PREFIX, day_iso, subject_id)


def absence_key(week_key: str, student_id: str) -> str:
    return dedup_key(ABSENCE_PREFIX, week_key, student_id)
