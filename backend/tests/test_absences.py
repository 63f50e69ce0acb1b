"""Tests for the absence streak detector."""

from datetime import date, datetime, timedelta

import pytest
from conftest import AUDIENCE, ListAttendanceSource

from portal.directory.sources import AttendanceSessionRecord
from portal.notifications.absences import (
    ABSENCE_STREAK_THRESHOLD,
    build_slot_index,
    compute_absence_streaks,
    generate_absence_alerts,
    longest_absence_run,
    student_sequences,
)
from portal.notifications.models import Notification, NotificationKind

STUDENT = "0012345"
CLASSMATE = "0099999"
MONDAY = date(2025, 9, 8)
NOW = datetime(2025, 9, 12, 18, 0)
SLOTS = [("08:00", "10:00"), ("10:15", "12:15"), ("14:00", "16:00")]


def _week_of_sessions(pattern: str, student: str = STUDENT, class_id: str = "L1-INFO", monday: date = MONDAY):
    """One session per character, three a day from Monday; 'A' marks ``student`` absent.

    A classmate is absent at the first session so they are observed too.
    """
    sessions = []
    for i, mark in enumerate(pattern.replace(" ", "")):
        start, end = SLOTS[i % len(SLOTS)]
        absent = {student} if mark == "A" else set()
        if i == 0:
            absent.add(CLASSMATE)
        sessions.append(
            AttendanceSessionRecord(
                class_id=class_id,
                session_date=monday + timedelta(days=i // len(SLOTS)),
                start_time=start,
                end_time=end,
                cohort_year="2025",
                absent_student_ids=frozenset(absent),
            )
        )
    return sessions


class TestLongestAbsenceRun:
    def test_eight_leading_absences(self):
        flags = [c == "A" for c in "AAAAAAAAPA"]
        assert longest_absence_run(flags) == 8

    def test_seven_present_seven(self):
        flags = [c == "A" for c in "AAAAAAAPAAAAAAA"]
        assert longest_absence_run(flags) == 7

    def test_empty_and_all_present(self):
        assert longest_absence_run([]) == 0
        assert longest_absence_run([False, False]) == 0


class TestComputeAbsenceStreaks:
    def test_run_of_eight(self):
        streaks = compute_absence_streaks(_week_of_sessions("AAAAAAAAPA"))
        assert streaks[STUDENT] == 8
        assert streaks[CLASSMATE] == 1

    def test_presence_resets_the_run(self):
        streaks = compute_absence_streaks(_week_of_sessions("AAAAAAAPAAAAAAA"))
        assert streaks[STUDENT] == 7

    def test_input_order_does_not_matter(self):
        sessions = _week_of_sessions("AAAAAAAPAAAAAAA")
        assert compute_absence_streaks(reversed(sessions))[STUDENT] == 7

    def test_reimported_records_count_once(self):
        sessions = _week_of_sessions("AAAAAPAAAA")
        streaks = compute_absence_streaks(sessions + sessions)
        assert streaks[STUDENT] == 5

    def test_incomplete_records_are_skipped(self):
        sessions = _week_of_sessions("AAAA")
        sessions.append(
            AttendanceSessionRecord(
                class_id="L1-INFO",
                session_date=MONDAY,
                start_time=None,
                end_time="18:00",
                absent_student_ids=frozenset({STUDENT}),
            )
        )
        assert compute_absence_streaks(sessions)[STUDENT] == 4

    def test_students_never_absent_are_not_tracked(self):
        streaks = compute_absence_streaks(_week_of_sessions("PPPP"))
        assert STUDENT not in streaks


class TestStudentSequences:
    def test_sequence_covers_every_slot_of_the_class(self):
        index = build_slot_index(_week_of_sessions("APPA"))
        sequence = student_sequences(index)[STUDENT]
        assert len(sequence) == 4
        assert sequence == sorted(sequence, key=lambda k: (k[1], k[2], k[3]))

    def test_other_class_slots_are_ignored(self):
        sessions = _week_of_sessions("AAA") + _week_of_sessions("PPP", student="someone", class_id="L2-BIO")
        sequence = student_sequences(build_slot_index(sessions))[STUDENT]
        assert {key[0] for key in sequence} == {"L1-INFO"}


class TestGenerateAbsenceAlerts:
    def test_threshold_reached_raises_one_alert(self, ledger, db_session):
        source = ListAttendanceSource(_week_of_sessions("AAAAAAAAPA"))
        created = generate_absence_alerts(ledger, source, "2025", NOW, AUDIENCE)
        assert created == 1

        record = ledger.find_by_dedup_key(f"absence::2025-W37::{STUDENT}")
        assert record is not None
        assert record.kind == NotificationKind.ABSENCE_ALERT
        assert record.meta.max_run == ABSENCE_STREAK_THRESHOLD == 8
        assert record.meta.week_key == "2025-W37"
        assert record.meta.student_id == STUDENT
        assert db_session.query(Notification).count() == 1

    def test_seven_in_a_row_raises_nothing(self, ledger, db_session):
        source = ListAttendanceSource(_week_of_sessions("AAAAAAAPAAAAAAA"))
        assert generate_absence_alerts(ledger, source, "2025", NOW, AUDIENCE) == 0
        assert db_session.query(Notification).count() == 0

    def test_queries_current_week_and_year(self, ledger):
        source = ListAttendanceSource([])
        generate_absence_alerts(ledger, source, "2025", NOW, AUDIENCE)
        start, end, year = source.calls[0]
        assert start == datetime(2025, 9, 8)
        assert end.date() == date(2025, 9, 14)
        assert year == "2025"

    def test_not_regenerated_within_the_same_week(self, ledger, db_session):
        source = ListAttendanceSource(_week_of_sessions("AAAAAAAAPA"))
        generate_absence_alerts(ledger, source, "2025", NOW, AUDIENCE)

        # More absences later the same week: the run grows but the key does not change
        source.sessions = _week_of_sessions("AAAAAAAAAAAA")
        created = generate_absence_alerts(ledger, source, "2025", NOW + timedelta(hours=1), AUDIENCE)
        assert created == 0
        assert db_session.query(Notification).count() == 1
        assert ledger.find_by_dedup_key(f"absence::2025-W37::{STUDENT}").meta.max_run == 8

    def test_new_week_alerts_again(self, ledger, db_session):
        source = ListAttendanceSource(_week_of_sessions("AAAAAAAAPA"))
        generate_absence_alerts(ledger, source, "2025", NOW, AUDIENCE)

        next_monday = MONDAY + timedelta(days=7)
        source.sessions = _week_of_sessions("AAAAAAAAA", monday=next_monday)
        created = generate_absence_alerts(ledger, source, "2025", NOW + timedelta(days=7), AUDIENCE)
        assert created == 1
        assert ledger.find_by_dedup_key(f"absence::2025-W38::{STUDENT}") is not None

    @pytest.mark.parametrize("pattern,expected", [("A" * 8, 1), ("A" * 7, 0), ("A" * 9, 1)])
    def test_threshold_boundary(self, ledger, pattern, expected):
        source = ListAttendanceSource(_week_of_sessions(pattern))
        assert generate_absence_alerts(ledger, source, "2025", NOW, AUDIENCE) == expected
