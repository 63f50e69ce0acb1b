"""Tests for the notification ledger."""

import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
from conftest import AUDIENCE
from sqlalchemy.exc import OperationalError

from portal.notifications.exceptions import DuplicateNotificationError, ReadError, WriteError
from portal.notifications.ledger import NotificationLedger
from portal.notifications.models import Notification, NotificationKind

T1 = datetime(2025, 9, 11, 8, 0, tzinfo=UTC)


def _broken_factory():
    session = MagicMock()
    error = OperationalError("SELECT 1", {}, Exception("connection refused"))
    session.query.side_effect = error
    session.flush.side_effect = error
    return MagicMock(return_value=session)


class TestQueries:
    def test_newest_first_regardless_of_insert_order(self, ledger, make_draft):
        ledger.insert(make_draft("k2", T1 + timedelta(hours=1)))
        ledger.insert(make_draft("k3", T1 + timedelta(hours=2)))
        ledger.insert(make_draft("k1", T1))

        keys = [n.dedup_key for n in ledger.list_by_audience(AUDIENCE)]
        assert keys == ["k3", "k2", "k1"]

    def test_audience_filter(self, ledger, make_draft):
        ledger.insert(make_draft("mine"))
        ledger.insert(make_draft("theirs", audience="teacher"))
        assert [n.dedup_key for n in ledger.list_by_audience(AUDIENCE)] == ["mine"]

    def test_find_by_dedup_key_missing(self, ledger):
        assert ledger.find_by_dedup_key("nope") is None

    def test_read_error_when_store_unreachable(self):
        ledger = NotificationLedger(_broken_factory())
        with pytest.raises(ReadError):
            ledger.list_by_audience(AUDIENCE)
        with pytest.raises(ReadError):
            ledger.find_by_dedup_key("k1")

    def test_malformed_meta_is_dropped(self, ledger, db_session):
        db_session.add(
            Notification(
                kind=NotificationKind.ABSENCE_ALERT,
                title="Legacy",
                audience=AUDIENCE,
                dedup_key="legacy::1",
                meta={"unexpected": True},
            )
        )
        db_session.commit()

        record = ledger.find_by_dedup_key("legacy::1")
        assert record.title == "Legacy"
        assert record.meta is None


class TestWrites:
    def test_record_if_new_is_idempotent(self, ledger, make_draft, db_session):
        first = ledger.record_if_new(make_draft("k1"))
        second = ledger.record_if_new(make_draft("k1"))
        assert first is not None
        assert second is None
        assert db_session.query(Notification).count() == 1

    def test_insert_duplicate_raises(self, ledger, make_draft):
        ledger.insert(make_draft("k1"))
        with pytest.raises(DuplicateNotificationError) as exc_info:
            ledger.insert(make_draft("k1"))
        assert exc_info.value.dedup_key == "k1"

    def test_concurrent_insert_after_lookup_is_swallowed(self, ledger, make_draft, db_session):
        ledger.insert(make_draft("k1"))
        # The lookup misses, as if another client inserted right after it
        with patch.object(ledger, "find_by_dedup_key", return_value=None):
            assert ledger.record_if_new(make_draft("k1")) is None
        assert db_session.query(Notification).count() == 1

    def test_insert_write_error(self, make_draft):
        ledger = NotificationLedger(_broken_factory())
        with pytest.raises(WriteError):
            ledger.insert(make_draft("k1"))

    def test_new_records_start_unread(self, ledger, make_draft):
        ledger.insert(make_draft("k1"))
        assert ledger.find_by_dedup_key("k1").read is False

    def test_mark_read(self, ledger, make_draft):
        new_id = ledger.insert(make_draft("k1"))
        assert ledger.mark_read(new_id) is True
        assert ledger.find_by_dedup_key("k1").read is True

    def test_mark_read_unknown_id(self, ledger):
        assert ledger.mark_read(uuid.uuid4()) is False

    def test_delete(self, ledger, make_draft):
        new_id = ledger.insert(make_draft("k1"))
        assert ledger.delete(new_id) is True
        assert ledger.find_by_dedup_key("k1") is None

    def test_delete_unknown_id(self, ledger):
        assert ledger.delete(uuid.uuid4()) is False

    def test_mutations_raise_write_error_when_store_unreachable(self):
        ledger = NotificationLedger(_broken_factory())
        with pytest.raises(WriteError):
            ledger.mark_read(uuid.uuid4())
        with pytest.raises(WriteError):
            ledger.delete(uuid.uuid4())

    def test_deleted_key_can_be_recorded_again(self, ledger, make_draft):
        new_id = ledger.insert(make_draft("k1"))
        ledger.delete(new_id)
        assert ledger.record_if_new(make_draft("k1")) is not None


class TestSubscriptions:
    def test_current_snapshot_delivered_on_subscribe(self, ledger, make_draft):
        ledger.insert(make_draft("k1"))
        received = []
        ledger.subscribe(AUDIENCE, received.append)
        assert [n.dedup_key for n in received[-1]] == ["k1"]

    def test_writes_push_ordered_snapshots(self, ledger, make_draft):
        received = []
        ledger.subscribe(AUDIENCE, received.append)
        ledger.insert(make_draft("old", T1))
        ledger.insert(make_draft("new", T1 + timedelta(minutes=5)))

        assert len(received) == 3
        assert [n.dedup_key for n in received[-1]] == ["new", "old"]

    def test_other_audiences_are_not_notified(self, ledger, make_draft):
        received = []
        ledger.subscribe(AUDIENCE, received.append)
        ledger.insert(make_draft("k1", audience="teacher"))
        assert len(received) == 1

    def test_unsubscribe_stops_delivery(self, ledger, make_draft):
        received = []
        unsubscribe = ledger.subscribe(AUDIENCE, received.append)
        unsubscribe()
        ledger.insert(make_draft("k1"))
        assert len(received) == 1
        # Calling it twice is harmless
        unsubscribe()

    def test_failing_listener_does_not_break_others(self, ledger, make_draft):
        received = []
        broken = MagicMock(side_effect=RuntimeError("listener bug"))
        ledger.subscribe(AUDIENCE, broken)
        ledger.subscribe(AUDIENCE, received.append)

        new_id = ledger.insert(make_draft("k1"))
        assert new_id is not None
        assert [n.dedup_key for n in received[-1]] == ["k1"]

    def test_mark_read_and_delete_publish(self, ledger, make_draft):
        new_id = ledger.insert(make_draft("k1"))
        received = []
        ledger.subscribe(AUDIENCE, received.append)

        ledger.mark_read(new_id)
        assert received[-1][0].read is True

        ledger.delete(new_id)
        assert received[-1] == []
