from __future__ import annotations

from datetime import date, datetime, timedelta

from errors import RemoteUnavailable
from status import compute_status, days_until_due, reconcile_all

from conftest import NOW


def _insert(database, name, contact, due, status):
    return database.insert_member(
        {
            "full_name": name,
            "contact_number": contact,
            "subscription_type": "monthly",
            "amount_paid": 3000,
            "payment_method": "cash",
            "payment_complete": True,
            "registration_date": date(2025, 1, 1),
            "due_date": due,
            "status": status,
        }
    )


def test_compute_status_is_pure():
    due = NOW + timedelta(days=2)
    assert compute_status(due, NOW) == compute_status(due, NOW) == "due"


def test_more_than_threshold_days_is_active():
    assert compute_status(NOW + timedelta(days=3, seconds=1), NOW, threshold=3) == "active"
    assert compute_status(NOW + timedelta(days=30), NOW, threshold=3) == "active"


def test_exactly_at_threshold_is_due():
    assert compute_status(NOW + timedelta(days=3), NOW, threshold=3) == "due"


def test_past_due_date_is_overdue():
    assert compute_status(NOW - timedelta(days=1), NOW) == "overdue"
    assert compute_status(NOW - timedelta(days=400), NOW) == "overdue"


def test_due_today_counts_as_due():
    # midnight today is 9 hours in the past, rounded up to zero days
    assert days_until_due(NOW.date(), NOW) == 0
    assert compute_status(NOW.date(), NOW) == "due"
    assert compute_status(NOW.date() - timedelta(days=1), NOW) == "overdue"


def test_threshold_can_be_widened():
    due = NOW + timedelta(days=6)
    assert compute_status(due, NOW, threshold=3) == "active"
    assert compute_status(due, NOW, threshold=7) == "due"


def test_reconcile_all_updates_only_drifted_members(database):
    stale = _insert(database, "Stale Active", "0700000001", date(2025, 3, 1), "active")
    fine = _insert(database, "Still Active", "0700000002", date(2025, 6, 1), "active")

    updated = reconcile_all(database, NOW, threshold=3)

    assert updated == [stale]
    by_id = {m.id: m for m in database.list_members()}
    assert by_id[stale].status == "overdue"
    assert by_id[fine].status == "active"


class FlakySource:
    def __init__(self, database, failing_id):
        self.database = database
        self.failing_id = failing_id

    def list_members(self):
        return self.database.list_members()

    def update_member(self, member_id, patch):
        if member_id == self.failing_id:
            raise RemoteUnavailable("connection reset")
        self.database.update_member(member_id, patch)


def test_reconcile_all_continues_past_failures(database):
    first = _insert(database, "First", "0700000001", date(2025, 3, 1), "active")
    second = _insert(database, "Second", "0700000002", date(2025, 3, 2), "active")

    updated = reconcile_all(FlakySource(database, first), NOW, threshold=3)

    assert updated == [second]
    by_id = {m.id: m for m in database.list_members()}
    assert by_id[first].status == "active"
    assert by_id[second].status == "overdue"
