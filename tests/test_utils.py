from __future__ import annotations

import io
from datetime import date

import pytest

import utils
from errors import ValidationError
from models import Transaction


def test_normalize_maps_csv_headers():
    raw = {
        "Name": "Faith Chebet",
        "phone": "0712 000 111",
        "Plan": "Weekly",
        "amount": "1,000",
        "Method": "MPESA",
        "paid": "no",
        "start date": "2025-01-06",
        "status": "active",
    }

    data = utils.normalize_member_input(raw)

    assert data == {
        "full_name": "Faith Chebet",
        "contact_number": "0712 000 111",
        "subscription_type": "weekly",
        "amount_paid": 1000.0,
        "payment_method": "mpesa",
        "payment_complete": False,
        "registration_date": date(2025, 1, 6),
        "due_date": date(2025, 1, 13),
    }


def test_normalize_fills_defaults():
    data = utils.normalize_member_input(
        {"fullName": "Kevin Otieno", "contactNumber": "0722000000"}, today=date(2025, 1, 31)
    )

    assert data["subscription_type"] == "monthly"
    assert data["amount_paid"] == 3000.0
    assert data["payment_method"] == "cash"
    assert data["payment_complete"] is True
    assert data["registration_date"] == date(2025, 1, 31)
    assert data["due_date"] == date(2025, 2, 28)


def test_normalize_accepts_timestamps():
    data = utils.normalize_member_input(
        {
            "full_name": "Mary Atieno",
            "contact_number": "0700",
            "registrationDate": "2024-01-31T00:00:00.000Z",
            "dueDate": "2024-02-29T00:00:00.000Z",
        }
    )

    assert data["registration_date"] == date(2024, 1, 31)
    assert data["due_date"] == date(2024, 2, 29)


def test_normalize_collects_every_field_error():
    with pytest.raises(ValidationError) as excinfo:
        utils.normalize_member_input(
            {
                "contactNumber": "0700",
                "subscriptionType": "daily",
                "paymentMethod": "card",
                "amountPaid": -5,
                "registrationDate": "2025-02-01",
                "dueDate": "2025-01-01",
            }
        )

    errors = excinfo.value.errors
    assert "Full name is required." in errors
    assert any(e.startswith("Subscription type must be one of") for e in errors)
    assert any(e.startswith("Payment method must be one of") for e in errors)
    assert "Amount paid cannot be negative." in errors
    assert "Due date cannot be before the registration date." in errors


def test_normalize_rejects_unparseable_dates():
    with pytest.raises(ValidationError) as excinfo:
        utils.normalize_member_input({"name": "A", "phone": "1", "startDate": "yesterday"})
    assert excinfo.value.errors == ["Registration/due dates must be valid ISO dates (YYYY-MM-DD)."]


def test_calc_due_date():
    assert utils.calc_due_date(date(2025, 1, 31), "monthly") == date(2025, 2, 28)
    assert utils.calc_due_date(date(2024, 11, 30), "quarterly") == date(2025, 2, 28)
    assert utils.calc_due_date(date(2025, 1, 1), "yearly") == date(2026, 1, 1)
    assert utils.calc_due_date(date(2025, 12, 29), "weekly") == date(2026, 1, 5)


def _tx(amount, day, kind="payment"):
    return Transaction(id=None, member_id=1, amount=amount, type=kind, date=day)


def test_revenue_summary_nets_adjustments():
    transactions = [
        _tx(3000, date(2025, 1, 5)),
        _tx(2000, date(2025, 1, 20)),
        _tx(-500, date(2025, 1, 21), "adjustment"),
        _tx(8000, date(2025, 2, 1), "renewal"),
    ]

    summary = utils.revenue_summary_by_month(transactions)

    assert summary["month"].tolist() == ["2025-02", "2025-01"]
    assert summary["revenue"].tolist() == [8000, 4500]
    assert utils.total_revenue(transactions) == 12500
    assert utils.revenue_for_month(transactions, "2025-01") == 4500
    assert utils.revenue_for_month(transactions, "2024-12") == 0.0


def test_reports_handle_no_data():
    assert utils.revenue_summary_by_month([]).empty
    assert utils.total_revenue([]) == 0.0
    assert "status" in utils.members_frame([]).columns


MEMBERS_CSV = """Name,Phone,Subscription Type,Start Date,End Date,Amount Paid,Payment Method,Payment Complete,Status
Amina Hassan,0711000001,monthly,2025-03-01,2025-04-01,3000,mpesa,Yes,overdue
Peter Otieno,0711000002,weekly,2025-03-05,2025-03-12,0,cash,No,active
No Phone,,monthly,2025-03-01,2025-04-01,3000,cash,Yes,active
Daily Dan,0711000004,daily,2025-03-01,2025-03-02,100,cash,Yes,active
Amina Again,0711000001,monthly,2025-03-01,2025-04-01,3000,cash,Yes,active
"""


def test_import_members_csv(cache, database):
    imported, problems = utils.import_members_csv(cache, io.StringIO(MEMBERS_CSV))

    assert [m.full_name for m in imported] == ["Amina Hassan", "Peter Otieno"]
    amina, peter = imported
    # stored status column is ignored; status comes from the due date
    assert amina.status == "active"
    assert amina.payment_complete is True
    assert amina.due_date == date(2025, 4, 1)
    assert peter.payment_complete is False
    assert peter.status == "due"

    assert [t.amount for t in database.list_transactions(member_id=amina.id)] == [3000]
    assert database.list_transactions(member_id=peter.id) == []

    assert len(problems) == 2
    assert problems[0].startswith("Row 5: Subscription type must be one of")
    assert problems[1] == "Row 6: Contact number 0711000001 is already registered."
    assert len(database.list_members()) == 2


def test_import_members_csv_with_no_rows(cache):
    header_only = "Name,Phone,Subscription Type\n"

    assert utils.import_members_csv(cache, io.StringIO(header_only)) == ([], [])
