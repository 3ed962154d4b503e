"""
utils.py
Validation, input normalization, dates, revenue reports, sample data.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Iterable

import pandas as pd

from errors import ValidationError
from models import (
    PAYMENT_METHODS,
    SUBSCRIPTION_DAYS,
    SUBSCRIPTION_MONTHS,
    SUBSCRIPTION_PRICES,
    SUBSCRIPTION_TYPES,
    Member,
    Transaction,
)

# Loose input keys (CSV headers, camelCase form fields, snake_case) -> Member field.
# Keys are compared after lowercasing and dropping everything but letters/digits.
FIELD_ALIASES = {
    "fullname": "full_name",
    "name": "full_name",
    "membername": "full_name",
    "contactnumber": "contact_number",
    "contact": "contact_number",
    "phone": "contact_number",
    "phonenumber": "contact_number",
    "subscriptiontype": "subscription_type",
    "subscription": "subscription_type",
    "plan": "subscription_type",
    "plantype": "subscription_type",
    "amountpaid": "amount_paid",
    "amount": "amount_paid",
    "price": "amount_paid",
    "paymentmethod": "payment_method",
    "method": "payment_method",
    "paymentcomplete": "payment_complete",
    "paid": "payment_complete",
    "registrationdate": "registration_date",
    "startdate": "registration_date",
    "joindate": "registration_date",
    "duedate": "due_date",
    "enddate": "due_date",
    "expirydate": "due_date",
}

_TRUE = {"1", "true", "yes", "y", "on", "paid", "complete"}
_FALSE = {"0", "false", "no", "n", "off", "unpaid", "incomplete", "partial"}


def today_iso() -> str:
    return date.today().isoformat()


def parse_iso(d: str) -> date:
    return date.fromisoformat(d)


def add_months(start: date, months: int) -> date:
    """
    Add months while keeping day in valid range (e.g., Jan 31 + 1 month => Feb 28/29).
    """
    y = start.year + (start.month - 1 + months) // 12
    m = (start.month - 1 + months) % 12 + 1
    # last day of target month
    if m == 12:
        next_month = date(y + 1, 1, 1)
    else:
        next_month = date(y, m + 1, 1)
    last_day = next_month - timedelta(days=1)
    day = min(start.day, last_day.day)
    return date(y, m, day)


def calc_due_date(start: date, subscription_type: str) -> date:
    if subscription_type in SUBSCRIPTION_DAYS:
        return start + timedelta(days=SUBSCRIPTION_DAYS[subscription_type])
    return add_months(start, SUBSCRIPTION_MONTHS.get(subscription_type, 1))


def _canonical_key(key: str) -> str:
    return re.sub(r"[^a-z0-9]", "", str(key).lower())


def coerce_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    # tolerate full timestamps such as 2024-01-31T00:00:00.000Z
    return date.fromisoformat(text[:10])


def coerce_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(text)


def coerce_amount(value) -> float:
    if isinstance(value, bool):
        raise ValueError(value)
    if isinstance(value, str):
        value = value.replace(",", "").strip()
    return float(value)


def validate_member_inputs(full_name: str, contact_number: str, amount_paid, registration_date, due_date) -> list[str]:
    errors: list[str] = []
    if not str(full_name or "").strip():
        errors.append("Full name is required.")
    if not str(contact_number or "").strip():
        errors.append("Contact number is required.")
    try:
        if coerce_amount(amount_paid) < 0:
            errors.append("Amount paid cannot be negative.")
    except (TypeError, ValueError):
        errors.append("Amount paid must be numeric.")
    try:
        sd = coerce_date(registration_date)
        ed = coerce_date(due_date)
        if ed < sd:
            errors.append("Due date cannot be before the registration date.")
    except (TypeError, ValueError):
        errors.append("Registration/due dates must be valid ISO dates (YYYY-MM-DD).")
    return errors


def normalize_member_input(raw: dict, today: date | None = None) -> dict:
    """
    Map a loosely keyed record (form payload, CSV row) onto typed member fields.

    Missing optional fields get defaults (monthly plan, plan price, cash,
    paid, registration today, due date from the plan). Present but malformed
    values are rejected with a ValidationError listing every bad field.
    Unknown keys, including any stored status, are ignored.
    """
    today = today or date.today()
    data: dict = {}
    for key, value in raw.items():
        target = FIELD_ALIASES.get(_canonical_key(key))
        if target is None or value is None or (isinstance(value, str) and not value.strip()):
            continue
        data.setdefault(target, value)

    errors: list[str] = []
    out: dict = {
        "full_name": str(data.get("full_name", "")).strip(),
        "contact_number": str(data.get("contact_number", "")).strip(),
    }

    subscription_type = str(data.get("subscription_type", "monthly")).strip().lower()
    if subscription_type not in SUBSCRIPTION_TYPES:
        errors.append(f"Subscription type must be one of: {', '.join(SUBSCRIPTION_TYPES)}.")
        subscription_type = "monthly"
    out["subscription_type"] = subscription_type

    payment_method = str(data.get("payment_method", "cash")).strip().lower()
    if payment_method not in PAYMENT_METHODS:
        errors.append(f"Payment method must be one of: {', '.join(PAYMENT_METHODS)}.")
    out["payment_method"] = payment_method

    try:
        out["payment_complete"] = coerce_bool(data.get("payment_complete", True))
    except ValueError:
        errors.append("Payment complete must be yes/no.")

    amount = data.get("amount_paid", SUBSCRIPTION_PRICES[subscription_type])
    try:
        out["amount_paid"] = coerce_amount(amount)
    except (TypeError, ValueError):
        out["amount_paid"] = amount

    try:
        out["registration_date"] = coerce_date(data.get("registration_date", today))
    except (TypeError, ValueError):
        out["registration_date"] = data.get("registration_date")
    try:
        if "due_date" in data:
            out["due_date"] = coerce_date(data["due_date"])
        else:
            out["due_date"] = calc_due_date(out["registration_date"], subscription_type)
    except (TypeError, ValueError, AttributeError):
        out["due_date"] = data.get("due_date")

    errors.extend(
        validate_member_inputs(
            out["full_name"],
            out["contact_number"],
            out["amount_paid"],
            out["registration_date"],
            out["due_date"],
        )
    )
    if errors:
        raise ValidationError(errors)
    return out


# ---------- Reports ----------

def members_frame(members: Iterable[Member]) -> pd.DataFrame:
    rows = []
    for m in members:
        row = m.to_dict()
        row["check_ins"] = len(m.check_in_history)
        del row["check_in_history"]
        rows.append(row)
    if not rows:
        return pd.DataFrame(columns=[
            "id", "full_name", "contact_number", "subscription_type", "amount_paid", "payment_method",
            "payment_complete", "registration_date", "due_date", "status", "check_ins",
        ])
    return pd.DataFrame(rows)


def transactions_frame(transactions: Iterable[Transaction]) -> pd.DataFrame:
    df = pd.DataFrame([t.to_dict() for t in transactions])
    if df.empty:
        return pd.DataFrame(columns=["id", "member_id", "amount", "type", "date", "description"])
    return df


def revenue_summary_by_month(transactions: Iterable[Transaction]) -> pd.DataFrame:
    """Net revenue per YYYY-MM, newest month first. Adjustments count with their sign."""
    df = transactions_frame(transactions)
    if df.empty:
        return pd.DataFrame(columns=["month", "revenue"])
    df["month"] = df["date"].str.slice(0, 7)
    summary = df.groupby("month", as_index=False)["amount"].sum().rename(columns={"amount": "revenue"})
    return summary.sort_values("month", ascending=False).reset_index(drop=True)


def revenue_for_month(transactions: Iterable[Transaction], month: str) -> float:
    summary = revenue_summary_by_month(transactions)
    match = summary.loc[summary["month"] == month, "revenue"]
    return float(match.iloc[0]) if not match.empty else 0.0


def total_revenue(transactions: Iterable[Transaction]) -> float:
    df = transactions_frame(transactions)
    return float(df["amount"].sum()) if not df.empty else 0.0


def import_members_csv(cache, file) -> tuple[list[Member], list[str]]:
    """
    Register every row of a members CSV (headers like "Name", "Phone",
    "Start Date", "End Date", "Amount Paid", "Payment Complete").

    Rows without a name or phone are skipped silently. Rows that fail
    validation are skipped and reported as "Row N: message". Data source
    failures propagate and stop the import.
    """
    df = pd.read_csv(file, dtype=str, keep_default_na=False, skipinitialspace=True)
    imported: list[Member] = []
    problems: list[str] = []
    for index, record in enumerate(df.to_dict(orient="records"), start=2):
        row = {str(k).strip(): str(v).strip() for k, v in record.items()}
        fields = {FIELD_ALIASES.get(_canonical_key(k)): v for k, v in row.items() if v}
        if not fields.get("full_name") or not fields.get("contact_number"):
            continue
        try:
            imported.append(cache.register(row))
        except ValidationError as exc:
            problems.extend(f"Row {index}: {e}" for e in exc.errors)
    return imported, problems


def insert_sample_data(cache, today: date | None = None) -> list[Member]:
    """
    Register 3 members (active, due, overdue) with their payments.
    Safe to run multiple times: contact numbers get a suffix per run.
    """
    today = today or date.today()
    suffix = str(len(cache.get_members()) + 1).zfill(3)
    samples = [
        {
            "fullName": "Wanjiru Kamau",
            "contactNumber": f"0712000{suffix}",
            "subscriptionType": "quarterly",
            "amountPaid": 8000,
            "paymentMethod": "mpesa",
            "registrationDate": today - timedelta(days=10),
        },
        {
            "fullName": "Otieno Ochieng",
            "contactNumber": f"0722000{suffix}",
            "subscriptionType": "monthly",
            "amountPaid": 1500,
            "paymentMethod": "cash",
            "paymentComplete": False,
            "registrationDate": today - timedelta(days=28),
            "dueDate": today + timedelta(days=2),
        },
        {
            "fullName": "Achieng Njeri",
            "contactNumber": f"0733000{suffix}",
            "subscriptionType": "weekly",
            "amountPaid": 1000,
            "paymentMethod": "cash",
            "registrationDate": today - timedelta(days=12),
        },
    ]
    return [cache.register(s) for s in samples]
