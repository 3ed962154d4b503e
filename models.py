"""
models.py
Lightweight domain helpers (subscription plans, dataclasses).
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import date

# Subscription durations used for due date auto-calculation.
# Weekly plans run in days, the rest in calendar months.
SUBSCRIPTION_DAYS = {"weekly": 7}
SUBSCRIPTION_MONTHS = {
    "monthly": 1,
    "quarterly": 3,
    "yearly": 12,
}
SUBSCRIPTION_TYPES = ("weekly", "monthly", "quarterly", "yearly")

# Default plan prices (KSh)
SUBSCRIPTION_PRICES = {
    "weekly": 1000.0,
    "monthly": 3000.0,
    "quarterly": 8000.0,
    "yearly": 30000.0,
}

PAYMENT_METHODS = ("cash", "mpesa")
STATUSES = ("active", "due", "overdue")
TRANSACTION_TYPES = ("payment", "renewal", "adjustment", "refund")


@dataclass(frozen=True)
class Member:
    id: int | None
    full_name: str
    contact_number: str
    subscription_type: str
    amount_paid: float
    payment_method: str  # cash/mpesa
    payment_complete: bool
    registration_date: date
    due_date: date
    status: str  # derived: active/due/overdue
    check_in_history: tuple[date, ...] = field(default_factory=tuple)

    def with_changes(self, **changes) -> "Member":
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "contact_number": self.contact_number,
            "subscription_type": self.subscription_type,
            "amount_paid": self.amount_paid,
            "payment_method": self.payment_method,
            "payment_complete": self.payment_complete,
            "registration_date": self.registration_date.isoformat(),
            "due_date": self.due_date.isoformat(),
            "status": self.status,
            "check_in_history": [d.isoformat() for d in self.check_in_history],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Member":
        return cls(
            id=data["id"],
            full_name=str(data["full_name"]),
            contact_number=str(data["contact_number"]),
            subscription_type=str(data["subscription_type"]),
            amount_paid=float(data["amount_paid"]),
            payment_method=str(data["payment_method"]),
            payment_complete=bool(data["payment_complete"]),
            registration_date=date.fromisoformat(data["registration_date"]),
            due_date=date.fromisoformat(data["due_date"]),
            status=str(data["status"]),
            check_in_history=tuple(date.fromisoformat(d) for d in data.get("check_in_history", [])),
        )


@dataclass(frozen=True)
class Transaction:
    id: int | None
    member_id: int
    amount: float  # negative only for adjustment/refund
    type: str  # payment/renewal/adjustment/refund
    date: date
    description: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "member_id": self.member_id,
            "amount": self.amount,
            "type": self.type,
            "date": self.date.isoformat(),
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Transaction":
        return cls(
            id=data["id"],
            member_id=int(data["member_id"]),
            amount=float(data["amount"]),
            type=str(data["type"]),
            date=date.fromisoformat(data["date"]),
            description=data.get("description"),
        )
