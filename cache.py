"""
cache.py
Read-through member cache with a fixed validity window and write-through mutations.
"""

from __future__ import annotations

import json
import logging
from collections.abc import MutableMapping
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Callable, Iterator

from config import settings
from errors import DuplicateContact, GymError, NotFound, ValidationError
from models import STATUSES, Member, Transaction
from status import DUE_THRESHOLD_DAYS, compute_status, reconcile_all
import utils

logger = logging.getLogger(__name__)

CACHE_KEY = "gym_members_cache"
CACHE_TIMESTAMP_KEY = "gym_members_cache_timestamp"
PAYMENT_HISTORY_CACHE_KEY = "gym_payment_history_cache"

FRESH = "FRESH"
STALE = "STALE"


class JsonFileStorage(MutableMapping):
    """String key/value store persisted as a single JSON object on disk."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable cache file %s", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data), encoding="utf-8")
        tmp.replace(self.path)

    def __getitem__(self, key: str) -> str:
        return self._read()[key]

    def __setitem__(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def __delitem__(self, key: str) -> None:
        data = self._read()
        del data[key]
        self._write(data)

    def __iter__(self) -> Iterator[str]:
        return iter(self._read())

    def __len__(self) -> int:
        return len(self._read())


class MemberCache:
    """
    Members and payment history mirrored from a data source.

    load() serves the persisted snapshot while it is younger than the
    validity window and refetches otherwise. Every mutation writes to the
    source first; local state only changes once the source accepted it.
    There is no locking: two processes sharing a storage overwrite each
    other's snapshot, last write wins.
    """

    def __init__(
        self,
        source,
        storage: MutableMapping | None = None,
        clock: Callable[[], datetime] = datetime.now,
        validity_window: timedelta = timedelta(seconds=settings.CACHE_TTL_SECONDS),
        threshold: int = DUE_THRESHOLD_DAYS,
        enforce_unique_contact: bool = settings.ENFORCE_UNIQUE_CONTACT,
    ):
        self.source = source
        self.storage = storage if storage is not None else {}
        self.clock = clock
        self.validity_window = validity_window
        self.threshold = threshold
        self.enforce_unique_contact = enforce_unique_contact
        self.snapshot: list[Member] = []
        self.payment_history: list[Transaction] = []
        self._generation = 0
        self._loaded = False

    # ---------- freshness ----------

    @property
    def last_refresh_time(self) -> datetime | None:
        raw = self.storage.get(CACHE_TIMESTAMP_KEY)
        if raw is None:
            return None
        try:
            return datetime.fromtimestamp(float(raw))
        except (TypeError, ValueError, OverflowError, OSError):
            return None

    def is_cache_valid(self) -> bool:
        refreshed = self.last_refresh_time
        if refreshed is None:
            return False
        return self.clock() - refreshed < self.validity_window

    def freshness(self) -> str:
        return FRESH if self.is_cache_valid() else STALE

    def invalidate(self) -> None:
        for key in (CACHE_KEY, CACHE_TIMESTAMP_KEY, PAYMENT_HISTORY_CACHE_KEY):
            self.storage.pop(key, None)

    # ---------- persistence ----------

    def _load_from_cache(self) -> list[Member] | None:
        if not self.is_cache_valid():
            return None
        raw = self.storage.get(CACHE_KEY)
        if raw is None:
            return None
        try:
            members = [Member.from_dict(m) for m in json.loads(raw)]
            history_raw = self.storage.get(PAYMENT_HISTORY_CACHE_KEY)
            history = [Transaction.from_dict(t) for t in json.loads(history_raw)] if history_raw else []
        except (TypeError, ValueError, KeyError):
            logger.warning("Cached member snapshot is corrupt; treating cache as expired")
            self.invalidate()
            return None
        self.snapshot = members
        self.payment_history = history
        self._loaded = True
        logger.debug("Served %d member(s) from cache", len(members))
        return members

    def _save_to_cache(self, refreshed: bool = False) -> None:
        if not self._loaded:
            # Never persist a snapshot that only holds this instance's own mutations.
            logger.warning("Member snapshot was never loaded; invalidating cache instead of saving")
            self.invalidate()
            return
        try:
            self.storage[CACHE_KEY] = json.dumps([m.to_dict() for m in self.snapshot])
            self.storage[PAYMENT_HISTORY_CACHE_KEY] = json.dumps([t.to_dict() for t in self.payment_history])
            if refreshed:
                self.storage[CACHE_TIMESTAMP_KEY] = str(self.clock().timestamp())
        except (OSError, TypeError, ValueError):
            logger.exception("Error saving member cache")

    # ---------- reads ----------

    def load(self, force_refresh: bool = False) -> list[Member]:
        if not force_refresh:
            cached = self._load_from_cache()
            if cached is not None:
                return list(cached)
        return self._fetch()

    def _fetch(self) -> list[Member]:
        """
        Refetch members and history from the source.

        The generation counter only matters for re-entrant calls (a load
        started while another is still inside the source); the older call
        then returns the newer snapshot instead of overwriting it.
        """
        self._generation += 1
        generation = self._generation
        try:
            members = self.source.list_members()
            history = self.source.list_transactions()
        except GymError:
            # Stale data is not served on failure; the cache stays STALE.
            logger.exception("Error fetching members")
            return []
        if generation != self._generation:
            logger.debug("Discarding result of superseded load %d", generation)
            return list(self.snapshot)

        now = self.clock()
        self.snapshot = [m.with_changes(status=compute_status(m.due_date, now, self.threshold)) for m in members]
        self.payment_history = history
        self._loaded = True
        self._save_to_cache(refreshed=True)
        logger.info("Fetched %d member(s) from source", len(self.snapshot))
        return list(self.snapshot)

    def get_members(self, status: str | None = None) -> list[Member]:
        if status is not None and status not in STATUSES:
            raise ValidationError(f"Status must be one of: {', '.join(STATUSES)}.")
        members = self.load()
        if status is None:
            return members
        return [m for m in members if m.status == status]

    def search(self, query: str) -> list[Member]:
        q = (query or "").strip().lower()
        if not q:
            return list(self.snapshot)
        return [m for m in self.snapshot if q in m.full_name.lower() or q in m.contact_number.lower()]

    def incomplete_payments(self) -> list[Member]:
        return [m for m in self.snapshot if not m.payment_complete]

    def payment_history_by_month(self, month: str) -> list[Transaction]:
        return [t for t in self.payment_history if t.date.isoformat()[:7] == month]

    # ---------- helpers ----------

    def _ensure_loaded(self) -> None:
        """Hydrate the snapshot (persisted copy if fresh, else the source) before mutating it."""
        if not self._loaded:
            self.load()

    def _get(self, member_id: int) -> Member:
        for m in self.snapshot:
            if m.id == member_id:
                return m
        return self.source.get_member(member_id)

    def _replace(self, member: Member) -> None:
        for i, m in enumerate(self.snapshot):
            if m.id == member.id:
                self.snapshot[i] = member
                return
        self.snapshot.append(member)

    def _record_transaction(self, member_id: int, amount: float, kind: str, on: date, description: str) -> Transaction | None:
        data = {"member_id": member_id, "amount": amount, "type": kind, "date": on, "description": description}
        try:
            transaction_id = self.source.insert_transaction(data)
        except GymError:
            # The member write already went through; keep local state in line with it.
            logger.exception("Error creating %s transaction for member %s", kind, member_id)
            return None
        transaction = Transaction(id=transaction_id, **data)
        self.payment_history.insert(0, transaction)
        return transaction

    @staticmethod
    def _amount(value, label: str = "Amount") -> float:
        try:
            amount = utils.coerce_amount(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{label} must be numeric.") from None
        if amount < 0:
            raise ValidationError(f"{label} cannot be negative.")
        return amount

    # ---------- mutations ----------

    def register(self, member_data: dict) -> Member:
        now = self.clock()
        data = utils.normalize_member_input(member_data, today=now.date())
        self._ensure_loaded()
        if self.enforce_unique_contact and self.source.find_member_by_contact(data["contact_number"]) is not None:
            raise DuplicateContact(data["contact_number"])

        data["status"] = compute_status(data["due_date"], now, self.threshold)
        member_id = self.source.insert_member(data)
        member = Member(id=member_id, **data)

        if member.amount_paid > 0:
            self._record_transaction(
                member_id,
                member.amount_paid,
                "payment",
                member.registration_date,
                f"Initial registration payment - {member.subscription_type} membership",
            )
        self.snapshot.append(member)
        self._save_to_cache()
        logger.info("Registered member %s (%s)", member_id, member.full_name)
        return member

    def renew(self, member_id: int, new_due_date, amount_paid, payment_complete: bool = True) -> Member:
        amount = self._amount(amount_paid, "Amount paid")
        try:
            due = utils.coerce_date(new_due_date)
        except (TypeError, ValueError):
            raise ValidationError("New due date must be a valid ISO date (YYYY-MM-DD).") from None
        self._ensure_loaded()
        member = self._get(member_id)
        if due < member.registration_date:
            raise ValidationError("Due date cannot be before the registration date.")

        now = self.clock()
        new_status = compute_status(due, now, self.threshold)
        patch = {
            "due_date": due,
            "amount_paid": amount,
            "payment_complete": bool(payment_complete),
            "status": new_status,
        }
        self.source.update_member(member_id, patch)

        renewed = member.with_changes(**patch)
        self._record_transaction(
            member_id,
            amount,
            "renewal",
            now.date(),
            f"Membership renewal payment - {member.subscription_type} membership",
        )
        self._replace(renewed)
        self._save_to_cache()
        logger.info("Renewed member %s until %s", member_id, due.isoformat())
        return renewed

    def complete_payment(self, member_id: int) -> Member:
        self._ensure_loaded()
        member = self._get(member_id)
        self.source.update_member(member_id, {"payment_complete": True})
        updated = member.with_changes(
            payment_complete=True,
            status=compute_status(member.due_date, self.clock(), self.threshold),
        )
        self._replace(updated)
        self._save_to_cache()
        return updated

    def adjust_payment(self, member_id: int, new_amount) -> Member:
        amount = self._amount(new_amount, "Amount paid")
        self._ensure_loaded()
        member = self._get(member_id)
        self.source.update_member(member_id, {"amount_paid": amount})

        now = self.clock()
        difference = amount - member.amount_paid
        if difference:
            self._record_transaction(
                member_id,
                difference,
                "payment" if difference > 0 else "adjustment",
                now.date(),
                f"Payment {'increase' if difference > 0 else 'adjustment'} of KSh {abs(difference):,.0f}",
            )
        updated = member.with_changes(amount_paid=amount, status=compute_status(member.due_date, now, self.threshold))
        self._replace(updated)
        self._save_to_cache()
        return updated

    def delete_member(self, member_id: int) -> None:
        self._ensure_loaded()
        self.source.delete_member(member_id)
        self.snapshot = [m for m in self.snapshot if m.id != member_id]
        self.payment_history = [t for t in self.payment_history if t.member_id != member_id]
        self._save_to_cache()
        logger.info("Deleted member %s", member_id)

    def delete_by_status(self, status: str) -> int:
        if status not in STATUSES:
            raise ValidationError(f"Status must be one of: {', '.join(STATUSES)}.")
        self._ensure_loaded()
        now = self.clock()
        # Select from the source itself so an outage surfaces as RemoteUnavailable.
        targets = {
            m.id for m in self.source.list_members() if compute_status(m.due_date, now, self.threshold) == status
        }
        if not targets:
            raise NotFound(f"No {status} members to delete.")

        deleted = self.source.delete_members(targets)
        self.snapshot = [m for m in self.snapshot if m.id not in targets]
        self.payment_history = [t for t in self.payment_history if t.member_id not in targets]
        self._save_to_cache()
        logger.info("Deleted %d %s member(s)", deleted, status)
        return deleted

    def delete_all_overdue(self) -> int:
        return self.delete_by_status("overdue")

    def check_in(self, member_id: int, day: date | None = None) -> bool:
        """Record today's visit. Returns False when the member already checked in that day."""
        day = day or self.clock().date()
        self._ensure_loaded()
        member = self._get(member_id)
        if not self.source.insert_check_in(member_id, day):
            return False
        self._replace(member.with_changes(check_in_history=member.check_in_history + (day,)))
        self._save_to_cache()
        return True

    def edit_transaction(self, transaction_id: int, amount=None, description: str | None = None) -> Transaction:
        """Admin correction of a recorded transaction's amount and/or description."""
        patch: dict = {}
        if amount is not None:
            try:
                patch["amount"] = utils.coerce_amount(amount)
            except (TypeError, ValueError):
                raise ValidationError("Amount must be numeric.") from None
        if description is not None:
            patch["description"] = description.strip() or None
        if not patch:
            raise ValidationError("Nothing to update.")

        self._ensure_loaded()
        self.source.update_transaction(transaction_id, patch)
        updated = self.source.get_transaction(transaction_id)
        self.payment_history = [updated if t.id == transaction_id else t for t in self.payment_history]
        self._save_to_cache()
        logger.info("Edited transaction %s", transaction_id)
        return updated

    def delete_transaction(self, transaction_id: int) -> None:
        self._ensure_loaded()
        self.source.delete_transaction(transaction_id)
        self.payment_history = [t for t in self.payment_history if t.id != transaction_id]
        self._save_to_cache()
        logger.info("Deleted transaction %s", transaction_id)

    def reconcile(self) -> list[int]:
        """Periodic pass writing derived statuses back to the source."""
        return reconcile_all(self.source, self.clock(), self.threshold)
