"""
status.py
Member lifecycle status derived from the due date.
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime, timedelta

from config import settings
from errors import GymError

logger = logging.getLogger(__name__)

DUE_THRESHOLD_DAYS = settings.DUE_THRESHOLD_DAYS

_ONE_DAY = timedelta(days=1)


def _as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime(value.year, value.month, value.day)


def days_until_due(due_date: date | datetime, now: date | datetime) -> int:
    """
    Whole days left before the due date, rounded up.
    Negative once the due date has passed.
    """
    delta = _as_datetime(due_date) - _as_datetime(now)
    return math.ceil(delta / _ONE_DAY)


def compute_status(due_date: date | datetime, now: date | datetime, threshold: int = DUE_THRESHOLD_DAYS) -> str:
    days = days_until_due(due_date, now)
    if days < 0:
        return "overdue"
    if days <= threshold:
        return "due"
    return "active"


def reconcile_all(source, now: datetime, threshold: int = DUE_THRESHOLD_DAYS) -> list[int]:
    """
    Bring stored statuses back in line with due dates.

    Updates are issued one member at a time; a failed update is logged and
    the scan moves on, so a partial pass is corrected by the next one.
    Returns the ids that were updated.
    """
    updated: list[int] = []
    for member in source.list_members():
        derived = compute_status(member.due_date, now, threshold)
        if derived == member.status:
            continue
        try:
            source.update_member(member.id, {"status": derived})
        except GymError:
            logger.exception("Failed to reconcile status for member %s", member.id)
            continue
        updated.append(member.id)
    if updated:
        logger.info("Reconciled status for %d member(s)", len(updated))
    return updated
