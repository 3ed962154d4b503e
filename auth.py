"""
auth.py
Admin gate: bcrypt hashing, login, password change, session expiry.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta

import bcrypt

from config import settings
from db import Database

logger = logging.getLogger(__name__)

SESSION_DURATION = timedelta(hours=settings.SESSION_HOURS)


@dataclass(frozen=True)
class AdminSession:
    username: str
    login_time: datetime
    expires_at: datetime


def _to_bcrypt_secret(password: str) -> bytes:
    """
    bcrypt only uses the first 72 BYTES of the password.
    We truncate to 72 bytes to avoid ValueError and to make behavior explicit.
    """
    pw = password.encode("utf-8")
    if len(pw) > 72:
        pw = pw[:72]
    return pw


def hash_password(password: str, rounds: int = 12) -> str:
    secret = _to_bcrypt_secret(password)
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(secret, salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    secret = _to_bcrypt_secret(password)
    return bcrypt.checkpw(secret, password_hash.encode("utf-8"))


def validate_password_strength(password: str) -> list[str]:
    errors: list[str] = []
    if len(password) < 8:
        errors.append("Password must be at least 8 characters long.")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter.")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter.")
    if not re.search(r"[0-9]", password):
        errors.append("Password must contain at least one number.")
    return errors


def get_admin_by_username(database: Database, username: str):
    return database.fetch_one("SELECT * FROM admin_users WHERE username = ?", (username,))


def login(database: Database, username: str, password: str) -> bool:
    admin = get_admin_by_username(database, username)
    if not admin:
        return False
    if not verify_password(password, admin["password_hash"]):
        logger.warning("Failed login for %s", username)
        return False
    database.execute(
        "UPDATE admin_users SET last_login = ? WHERE id = ?",
        (datetime.utcnow().isoformat(timespec="seconds"), admin["id"]),
    )
    return True


def change_password(database: Database, username: str, new_password: str) -> None:
    new_hash = hash_password(new_password)
    database.execute(
        "UPDATE admin_users SET password_hash = ? WHERE username = ?",
        (new_hash, username),
    )
    database.clear_force_password_change()
    logger.info("Password changed for %s", username)


def start_session(username: str, now: datetime | None = None) -> AdminSession:
    now = now or datetime.now()
    return AdminSession(username=username, login_time=now, expires_at=now + SESSION_DURATION)


def is_session_valid(session: AdminSession | None, now: datetime | None = None) -> bool:
    if session is None:
        return False
    return (now or datetime.now()) <= session.expires_at
