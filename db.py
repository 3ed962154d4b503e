"""
db.py
SQLite data source: connection lifecycle, schema, member/transaction queries.
"""

from __future__ import annotations

import logging
import sqlite3
from collections import defaultdict
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Iterable, Iterator

from errors import NotFound, RemoteUnavailable
from models import Member, Transaction

logger = logging.getLogger(__name__)

# Columns a caller may patch through update_member / update_transaction
MEMBER_COLUMNS = (
    "full_name",
    "contact_number",
    "subscription_type",
    "amount_paid",
    "payment_method",
    "payment_complete",
    "registration_date",
    "due_date",
    "status",
)
TRANSACTION_COLUMNS = ("member_id", "amount", "type", "date", "description")


def _now_iso() -> str:
    return datetime.utcnow().isoformat(timespec="seconds")


def _to_sql(value):
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _row_to_member(row: sqlite3.Row, history: Iterable[date] = ()) -> Member:
    return Member(
        id=row["id"],
        full_name=row["full_name"],
        contact_number=row["contact_number"],
        subscription_type=row["subscription_type"],
        amount_paid=float(row["amount_paid"]),
        payment_method=row["payment_method"],
        payment_complete=bool(row["payment_complete"]),
        registration_date=date.fromisoformat(row["registration_date"]),
        due_date=date.fromisoformat(row["due_date"]),
        status=row["status"],
        check_in_history=tuple(history),
    )


def _row_to_transaction(row: sqlite3.Row) -> Transaction:
    return Transaction(
        id=row["id"],
        member_id=row["member_id"],
        amount=float(row["amount"]),
        type=row["type"],
        date=date.fromisoformat(row["date"]),
        description=row["description"],
    )


class Database:
    """
    Handle on the gym SQLite file.

    Call open() before use and close() when done (or use it as a context
    manager). Any sqlite3 failure surfaces as RemoteUnavailable.
    """

    def __init__(self, path: str | Path):
        self.path = str(path)
        self._conn: sqlite3.Connection | None = None

    # ---------- lifecycle ----------

    def open(self) -> "Database":
        if self._conn is not None:
            return self
        try:
            conn = sqlite3.connect(self.path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error as exc:
            raise RemoteUnavailable(f"Cannot open database {self.path}: {exc}") from exc
        self._conn = conn
        logger.debug("Opened database %s", self.path)
        return self

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.debug("Closed database %s", self.path)

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def __enter__(self) -> "Database":
        return self.open()

    def __exit__(self, *exc_info) -> None:
        self.close()

    @contextmanager
    def get_conn(self) -> Iterator[sqlite3.Connection]:
        if self._conn is None:
            raise RemoteUnavailable("Database is not open.")
        conn = self._conn
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise RemoteUnavailable(str(exc)) from exc
        except Exception:
            conn.rollback()
            raise

    # ---------- raw helpers ----------

    def execute(self, sql: str, params: tuple = ()) -> int:
        with self.get_conn() as conn:
            cur = conn.execute(sql, params)
            return cur.lastrowid

    def execute_count(self, sql: str, params: tuple = ()) -> int:
        with self.get_conn() as conn:
            cur = conn.execute(sql, params)
            return cur.rowcount

    def fetch_one(self, sql: str, params: tuple = ()):
        with self.get_conn() as conn:
            cur = conn.execute(sql, params)
            return cur.fetchone()

    def fetch_all(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self.get_conn() as conn:
            cur = conn.execute(sql, params)
            return cur.fetchall()

    # ---------- schema ----------

    def _create_tables(self) -> None:
        with self.get_conn() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS admin_users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    last_login TEXT
                );

                CREATE TABLE IF NOT EXISTS members (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    full_name TEXT NOT NULL,
                    contact_number TEXT NOT NULL,
                    subscription_type TEXT NOT NULL
                        CHECK(subscription_type IN ('weekly','monthly','quarterly','yearly')),
                    amount_paid REAL NOT NULL CHECK(amount_paid >= 0),
                    payment_method TEXT NOT NULL CHECK(payment_method IN ('cash','mpesa')),
                    payment_complete INTEGER NOT NULL DEFAULT 1,
                    registration_date TEXT NOT NULL,
                    due_date TEXT NOT NULL,
                    status TEXT NOT NULL CHECK(status IN ('active','due','overdue')),
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_members_contact ON members(contact_number);

                CREATE TABLE IF NOT EXISTS transactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    member_id INTEGER NOT NULL,
                    amount REAL NOT NULL,
                    type TEXT NOT NULL CHECK(type IN ('payment','renewal','adjustment','refund')),
                    date TEXT NOT NULL,
                    description TEXT,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY(member_id) REFERENCES members(id) ON DELETE CASCADE
                );

                CREATE TABLE IF NOT EXISTS check_ins (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    member_id INTEGER NOT NULL,
                    date TEXT NOT NULL,
                    UNIQUE(member_id, date),
                    FOREIGN KEY(member_id) REFERENCES members(id) ON DELETE CASCADE
                );

                -- Small settings table (used to force password change on first login)
                CREATE TABLE IF NOT EXISTS app_settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )

    def get_setting(self, key: str, default: str | None = None) -> str | None:
        row = self.fetch_one("SELECT value FROM app_settings WHERE key = ?", (key,))
        if row:
            return str(row["value"])
        return default

    def set_setting(self, key: str, value: str) -> None:
        self.execute(
            """
            INSERT INTO app_settings(key, value) VALUES(?, ?)
            ON CONFLICT(key) DO UPDATE SET value=excluded.value
            """,
            (key, value),
        )

    def init_schema(self, default_admin_hash: str) -> None:
        """
        Initialize the database.
        - Create tables
        - Insert default admin (admin/admin123) if no admin exists
        - Force password change on first login
        """
        self._create_tables()

        admin = self.fetch_one("SELECT id FROM admin_users LIMIT 1")
        if not admin:
            self.execute(
                "INSERT INTO admin_users(username, password_hash, created_at) VALUES(?,?,?)",
                ("admin", default_admin_hash, _now_iso()),
            )
            self.set_setting("force_password_change", "1")
            logger.info("Created default admin user")
        elif self.get_setting("force_password_change") is None:
            self.set_setting("force_password_change", "0")

    def is_force_password_change(self) -> bool:
        return self.get_setting("force_password_change") == "1"

    def clear_force_password_change(self) -> None:
        self.set_setting("force_password_change", "0")

    # ---------- members ----------

    def _check_in_map(self, member_id: int | None = None) -> dict[int, list[date]]:
        sql = "SELECT member_id, date FROM check_ins"
        params: tuple = ()
        if member_id is not None:
            sql += " WHERE member_id = ?"
            params = (member_id,)
        sql += " ORDER BY date ASC"
        history: dict[int, list[date]] = defaultdict(list)
        for r in self.fetch_all(sql, params):
            history[r["member_id"]].append(date.fromisoformat(r["date"]))
        return history

    def list_members(self) -> list[Member]:
        rows = self.fetch_all("SELECT * FROM members ORDER BY id ASC")
        history = self._check_in_map()
        return [_row_to_member(r, history.get(r["id"], ())) for r in rows]

    def get_member(self, member_id: int) -> Member:
        row = self.fetch_one("SELECT * FROM members WHERE id = ?", (member_id,))
        if not row:
            raise NotFound(f"Member {member_id} not found.")
        return _row_to_member(row, self._check_in_map(member_id).get(member_id, ()))

    def find_member_by_contact(self, contact_number: str) -> Member | None:
        row = self.fetch_one(
            "SELECT * FROM members WHERE contact_number = ? LIMIT 1",
            (contact_number.strip(),),
        )
        if not row:
            return None
        return _row_to_member(row, self._check_in_map(row["id"]).get(row["id"], ()))

    def insert_member(self, data: dict) -> int:
        now = _now_iso()
        return self.execute(
            """
            INSERT INTO members(full_name, contact_number, subscription_type, amount_paid,
                payment_method, payment_complete, registration_date, due_date, status,
                created_at, updated_at)
            VALUES(?,?,?,?,?,?,?,?,?,?,?)
            """,
            (
                data["full_name"],
                data["contact_number"],
                data["subscription_type"],
                float(data["amount_paid"]),
                data["payment_method"],
                _to_sql(bool(data.get("payment_complete", True))),
                _to_sql(data["registration_date"]),
                _to_sql(data["due_date"]),
                data["status"],
                now,
                now,
            ),
        )

    def update_member(self, member_id: int, patch: dict) -> None:
        unknown = set(patch) - set(MEMBER_COLUMNS)
        if unknown:
            raise ValueError(f"Cannot update member columns: {sorted(unknown)}")
        if not patch:
            self.get_member(member_id)
            return
        assignments = ", ".join(f"{col}=?" for col in patch)
        params = tuple(_to_sql(v) for v in patch.values()) + (_now_iso(), member_id)
        count = self.execute_count(
            f"UPDATE members SET {assignments}, updated_at=? WHERE id=?",
            params,
        )
        if count == 0:
            raise NotFound(f"Member {member_id} not found.")

    def delete_member(self, member_id: int) -> None:
        with self.get_conn() as conn:
            # Cascade explicitly as well, for files created without foreign keys on
            conn.execute("DELETE FROM transactions WHERE member_id = ?", (member_id,))
            conn.execute("DELETE FROM check_ins WHERE member_id = ?", (member_id,))
            cur = conn.execute("DELETE FROM members WHERE id = ?", (member_id,))
            if cur.rowcount == 0:
                raise NotFound(f"Member {member_id} not found.")

    def delete_members(self, member_ids: Iterable[int]) -> int:
        ids = list(member_ids)
        if not ids:
            return 0
        marks = ",".join("?" for _ in ids)
        with self.get_conn() as conn:
            conn.execute(f"DELETE FROM transactions WHERE member_id IN ({marks})", tuple(ids))
            conn.execute(f"DELETE FROM check_ins WHERE member_id IN ({marks})", tuple(ids))
            cur = conn.execute(f"DELETE FROM members WHERE id IN ({marks})", tuple(ids))
            return cur.rowcount

    def insert_check_in(self, member_id: int, day: date) -> bool:
        """Record a check-in; False when the member already checked in that day."""
        self.get_member(member_id)
        count = self.execute_count(
            "INSERT OR IGNORE INTO check_ins(member_id, date) VALUES(?, ?)",
            (member_id, day.isoformat()),
        )
        return count == 1

    # ---------- transactions ----------

    def list_transactions(self, member_id: int | None = None, types: Iterable[str] | None = None) -> list[Transaction]:
        sql = "SELECT * FROM transactions WHERE 1=1"
        params: list = []
        if member_id is not None:
            sql += " AND member_id = ?"
            params.append(member_id)
        if types:
            types = list(types)
            sql += f" AND type IN ({','.join('?' for _ in types)})"
            params.extend(types)
        sql += " ORDER BY date DESC, id DESC"
        return [_row_to_transaction(r) for r in self.fetch_all(sql, tuple(params))]

    def insert_transaction(self, data: dict) -> int:
        self.get_member(data["member_id"])
        return self.execute(
            "INSERT INTO transactions(member_id, amount, type, date, description, created_at) VALUES(?,?,?,?,?,?)",
            (
                data["member_id"],
                float(data["amount"]),
                data["type"],
                _to_sql(data["date"]),
                data.get("description"),
                _now_iso(),
            ),
        )

    def get_transaction(self, transaction_id: int) -> Transaction:
        row = self.fetch_one("SELECT * FROM transactions WHERE id = ?", (transaction_id,))
        if not row:
            raise NotFound(f"Transaction {transaction_id} not found.")
        return _row_to_transaction(row)

    def update_transaction(self, transaction_id: int, patch: dict) -> None:
        unknown = set(patch) - set(TRANSACTION_COLUMNS)
        if unknown:
            raise ValueError(f"Cannot update transaction columns: {sorted(unknown)}")
        if not patch:
            return
        assignments = ", ".join(f"{col}=?" for col in patch)
        params = tuple(_to_sql(v) for v in patch.values()) + (transaction_id,)
        count = self.execute_count(f"UPDATE transactions SET {assignments} WHERE id=?", params)
        if count == 0:
            raise NotFound(f"Transaction {transaction_id} not found.")

    def delete_transaction(self, transaction_id: int) -> None:
        count = self.execute_count("DELETE FROM transactions WHERE id = ?", (transaction_id,))
        if count == 0:
            raise NotFound(f"Transaction {transaction_id} not found.")
