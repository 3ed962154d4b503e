from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from cache import MemberCache
from db import Database

NOW = datetime(2025, 3, 10, 9, 0, 0)


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class CountingDatabase(Database):
    """Database that counts full member fetches."""

    def __init__(self, path):
        super().__init__(path)
        self.list_calls = 0

    def list_members(self):
        self.list_calls += 1
        return super().list_members()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def database(tmp_path):
    db = CountingDatabase(tmp_path / "gym.db").open()
    db.init_schema("not-a-real-hash")
    yield db
    db.close()


@pytest.fixture
def storage() -> dict:
    return {}


@pytest.fixture
def cache(database, storage, clock) -> MemberCache:
    return MemberCache(
        database,
        storage=storage,
        clock=clock,
        validity_window=timedelta(minutes=5),
        threshold=3,
        enforce_unique_contact=True,
    )


def member_payload(name: str = "Jane Wanjiku", contact: str = "0712345678", **overrides) -> dict:
    payload = {
        "fullName": name,
        "contactNumber": contact,
        "subscriptionType": "monthly",
        "amountPaid": 3000,
        "paymentMethod": "mpesa",
        "paymentComplete": True,
        "registrationDate": NOW.date(),
    }
    payload.update(overrides)
    return payload
