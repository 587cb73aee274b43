from datetime import datetime, timedelta

import pytest
from mongomock_motor import AsyncMongoMockClient

from petcontest.config import Settings
from petcontest.database import create_indexes
from petcontest.services.competition.entry import EntryService
from petcontest.services.competition.lifecycle import CompetitionLifecycleService
from petcontest.services.competition.voting import VoteService
from petcontest.utils.clock import utcnow


class FakeClock:
    """Settable clock; services call it like utcnow()."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime):
        self.now = now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
async def db():
    client = AsyncMongoMockClient()
    database = client["petcontest_test"]
    await create_indexes(database)
    return database


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 3, 10, 10, 0))


@pytest.fixture
def settings():
    return Settings(
        entry_fee=100,
        vote_fraud_threshold=3,
        distribution_lease_seconds=600,
        timezone="UTC",
        scheduler_enabled=False
    )


@pytest.fixture
def lifecycle(db, settings, clock):
    return CompetitionLifecycleService(db, settings=settings, clock=clock)


@pytest.fixture
def entries(db, clock):
    return EntryService(db, clock=clock)


@pytest.fixture
def votes(db, settings, clock):
    return VoteService(db, settings=settings, clock=clock)


@pytest.fixture
def fund(db):
    """Give a user a wallet with the given balance."""
    async def _fund(user_id: str, balance: int):
        now = utcnow()
        await db.wallets.update_one(
            {"user_id": user_id},
            {
                "$set": {"balance": balance, "updated_at": now},
                "$setOnInsert": {"total_credited": 0, "total_debited": 0, "created_at": now}
            },
            upsert=True
        )
    return _fund


@pytest.fixture
def balance(db):
    async def _balance(user_id: str) -> int:
        wallet = await db.wallets.find_one({"user_id": user_id})
        return wallet["balance"] if wallet else 0
    return _balance
