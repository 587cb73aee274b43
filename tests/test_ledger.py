import pytest
from pymongo.errors import AutoReconnect

from petcontest.utils.ledger import TokenLedger


@pytest.fixture
def ledger(db):
    return TokenLedger(db)


def fail_once(monkeypatch, ledger):
    """Make the next balance update raise, then behave normally."""
    original = ledger._increment
    calls = {"count": 0}

    async def flaky(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 1:
            raise AutoReconnect("connection reset")
        return await original(*args, **kwargs)

    monkeypatch.setattr(ledger, "_increment", flaky)
    return calls


async def test_keyed_credit_applies_once(ledger, balance, db):
    first = await ledger.credit("u1", 50, "competition_prize", idempotency_key="PRIZE_1")
    second = await ledger.credit("u1", 50, "competition_prize", idempotency_key="PRIZE_1")

    assert first[1] == "Balance added successfully"
    assert second[1] == "Transaction already processed"
    assert await balance("u1") == 50
    assert await db.token_transactions.count_documents({"idempotency_key": "PRIZE_1"}) == 1


async def test_pending_credit_is_finished_on_retry(ledger, balance, db, monkeypatch):
    fail_once(monkeypatch, ledger)

    with pytest.raises(AutoReconnect):
        await ledger.credit("u1", 50, "competition_prize", idempotency_key="PRIZE_1")
    row = await db.token_transactions.find_one({"idempotency_key": "PRIZE_1"})
    assert row["status"] == "pending"
    assert await balance("u1") == 0

    success, message, transaction = await ledger.credit(
        "u1", 50, "competition_prize", idempotency_key="PRIZE_1"
    )

    assert success is True
    assert message == "Balance added successfully"
    assert transaction["balance_after"] == 50
    assert await balance("u1") == 50
    row = await db.token_transactions.find_one({"idempotency_key": "PRIZE_1"})
    assert row["status"] == "completed"
    assert await db.token_transactions.count_documents({"idempotency_key": "PRIZE_1"}) == 1


async def test_retry_after_balance_moved_does_not_pay_twice(ledger, balance, db, fund):
    await fund("u1", 10)
    await ledger.credit("u1", 50, "competition_prize", idempotency_key="PRIZE_1")
    # Attempt stopped after the $inc but before the row was completed
    await db.token_transactions.update_one({"idempotency_key": "PRIZE_1"}, {"$set": {"status": "pending"}})

    _, _, transaction = await ledger.credit("u1", 50, "competition_prize", idempotency_key="PRIZE_1")

    assert await balance("u1") == 60
    assert transaction["balance_after"] == 60
    row = await db.token_transactions.find_one({"idempotency_key": "PRIZE_1"})
    assert row["status"] == "completed"


async def test_unkeyed_credit_creates_wallet(ledger, balance, db):
    success, _, transaction = await ledger.credit("new-user", 30, "competition_refund")

    assert success is True
    assert transaction["balance_after"] == 30
    wallet = await db.wallets.find_one({"user_id": "new-user"})
    assert wallet["total_credited"] == 30
    assert wallet["total_debited"] == 0


async def test_debit_never_goes_negative(ledger, balance, fund):
    await fund("u1", 40)

    success, message, _ = await ledger.debit("u1", 50, "competition_entry")

    assert success is False
    assert message == "Insufficient tokens. Required: 50, Available: 40"
    assert await balance("u1") == 40


async def test_non_positive_amounts_are_rejected(ledger):
    assert (await ledger.credit("u1", 0, "competition_prize"))[0] is False
    assert (await ledger.debit("u1", -5, "competition_entry"))[0] is False
