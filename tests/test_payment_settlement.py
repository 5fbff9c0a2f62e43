"""
test_payment_settlement.py — Reference-keyed settlement of top-ups.

The provider is a small scripted fake so each test controls exactly what
"Paystack" says about a reference.
"""

import asyncio

import pytest

from authentiscan.core.database import PAYMENTS, USERS
from authentiscan.core.errors import MetadataMismatch, PaymentVerificationFailed, UserNotFound
from authentiscan.services.credit_ledger import CreditLedger
from authentiscan.services.payment_settlement import PaymentSettlement
from authentiscan.services.paystack_client import ProviderTransaction
from conftest import seed_user


class FakeProvider:
    def __init__(self):
        self.transactions: dict[str, ProviderTransaction] = {}
        self.calls = 0

    def add(self, reference, owner_id="alice", credits=10, status="success"):
        self.transactions[reference] = ProviderTransaction(
            reference=reference,
            status=status,
            amount=1000,
            currency="USD",
            metadata={"credits": credits, "owner_id": owner_id},
            raw={"reference": reference, "status": status},
        )

    async def verify(self, reference):
        self.calls += 1
        if reference not in self.transactions:
            raise PaymentVerificationFailed("Transaction reference not found")
        return self.transactions[reference]


@pytest.fixture()
def provider():
    return FakeProvider()


@pytest.fixture()
async def settlement(fake_db, provider):
    await seed_user(fake_db, "alice", credits=5)
    await seed_user(fake_db, "mallory", credits=0)
    return PaymentSettlement(fake_db, CreditLedger(fake_db), provider)


async def _credits(db, user_id):
    return (await db[USERS].find_one({"external_id": user_id}))["credits"]


class TestSettle:
    async def test_first_settlement_credits_and_records(self, settlement, provider, fake_db):
        provider.add("ref_1")
        outcome = await settlement.settle("alice", "ref_1")

        assert outcome.credits == 10
        assert outcome.balance == 15
        assert outcome.replayed is False
        payment = await fake_db[PAYMENTS].find_one({"reference": "ref_1"})
        assert payment["processed"] is True
        assert payment["user_id"] == "alice"
        assert payment["credits"] == 10
        assert payment["email"] == "alice@example.com"

    async def test_replay_is_idempotent(self, settlement, provider, fake_db):
        provider.add("ref_1")
        first = await settlement.settle("alice", "ref_1")
        second = await settlement.settle("alice", "ref_1")

        assert second.replayed is True
        assert second.credits == first.credits
        assert second.balance == first.balance
        assert await _credits(fake_db, "alice") == 15
        assert await fake_db[PAYMENTS].count_documents({"reference": "ref_1"}) == 1

    async def test_concurrent_settlements_credit_once(self, settlement, provider, fake_db):
        provider.add("ref_1")
        outcomes = await asyncio.gather(*(settlement.settle("alice", "ref_1") for _ in range(5)))

        assert await _credits(fake_db, "alice") == 15
        assert await fake_db[PAYMENTS].count_documents({"reference": "ref_1"}) == 1
        assert all(o.balance == 15 for o in outcomes)
        payment = await fake_db[PAYMENTS].find_one({"reference": "ref_1"})
        assert payment["processed"] is True

    async def test_unsuccessful_payment_rejected_without_effect(self, settlement, provider, fake_db):
        provider.add("ref_failed", status="abandoned")
        with pytest.raises(PaymentVerificationFailed):
            await settlement.settle("alice", "ref_failed")

        assert await _credits(fake_db, "alice") == 5
        assert await fake_db[PAYMENTS].find_one({"reference": "ref_failed"}) is None

    async def test_unknown_reference(self, settlement):
        with pytest.raises(PaymentVerificationFailed):
            await settlement.settle("alice", "ref_missing")

    async def test_missing_credits_metadata(self, settlement, provider):
        provider.add("ref_zero", credits=0)
        with pytest.raises(PaymentVerificationFailed):
            await settlement.settle("alice", "ref_zero")

    async def test_unknown_user(self, settlement, provider):
        provider.add("ref_ghost", owner_id="ghost")
        with pytest.raises(UserNotFound):
            await settlement.settle("ghost", "ref_ghost")


class TestOwnership:
    async def test_foreign_reference_rejected(self, settlement, provider, fake_db):
        provider.add("ref_1", owner_id="alice")
        with pytest.raises(MetadataMismatch):
            await settlement.settle("mallory", "ref_1")
        assert await _credits(fake_db, "mallory") == 0

    async def test_foreign_reference_rejected_after_settlement(self, settlement, provider, fake_db):
        provider.add("ref_1", owner_id="alice")
        await settlement.settle("alice", "ref_1")

        with pytest.raises(MetadataMismatch):
            await settlement.settle("mallory", "ref_1")
        assert await _credits(fake_db, "mallory") == 0

    async def test_recorded_owner_is_checked_too(self, settlement, provider, fake_db):
        # metadata without an owner, but the local record belongs to alice
        provider.add("ref_1", owner_id=None)
        await settlement.settle("alice", "ref_1")

        with pytest.raises(MetadataMismatch):
            await settlement.settle("mallory", "ref_1")


class TestRecovery:
    async def test_unprocessed_record_is_completed(self, settlement, provider, fake_db):
        """A crash after recording but before crediting is finished on retry."""
        provider.add("ref_1")
        await fake_db[PAYMENTS].insert_one(
            {"reference": "ref_1", "user_id": "alice", "credits": 10, "processed": False}
        )

        outcome = await settlement.settle("alice", "ref_1")

        assert outcome.replayed is False
        assert await _credits(fake_db, "alice") == 15
        assert (await fake_db[PAYMENTS].find_one({"reference": "ref_1"}))["processed"] is True

    async def test_crash_after_credit_does_not_double_credit(self, settlement, provider, fake_db):
        """Credit landed but processed=true was never written."""
        provider.add("ref_1")
        await fake_db[PAYMENTS].insert_one(
            {"reference": "ref_1", "user_id": "alice", "credits": 10, "processed": False}
        )
        await CreditLedger(fake_db).credit("alice", 10, reference="ref_1")

        outcome = await settlement.settle("alice", "ref_1")

        assert outcome.balance == 15
        assert await _credits(fake_db, "alice") == 15
        assert (await fake_db[PAYMENTS].find_one({"reference": "ref_1"}))["processed"] is True
