"""
test_credit_ledger.py — Atomic debit / credit against the user document.
"""

import asyncio

import pytest

from authentiscan.core.database import USERS
from authentiscan.core.errors import InsufficientCredits, UserNotFound
from authentiscan.services.credit_ledger import SETTLED_REFERENCES_KEPT, CreditLedger
from conftest import seed_user


@pytest.fixture()
async def ledger(fake_db):
    await seed_user(fake_db, "alice", credits=5)
    return CreditLedger(fake_db)


async def _stored_credits(db, user_id: str) -> int:
    return (await db[USERS].find_one({"external_id": user_id}))["credits"]


class TestDebit:
    async def test_debit_returns_new_balance(self, ledger, fake_db):
        assert await ledger.try_debit("alice", 2) == 3
        assert await _stored_credits(fake_db, "alice") == 3

    async def test_debit_entire_balance(self, ledger):
        assert await ledger.try_debit("alice", 5) == 0

    async def test_overdraft_refused_and_balance_unchanged(self, ledger, fake_db):
        with pytest.raises(InsufficientCredits):
            await ledger.try_debit("alice", 6)
        assert await _stored_credits(fake_db, "alice") == 5

    async def test_unknown_user(self, ledger):
        with pytest.raises(UserNotFound):
            await ledger.try_debit("nobody", 1)

    async def test_negative_amount_rejected(self, ledger):
        with pytest.raises(ValueError):
            await ledger.try_debit("alice", -1)

    async def test_concurrent_debits_never_go_negative(self, ledger, fake_db):
        async def attempt():
            try:
                await ledger.try_debit("alice", 1)
                return True
            except InsufficientCredits:
                return False

        results = await asyncio.gather(*(attempt() for _ in range(10)))

        assert results.count(True) == 5
        assert results.count(False) == 5
        assert await _stored_credits(fake_db, "alice") == 0


class TestDebitUpTo:
    async def test_full_amount_when_affordable(self, ledger):
        assert await ledger.debit_up_to("alice", 3) == (3, 2)

    async def test_partial_when_balance_short(self, ledger):
        assert await ledger.debit_up_to("alice", 8) == (5, 0)

    async def test_zero(self, ledger):
        assert await ledger.debit_up_to("alice", 0) == (0, 5)


class TestCredit:
    async def test_credit_adds(self, ledger):
        assert await ledger.credit("alice", 10) == 15

    async def test_credit_unknown_user(self, ledger):
        with pytest.raises(UserNotFound):
            await ledger.credit("nobody", 1)

    async def test_reference_applies_once(self, ledger, fake_db):
        assert await ledger.credit("alice", 10, reference="ref_1") == 15
        assert await ledger.credit("alice", 10, reference="ref_1") == 15
        assert await _stored_credits(fake_db, "alice") == 15

    async def test_distinct_references_both_apply(self, ledger):
        await ledger.credit("alice", 10, reference="ref_1")
        assert await ledger.credit("alice", 3, reference="ref_2") == 18

    async def test_concurrent_same_reference_applies_once(self, ledger, fake_db):
        await asyncio.gather(*(ledger.credit("alice", 4, reference="ref_x") for _ in range(5)))
        assert await _stored_credits(fake_db, "alice") == 9

    async def test_reference_markers_are_bounded(self, ledger, fake_db):
        for i in range(SETTLED_REFERENCES_KEPT + 5):
            await ledger.credit("alice", 1, reference=f"ref_{i}")

        user = await fake_db[USERS].find_one({"external_id": "alice"})
        assert len(user["settled_references"]) == SETTLED_REFERENCES_KEPT
        assert user["settled_references"][-1] == f"ref_{SETTLED_REFERENCES_KEPT + 4}"
        assert "ref_0" not in user["settled_references"]
        assert user["credits"] == 5 + SETTLED_REFERENCES_KEPT + 5


class TestTrial:
    async def test_trial_raises_low_balance(self, fake_db):
        await seed_user(fake_db, "bob", credits=1)
        ledger = CreditLedger(fake_db)
        assert await ledger.grant_trial("bob", 5) == 5

    async def test_trial_never_lowers_balance(self, ledger, fake_db):
        await ledger.credit("alice", 20)
        assert await ledger.grant_trial("alice", 5) == 25
        doc = await fake_db[USERS].find_one({"external_id": "alice"})
        assert doc["plan"] == "trial"

    async def test_trial_unknown_user(self, ledger):
        with pytest.raises(UserNotFound):
            await ledger.grant_trial("nobody", 5)
