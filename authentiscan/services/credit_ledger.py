"""
credit_ledger.py — Atomic scan-credit accounting on the user document.

The user's `credits` field is the single source of truth. Every mutation is
one conditional find_one_and_update with $inc, so MongoDB serialises
concurrent debits/credits for the same user:

  try_debit  — {"credits": {"$gte": n}} guard + $inc -n; the balance can
               never go negative and a failed debit leaves it untouched.
  credit     — $inc +n; with an idempotency reference the increment and the
               reference marker land in the same document update, so a
               replayed top-up is a no-op. Only the last
               SETTLED_REFERENCES_KEPT markers are kept; older references are
               already short-circuited by their processed Payment record.

Never read-modify-write the balance from application code.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from authentiscan.core.database import USERS
from authentiscan.core.errors import InsufficientCredits, UserNotFound
from authentiscan.models.user import Plan

logger = logging.getLogger(__name__)

_BALANCE_ONLY = {"credits": 1}

SETTLED_REFERENCES_KEPT = 50


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


class CreditLedger:
    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.users = db[USERS]

    async def balance(self, user_id: str) -> int:
        """Current balance, or UserNotFound."""
        doc = await self.users.find_one({"external_id": user_id}, _BALANCE_ONLY)
        if doc is None:
            raise UserNotFound()
        return int(doc.get("credits", 0))

    async def try_debit(self, user_id: str, amount: int) -> int:
        """
        Atomically subtract `amount` credits and return the new balance.

        Raises InsufficientCredits (balance unchanged) when balance < amount,
        UserNotFound when there is no such user.
        """
        if amount < 0:
            raise ValueError("amount must be >= 0")
        if amount == 0:
            return await self.balance(user_id)

        doc = await self.users.find_one_and_update(
            {"external_id": user_id, "credits": {"$gte": amount}},
            {"$inc": {"credits": -amount}, "$set": {"updated_at": _now()}},
            projection=_BALANCE_ONLY,
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            current = await self.balance(user_id)
            logger.info("Debit of %d refused for %s (balance %d)", amount, user_id, current)
            raise InsufficientCredits()
        return int(doc["credits"])

    async def debit_up_to(self, user_id: str, amount: int) -> tuple[int, int]:
        """
        Debit as many of `amount` credits as the balance allows.

        Returns (charged, new_balance). Used to reconcile a finished batch
        when another request spent credits while it was running.
        """
        want = amount
        while want > 0:
            try:
                return want, await self.try_debit(user_id, want)
            except InsufficientCredits:
                want = min(want - 1, await self.balance(user_id))
        return 0, await self.balance(user_id)

    async def credit(self, user_id: str, amount: int, reference: Optional[str] = None) -> int:
        """
        Atomically add `amount` credits and return the new balance.

        With `reference`, the top-up is applied at most once per reference;
        a repeat returns the current balance without incrementing.
        """
        if amount < 0:
            raise ValueError("amount must be >= 0")

        query: dict = {"external_id": user_id}
        update: dict = {"$inc": {"credits": amount}, "$set": {"updated_at": _now()}}
        if reference:
            query["settled_references"] = {"$ne": reference}
            update["$push"] = {
                "settled_references": {"$each": [reference], "$slice": -SETTLED_REFERENCES_KEPT}
            }

        doc = await self.users.find_one_and_update(
            query,
            update,
            projection=_BALANCE_ONLY,
            return_document=ReturnDocument.AFTER,
        )
        if doc is not None:
            logger.info("Credited %d to %s (ref=%s)", amount, user_id, reference or "-")
            return int(doc["credits"])

        current = await self.balance(user_id)
        logger.info("Top-up %s already applied to %s", reference, user_id)
        return current

    async def grant_trial(self, user_id: str, trial_credits: int) -> int:
        """Raise the balance to at least `trial_credits` and switch to the trial plan."""
        doc = await self.users.find_one_and_update(
            {"external_id": user_id},
            {
                "$max": {"credits": trial_credits},
                "$set": {"plan": Plan.TRIAL.value, "updated_at": _now()},
            },
            projection=_BALANCE_ONLY,
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise UserNotFound()
        return int(doc["credits"])
