"""
payment_settlement.py — Turn a verified payment reference into credited balance.

Per reference:  unseen → verifying → settled | rejected

  1. Ask the payment provider for the transaction. Unknown reference or a
     non-success status → PaymentVerificationFailed (nothing recorded,
     nothing credited; the caller may resubmit later).
  2. The owner echoed in the provider metadata (and the owner on any
     existing Payment record) must be the caller, whatever the processed
     state → otherwise MetadataMismatch.
  3. Payment already processed → replay: return the recorded credits, no
     ledger mutation.
  4. Otherwise record the Payment (processed=false), credit the ledger with
     the reference as idempotency key, then mark processed=true. A crash
     between the two leaves processed=false; the next attempt re-runs the
     credit, which the ledger ignores if it already landed.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from authentiscan.core.database import PAYMENTS, USERS
from authentiscan.core.errors import MetadataMismatch, PaymentVerificationFailed, UserNotFound
from authentiscan.services.credit_ledger import CreditLedger
from authentiscan.services.paystack_client import ProviderTransaction

logger = logging.getLogger(__name__)


class PaymentProvider(Protocol):
    async def verify(self, reference: str) -> ProviderTransaction: ...


@dataclass
class Settlement:
    reference: str
    credits: int
    balance: int
    replayed: bool


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _credits_from(metadata: dict[str, Any]) -> int:
    try:
        credits = int(float(metadata.get("credits") or 0))
    except (TypeError, ValueError):
        credits = 0
    if credits <= 0:
        raise PaymentVerificationFailed("No credits found in payment metadata")
    return credits


class PaymentSettlement:
    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        ledger: CreditLedger,
        provider: PaymentProvider,
    ) -> None:
        self.payments = db[PAYMENTS]
        self.users = db[USERS]
        self.ledger = ledger
        self.provider = provider

    async def settle(self, user_id: str, reference: str) -> Settlement:
        txn = await self.provider.verify(reference)
        if not txn.succeeded:
            logger.info("Payment %s rejected (provider status=%s)", reference, txn.status)
            raise PaymentVerificationFailed("Payment not successful")

        reference = txn.reference or reference
        owner = txn.metadata.get("owner_id")
        if owner and str(owner) != user_id:
            logger.warning(
                "SECURITY: payment %s owned by %s submitted by %s", reference, owner, user_id
            )
            raise MetadataMismatch()

        existing = await self.payments.find_one({"reference": reference})
        if existing is not None and existing.get("user_id") != user_id:
            logger.warning(
                "SECURITY: payment %s recorded for %s submitted by %s",
                reference, existing.get("user_id"), user_id,
            )
            raise MetadataMismatch()

        if existing is not None and existing.get("processed"):
            balance = await self.ledger.balance(user_id)
            logger.info("Payment %s already settled — replaying", reference)
            return Settlement(
                reference=reference,
                credits=int(existing.get("credits", 0)),
                balance=balance,
                replayed=True,
            )

        credits = _credits_from(txn.metadata)
        user = await self.users.find_one({"external_id": user_id}, {"email": 1})
        if user is None:
            raise UserNotFound()

        if existing is None:
            try:
                await self.payments.insert_one(
                    {
                        "reference": reference,
                        "user_id": user_id,
                        "email": user.get("email"),
                        "amount": txn.amount,
                        "currency": txn.currency,
                        "credits": credits,
                        "status": txn.status,
                        "processed": False,
                        "raw": txn.raw,
                        "created_at": _now(),
                    }
                )
            except DuplicateKeyError:
                # A concurrent settlement inserted it first; the ledger's
                # reference guard still applies the credit only once.
                logger.info("Payment %s recorded concurrently", reference)
        else:
            logger.info("Resuming unfinished settlement of %s", reference)

        balance = await self.ledger.credit(user_id, credits, reference=reference)

        await self.payments.update_one(
            {"reference": reference},
            {
                "$set": {
                    "processed": True,
                    "credits": credits,
                    "status": txn.status,
                    "raw": txn.raw,
                    "processed_at": _now(),
                }
            },
        )
        logger.info("Payment %s settled: +%d credits for %s", reference, credits, user_id)
        return Settlement(reference=reference, credits=credits, balance=balance, replayed=False)
