"""
payments.py — Credit top-ups through Paystack.

Routes:
  POST /api/payments/initialize — start a checkout for N credits
  POST /api/payments/verify     — settle a completed checkout by reference

Flow:
  1. initialize returns authorization_url; the client redirects there.
  2. Paystack redirects back with ?reference=...; the client calls verify.
  3. verify credits the balance once per reference. Calling it again with
     the same reference returns the same outcome with replayed=true.

The caller's identity id travels in the transaction metadata (owner_id) and
is checked on verify, so a reference cannot be redeemed by another account.
"""

import logging

from fastapi import APIRouter, Depends, Request

from authentiscan.core.database import USERS, get_db, require_db
from authentiscan.core.errors import UserNotFound
from authentiscan.core.rate_limit import limiter
from authentiscan.core.security import CurrentUserId
from authentiscan.models.payment import (
    PaymentInitRequest,
    PaymentInitResponse,
    PaymentVerifyRequest,
    SettlementOut,
)
from authentiscan.services import response_cache as rc
from authentiscan.services.credit_ledger import CreditLedger
from authentiscan.services.payment_settlement import PaymentSettlement

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])


@router.post("/initialize", response_model=PaymentInitResponse)
@limiter.limit("10/minute")
async def initialize_payment(
    request: Request,
    payload: PaymentInitRequest,
    user_id: CurrentUserId,
    db=Depends(get_db),
):
    db = require_db(db)
    user = await db[USERS].find_one({"external_id": user_id}, {"email": 1})
    if user is None:
        raise UserNotFound()

    checkout = await request.app.state.paystack.initialize(
        email=user["email"],
        amount_minor=round(payload.amount * 100),
        currency=payload.currency.upper(),
        metadata={"credits": payload.credits, "owner_id": user_id},
    )
    logger.info(
        "Checkout %s opened for %s (%d credits)", checkout["reference"], user_id, payload.credits
    )
    return PaymentInitResponse(**checkout)


@router.post("/verify", response_model=SettlementOut)
@limiter.limit("20/minute")
async def verify_payment(
    request: Request,
    payload: PaymentVerifyRequest,
    user_id: CurrentUserId,
    db=Depends(get_db),
):
    db = require_db(db)
    settlement = PaymentSettlement(db, CreditLedger(db), request.app.state.paystack)
    outcome = await settlement.settle(user_id, payload.reference.strip())
    if not outcome.replayed:
        request.app.state.cache.invalidate_user(user_id, namespaces=(rc.DASHBOARD,))
    return SettlementOut(
        reference=outcome.reference,
        credits=outcome.credits,
        balance=outcome.balance,
        replayed=outcome.replayed,
    )
