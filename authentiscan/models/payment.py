"""
payment.py — Pydantic models for credit top-ups.

The payment reference returned by the provider is the idempotency key for
settlement: one Payment document per reference.
"""

from pydantic import BaseModel, Field


class PaymentInitRequest(BaseModel):
    """Payload for POST /api/payments/initialize. Amount is in main currency units."""
    amount: float = Field(gt=0)
    credits: int = Field(gt=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)


class PaymentInitResponse(BaseModel):
    authorization_url: str
    access_code: str | None = None
    reference: str


class PaymentVerifyRequest(BaseModel):
    """Payload for POST /api/payments/verify."""
    reference: str = Field(min_length=1, max_length=128)


class SettlementOut(BaseModel):
    success: bool = True
    reference: str
    credits: int      # credits granted by this payment
    balance: int      # caller's balance after settlement
    replayed: bool    # True when the reference had already been settled
