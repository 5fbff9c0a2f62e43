"""
PaystackClient — Thin async wrapper around the Paystack transaction API.

  initialize(...)  → POST /transaction/initialize, returns the checkout URL + reference
  verify(ref)      → GET  /transaction/verify/{reference}, returns the settlement status
                     and the metadata we attached at initialize time

Amounts are sent in the smallest currency unit (cents for USD).

In mock mode (PAYMENTS_MOCK_MODE=true, the default) no HTTP calls are made:
initialize() records the transaction in memory and verify() echoes it back
as successful, so the full top-up flow works without a Paystack account.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import quote

import httpx

from authentiscan.core.config import settings
from authentiscan.core.errors import PaymentProviderError, PaymentVerificationFailed

logger = logging.getLogger(__name__)


@dataclass
class ProviderTransaction:
    reference: str
    status: str                     # "success" | "failed" | "abandoned" | ...
    amount: int                     # smallest currency unit
    currency: str
    metadata: dict[str, Any] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


class PaystackClient:
    def __init__(
        self,
        secret_key: str = "",
        base_url: str = "https://api.paystack.co",
        callback_url: str = "",
        mock_mode: bool = True,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.callback_url = callback_url
        self.timeout = timeout
        self.mock_mode = mock_mode
        self._transport = transport
        self._mock_transactions: dict[str, dict[str, Any]] = {}

        if not self.mock_mode and not self.secret_key:
            logger.warning("PAYSTACK_SECRET_KEY not set — falling back to mock payments.")
            self.mock_mode = True

    @classmethod
    def from_settings(cls) -> "PaystackClient":
        return cls(
            secret_key=settings.paystack_secret_key,
            base_url=settings.paystack_base_url,
            callback_url=settings.paystack_callback_url,
            mock_mode=settings.payments_mock_mode,
        )

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    async def initialize(
        self,
        email: str,
        amount_minor: int,
        currency: str,
        metadata: dict[str, Any],
    ) -> dict[str, Optional[str]]:
        """Start a checkout; returns authorization_url, access_code and reference."""
        if self.mock_mode:
            reference = f"mock_{uuid.uuid4().hex[:16]}"
            self._mock_transactions[reference] = {
                "reference": reference,
                "status": "success",
                "amount": amount_minor,
                "currency": currency,
                "customer": {"email": email},
                "metadata": dict(metadata),
            }
            return {
                "authorization_url": f"https://checkout.paystack.com/{reference}",
                "access_code": reference,
                "reference": reference,
            }

        payload: dict[str, Any] = {
            "email": email,
            "amount": amount_minor,
            "currency": currency,
            "metadata": metadata,
        }
        if self.callback_url:
            payload["callback_url"] = self.callback_url

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.post(
                    f"{self.base_url}/transaction/initialize",
                    headers=self._headers(),
                    json=payload,
                )
                response.raise_for_status()
                body = response.json()
            except httpx.HTTPStatusError as exc:
                logger.error(
                    "Paystack init error: %s — %s",
                    exc.response.status_code,
                    exc.response.text[:200],
                )
                raise PaymentProviderError("Failed to initialize payment") from exc
            except (httpx.HTTPError, ValueError) as exc:
                logger.error("Paystack init request failed: %s", exc)
                raise PaymentProviderError("Failed to initialize payment") from exc

        data = body.get("data") or {}
        if not body.get("status") or not data.get("authorization_url"):
            logger.error("Paystack init rejected: %s", body.get("message"))
            raise PaymentProviderError("Failed to initialize payment")
        return {
            "authorization_url": data["authorization_url"],
            "access_code": data.get("access_code"),
            "reference": data["reference"],
        }

    async def verify(self, reference: str) -> ProviderTransaction:
        """
        Look a transaction up by reference.

        Raises PaymentVerificationFailed when Paystack does not know the
        reference or refuses the lookup, PaymentProviderError when it cannot
        be reached. A known-but-unsuccessful transaction is returned as-is.
        """
        if self.mock_mode:
            data = self._mock_transactions.get(reference)
            if data is None:
                raise PaymentVerificationFailed("Transaction reference not found")
            return _to_transaction(data)

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.get(
                    f"{self.base_url}/transaction/verify/{quote(reference, safe='')}",
                    headers=self._headers(),
                )
                body = response.json()
            except (httpx.HTTPError, ValueError) as exc:
                logger.error("Paystack verify request failed: %s", exc)
                raise PaymentProviderError("Payment provider unreachable") from exc

        if response.is_error or not isinstance(body, dict) or body.get("status") is not True:
            logger.error("Paystack verify error (ref=%s): %s", reference, str(body)[:200])
            raise PaymentVerificationFailed()
        return _to_transaction(body.get("data") or {})


def _to_transaction(data: dict[str, Any]) -> ProviderTransaction:
    # Paystack sends "" instead of {} when no metadata was attached
    metadata = data.get("metadata")
    return ProviderTransaction(
        reference=str(data.get("reference") or ""),
        status=str(data.get("status") or ""),
        amount=int(data.get("amount") or 0),
        currency=str(data.get("currency") or "USD"),
        metadata=dict(metadata) if isinstance(metadata, dict) else {},
        raw=data,
    )
