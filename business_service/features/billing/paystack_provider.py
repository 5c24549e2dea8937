"""
Paystack payment gateway.

Implements the PaymentGateway protocol against Paystack's
``POST /transaction/initialize``. Amounts are sent in minor units (kobo).
"""
import logging
from decimal import Decimal
from typing import Optional

import httpx

from business_service.core.config import settings
from business_service.core.errors import ConfigurationError
from business_service.features.billing.provider import PaymentInitiationResult

logger = logging.getLogger("business_service.billing.paystack")


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(str(amount)) * 100).to_integral_value())


class PaystackGateway:
    """Paystack implementation of PaymentGateway."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        callback_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            secret_key: Paystack secret key (defaults to PAYSTACK_SECRET_KEY)
            base_url: API root (defaults to PAYSTACK_BASE_URL)
            callback_url: Where Paystack redirects the payer afterwards
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests)
        """
        self.secret_key = secret_key or settings.PAYSTACK_SECRET_KEY
        self.base_url = (base_url or settings.PAYSTACK_BASE_URL).rstrip("/")
        self.callback_url = callback_url or settings.PAYSTACK_CALLBACK_URL
        self.timeout = timeout or settings.PAYMENT_GATEWAY_TIMEOUT_SECONDS
        self._transport = transport

        if not self.secret_key:
            raise ConfigurationError("PAYSTACK_SECRET_KEY not configured")

    async def initiate_payment(self, email: str, amount: Decimal) -> PaymentInitiationResult:
        body = {"email": email, "amount": to_minor_units(amount)}
        if self.callback_url:
            body["callback_url"] = self.callback_url
        headers = {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post("/transaction/initialize", json=body, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("[paystack] initialize request failed", extra={"error": str(exc)})
            return PaymentInitiationResult(success=False, error="Payment gateway unavailable")

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        data = payload.get("data") or {}
        if response.is_success and payload.get("status") is True and data.get("authorization_url"):
            return PaymentInitiationResult(
                success=True,
                reference=data.get("reference"),
                payment_url=data.get("authorization_url"),
            )

        message = payload.get("message") or f"Payment gateway returned HTTP {response.status_code}"
        logger.warning(
            "[paystack] initialize rejected",
            extra={"status": response.status_code, "gateway_message": message},
        )
        return PaymentInitiationResult(success=False, error=message)
