"""
Payment gateway protocol.

Defines the interface for payment gateways (Paystack, etc.) so checkout does
not depend on a specific processor.
"""
from typing import Protocol, Optional
from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class PaymentInitiationResult:
    """Outcome of a payment initiation request."""
    success: bool
    reference: Optional[str] = None
    payment_url: Optional[str] = None
    error: Optional[str] = None


class PaymentGateway(Protocol):
    """
    Protocol for payment gateways.

    Implementations report gateway refusals and transport failures as
    ``success=False`` results rather than raising.
    """

    async def initiate_payment(self, email: str, amount: Decimal) -> PaymentInitiationResult:
        """
        Start a payment for ``amount`` (major currency units).

        Args:
            email: Payer email
            amount: Total to charge, fees and VAT included

        Returns:
            Initiation result with the gateway reference and payment URL
        """
        ...
