"""
business_service/models/invoice.py

Checkout invoices. Rows are written only after the payment gateway accepted
the initiation request.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict

from business_service.models.plan import PlanSummary


class InvoiceStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"


class Invoice(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    business_id: str
    plan_id: str
    is_annual: bool
    platform: str
    email: str
    reference: Optional[str] = None
    payment_url: Optional[str] = None
    status: InvoiceStatus = InvoiceStatus.UNPAID
    currency: str
    base_amount: Decimal
    fee_amount: Decimal
    vat_amount: Decimal
    total_amount: Decimal
    created_at: datetime


class InvoiceView(BaseModel):
    """Invoice plus the plan summary, or ``plan=None`` if the plan is gone."""
    model_config = ConfigDict(frozen=True)

    invoice: Invoice
    plan: Optional[PlanSummary] = None


class CheckoutResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    invoice_id: str
