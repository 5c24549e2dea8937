"""
Subscription invoice API routes.

- POST /api/subscription-invoices/checkout: start a payment, record an unpaid invoice
- GET  /api/subscription-invoices/{invoice_id}: invoice with plan summary
"""
from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel

from business_service.core.errors import NotFoundError
from business_service.features.billing.service import checkout, get_invoice
from business_service.models.invoice import CheckoutResult, InvoiceView


router = APIRouter(prefix="/api/subscription-invoices", tags=["billing"])


class CheckoutRequest(BaseModel):
    business_id: str
    plan_id: str
    email: str
    is_annual: bool = False
    platform: Optional[str] = None


@router.post("/checkout", response_model=CheckoutResult)
async def create_checkout(request: CheckoutRequest):
    """
    Start a subscription payment.

    Errors:
        404: Unknown business or plan
        502: Payment gateway refused, failed or timed out (gateway message passed through)
    """
    return await checkout(
        request.business_id,
        request.plan_id,
        request.email,
        is_annual=request.is_annual,
        platform=request.platform,
    )


@router.get("/{invoice_id}", response_model=InvoiceView)
def read_invoice(invoice_id: str):
    view = get_invoice(invoice_id)
    if view is None:
        raise NotFoundError("Invoice not found")
    return view
