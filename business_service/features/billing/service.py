"""
Checkout and invoice retrieval.

Checkout prices the plan, asks the payment gateway to start a payment and
records an unpaid invoice only once the gateway has accepted. The invoice
email goes out as a detached background task.
"""
import asyncio
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import select, insert

from business_service.core.background import spawn
from business_service.core.config import settings
from business_service.core.database import get_db_session, subscription_invoices, as_utc
from business_service.core.errors import NotFoundError, PaymentInitiationError, ValidationError
from business_service.features.billing.calculator import ChargeBreakdown, compute_plan_charges
from business_service.features.billing.paystack_provider import PaystackGateway
from business_service.features.billing.provider import PaymentGateway
from business_service.features.businesses.service import get_business
from business_service.features.notifications.client import HttpNotificationSender, NotificationSender
from business_service.features.plans.service import get_plan
from business_service.features.subscriptions.service import compute_end_date
from business_service.models.invoice import CheckoutResult, Invoice, InvoiceStatus, InvoiceView
from business_service.models.plan import Plan, PlanSummary
from business_service.models.subscription import utc_now

logger = logging.getLogger("business_service.billing")

CHECKOUT_MESSAGE = "Transaction initiated"


def _default_gateway() -> PaymentGateway:
    return PaystackGateway()


def _default_notifier() -> NotificationSender:
    return HttpNotificationSender()


def _money(value: Decimal):
    return int(value) if value == value.to_integral_value() else float(value)


def build_invoice_notification(invoice: Invoice, plan: Plan, charges: ChargeBreakdown, now: datetime) -> Dict[str, Any]:
    """Payload for the ``invoice`` email template."""
    fmt = settings.INVOICE_DATE_FORMAT
    period_end = compute_end_date(now, invoice.is_annual)
    description = (
        f"Tier {int(plan.tier)} - {plan.name} - subscription payment "
        f"({now.strftime(fmt)} - {period_end.strftime(fmt)})"
    )
    return {
        "status": invoice.status.value,
        "description": description,
        "payment_amount": _money(charges.base),
        "charges_description": settings.INVOICE_CHARGES_DESCRIPTION,
        "charges_amount": _money(charges.fee),
        "vat_amount": _money(charges.vat),
        "total": _money(charges.total),
        "invoice_date": now.strftime(fmt),
        "due_date": now.strftime(fmt),
        "invoice_id": invoice.id,
    }


async def _send_invoice_notification(
    notifier: NotificationSender, invoice: Invoice, plan: Plan, charges: ChargeBreakdown, now: datetime
) -> None:
    payload = build_invoice_notification(invoice, plan, charges, now)
    delivered = await notifier.send_notification("invoice", "email", invoice.email, payload)
    if not delivered:
        logger.warning("[checkout] invoice notification not delivered", extra={"invoice_id": invoice.id})


async def checkout(
    business_id: str,
    plan_id: str,
    email: str,
    is_annual: bool = False,
    platform: Optional[str] = None,
    *,
    gateway: Optional[PaymentGateway] = None,
    notifier: Optional[NotificationSender] = None,
    now: Optional[datetime] = None,
) -> CheckoutResult:
    """
    Start a subscription payment and record an unpaid invoice.

    Raises:
        ValidationError: Malformed email.
        NotFoundError: Unknown business or plan.
        PaymentInitiationError: The gateway refused, failed or timed out.
            No invoice is written in that case.
    """
    if not email or "@" not in email:
        raise ValidationError("A valid payer email is required")
    if get_business(business_id) is None:
        raise NotFoundError(f"Business {business_id} not found.")
    plan = get_plan(plan_id)
    if plan is None:
        raise NotFoundError(f"Subscription plan {plan_id} not found.")

    now = utc_now(now)
    platform = platform or settings.DEFAULT_PAYMENT_PLATFORM
    charges = compute_plan_charges(plan, is_annual)
    gateway = gateway or _default_gateway()

    try:
        result = await asyncio.wait_for(
            gateway.initiate_payment(email, charges.total),
            timeout=settings.PAYMENT_GATEWAY_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        logger.error(
            "[checkout] payment gateway timed out",
            extra={"business_id": business_id, "plan_id": plan_id, "platform": platform},
        )
        raise PaymentInitiationError("Payment gateway did not respond in time")

    if not result.success:
        logger.warning(
            "[checkout] payment initiation failed",
            extra={"business_id": business_id, "plan_id": plan_id, "gateway_error": result.error},
        )
        raise PaymentInitiationError(result.error or "Payment initiation failed")

    invoice = Invoice(
        id=str(uuid.uuid4()),
        business_id=business_id,
        plan_id=plan_id,
        is_annual=is_annual,
        platform=platform,
        email=email,
        reference=result.reference,
        payment_url=result.payment_url,
        status=InvoiceStatus.UNPAID,
        currency=plan.currency,
        base_amount=charges.base,
        fee_amount=charges.fee,
        vat_amount=charges.vat,
        total_amount=charges.total,
        created_at=now,
    )
    with get_db_session() as session:
        session.execute(
            insert(subscription_invoices).values(
                **invoice.model_dump(exclude={"status"}),
                status=invoice.status.value,
            )
        )

    logger.info(
        "[checkout] invoice created",
        extra={
            "invoice_id": invoice.id,
            "business_id": business_id,
            "plan_id": plan_id,
            "total": str(charges.total),
            "platform": platform,
        },
    )

    spawn(
        _send_invoice_notification(notifier or _default_notifier(), invoice, plan, charges, now),
        name=f"invoice-notification-{invoice.id}",
    )
    return CheckoutResult(message=CHECKOUT_MESSAGE, invoice_id=invoice.id)


def get_invoice(invoice_id: str) -> Optional[InvoiceView]:
    """Invoice with its plan summary; ``plan`` is None if the plan row is gone."""
    with get_db_session() as session:
        row = session.execute(
            select(subscription_invoices).where(subscription_invoices.c.id == invoice_id)
        ).first()
    if not row:
        return None

    invoice = Invoice(
        id=row.id,
        business_id=row.business_id,
        plan_id=row.plan_id,
        is_annual=row.is_annual,
        platform=row.platform,
        email=row.email,
        reference=row.reference,
        payment_url=row.payment_url,
        status=InvoiceStatus(row.status),
        currency=row.currency,
        base_amount=Decimal(str(row.base_amount)),
        fee_amount=Decimal(str(row.fee_amount)),
        vat_amount=Decimal(str(row.vat_amount)),
        total_amount=Decimal(str(row.total_amount)),
        created_at=as_utc(row.created_at),
    )
    plan = get_plan(row.plan_id)
    return InvoiceView(invoice=invoice, plan=PlanSummary.from_plan(plan) if plan else None)
