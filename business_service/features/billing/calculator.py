"""
Checkout charges.

fee   = ceil(min(base * fee% / 100, cap))
vat   = ceil((base + fee) * vat% / 100)
total = base + fee + vat

Both ceilings are taken separately, in whole currency units. Rounding is
always up so the platform never under-charges.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_CEILING
from typing import Optional, Union

from business_service.core.config import settings
from business_service.models.plan import Plan

Number = Union[Decimal, int, str]


@dataclass(frozen=True)
class ChargeBreakdown:
    base: Decimal
    fee: Decimal
    vat: Decimal
    total: Decimal


def _ceil(value: Decimal) -> Decimal:
    return value.to_integral_value(rounding=ROUND_CEILING)


def compute_charges(
    base_price: Number,
    *,
    fee_percent: Optional[Number] = None,
    fee_cap: Optional[Number] = None,
    vat_percent: Optional[Number] = None,
) -> ChargeBreakdown:
    """Fee, VAT and total for ``base_price``. Unset rates come from settings."""
    base = Decimal(str(base_price))
    if base < 0:
        raise ValueError("base_price must not be negative")
    fee_rate = Decimal(str(settings.INVOICE_CHARGES_PERCENTAGE if fee_percent is None else fee_percent))
    cap = Decimal(str(settings.INVOICE_CHARGES_CAP if fee_cap is None else fee_cap))
    vat_rate = Decimal(str(settings.INVOICE_VAT_PERCENTAGE if vat_percent is None else vat_percent))

    fee = _ceil(min(base * fee_rate / 100, cap))
    vat = _ceil((base + fee) * vat_rate / 100)
    return ChargeBreakdown(base=base, fee=fee, vat=vat, total=base + fee + vat)


def select_base_price(plan: Plan, is_annual: bool) -> Decimal:
    return plan.annual_price if is_annual else plan.monthly_price


def compute_plan_charges(plan: Plan, is_annual: bool, **rates) -> ChargeBreakdown:
    return compute_charges(select_base_price(plan, is_annual), **rates)
