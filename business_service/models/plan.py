"""
business_service/models/plan.py

Subscription plan models.

A plan is a tier (Basic, Premium, Enterprise) with prices, monthly quotas
and feature flags. Quotas use -1 for "unlimited".
"""

from datetime import datetime
from decimal import Decimal
from enum import IntEnum
from typing import Optional
from pydantic import BaseModel, ConfigDict

from business_service.core.errors import ValidationError


UNLIMITED = -1


class SubscriptionTier(IntEnum):
    """Ordered tier rank. Upgrades move one step up this chain."""
    BASIC = 0
    PREMIUM = 1
    ENTERPRISE = 2

    @property
    def label(self) -> str:
        return self.name.capitalize()

    def next_tier(self) -> Optional["SubscriptionTier"]:
        try:
            return SubscriptionTier(self.value + 1)
        except ValueError:
            return None

    @classmethod
    def parse(cls, value) -> "SubscriptionTier":
        """Accept a tier rank or a (case-insensitive) tier name."""
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                raise ValidationError(f"Unknown subscription tier: {value}")
        try:
            return cls[str(value).strip().upper()]
        except KeyError:
            raise ValidationError(f"Unknown subscription tier: {value}")


class Plan(BaseModel):
    """
    A row of the plan catalog.

    Only one active plan may exist per tier.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    tier: SubscriptionTier
    description: Optional[str] = None
    monthly_price: Decimal
    annual_price: Decimal
    currency: str = "NGN"
    monthly_reply_limit: int
    monthly_dispute_limit: int
    external_source_limit: int
    user_login_limit: int
    private_reviews_enabled: bool = False
    data_api_enabled: bool = False
    dnd_mode_enabled: bool = False
    auto_response_enabled: bool = False
    branch_comparison_enabled: bool = False
    competitor_comparison_enabled: bool = False
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PlanSummary(BaseModel):
    """Compact plan view embedded in comparisons and invoices."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    tier: SubscriptionTier
    description: Optional[str] = None
    monthly_price: Decimal
    annual_price: Decimal
    currency: str = "NGN"

    @classmethod
    def from_plan(cls, plan: Plan) -> "PlanSummary":
        return cls(
            id=plan.id,
            name=plan.name,
            tier=plan.tier,
            description=plan.description,
            monthly_price=plan.monthly_price,
            annual_price=plan.annual_price,
            currency=plan.currency,
        )
