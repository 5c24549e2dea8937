"""
business_service/models/subscription.py

Per-business subscription record.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict

from business_service.models.plan import SubscriptionTier
from business_service.models.entitlement import UsageSnapshot


def utc_now(now: Optional[datetime] = None) -> datetime:
    """Timezone-aware UTC now. A supplied naive ``now`` is taken to be UTC."""
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    PENDING_PAYMENT = "pending_payment"


class Subscription(BaseModel):
    """
    Subscription state for one business.

    ``version`` is bumped on every write and guards concurrent updates.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    business_id: str
    plan_id: str
    start_date: datetime
    end_date: datetime
    billing_date: Optional[datetime] = None
    is_annual: bool = False
    status: SubscriptionStatus
    replies_used_this_month: int = 0
    disputes_used_this_month: int = 0
    usage_reset_date: datetime
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_active(self, now: datetime) -> bool:
        return self.status == SubscriptionStatus.ACTIVE and now < self.end_date


class SubscriptionView(BaseModel):
    """Subscription as returned to callers, with plan and usage context."""
    model_config = ConfigDict(frozen=True)

    id: str
    business_id: str
    plan_id: str
    plan_name: Optional[str] = None
    tier: Optional[SubscriptionTier] = None
    start_date: datetime
    end_date: datetime
    billing_date: Optional[datetime] = None
    is_annual: bool
    status: SubscriptionStatus
    is_active: bool
    days_remaining: int
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    usage: Optional[UsageSnapshot] = None

