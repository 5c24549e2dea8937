"""
business_service/models/entitlement.py

Entitlement vocabulary and views.

Action types and feature names are closed sets; unknown strings are rejected
when parsed instead of silently evaluating to False.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict

from business_service.core.errors import ValidationError
from business_service.models.plan import SubscriptionTier, PlanSummary


class ActionType(str, Enum):
    REPLY = "reply"
    DISPUTE = "dispute"
    PRIVATE_REVIEWS = "private_reviews"
    DND_MODE = "dnd_mode"
    AUTO_RESPONSE = "auto_response"
    DATA_API = "data_api"
    BRANCH_COMPARISON = "branch_comparison"
    COMPETITOR_COMPARISON = "competitor_comparison"

    @property
    def is_metered(self) -> bool:
        return self in (ActionType.REPLY, ActionType.DISPUTE)

    @classmethod
    def parse(cls, value: str) -> "ActionType":
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(f"Unknown action type: {value}")


class FeatureName(str, Enum):
    """Feature flags, declared in display order."""
    PRIVATE_REVIEWS = "private_reviews"
    DND_MODE = "dnd_mode"
    AUTO_RESPONSE = "auto_response"
    DATA_API = "data_api"
    BRANCH_COMPARISON = "branch_comparison"
    COMPETITOR_COMPARISON = "competitor_comparison"

    @property
    def flag(self) -> str:
        """Name of the plan attribute carrying this flag."""
        return f"{self.value}_enabled"

    @property
    def display_name(self) -> str:
        return _FEATURE_DISPLAY_NAMES[self]

    @property
    def required_tier(self) -> SubscriptionTier:
        if self is FeatureName.PRIVATE_REVIEWS:
            return SubscriptionTier.PREMIUM
        return SubscriptionTier.ENTERPRISE

    @classmethod
    def parse(cls, value: str) -> "FeatureName":
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(f"Unknown feature: {value}")


_FEATURE_DISPLAY_NAMES = {
    FeatureName.PRIVATE_REVIEWS: "Private Reviews",
    FeatureName.DND_MODE: "Do Not Disturb Mode",
    FeatureName.AUTO_RESPONSE: "Auto-Response Templates",
    FeatureName.DATA_API: "Data API Access",
    FeatureName.BRANCH_COMPARISON: "Branch Comparison Analytics",
    FeatureName.COMPETITOR_COMPARISON: "Competitor Comparison Analytics",
}


class FeatureAvailability(BaseModel):
    model_config = ConfigDict(frozen=True)

    feature: FeatureName
    available: bool
    required_tier: SubscriptionTier
    message: Optional[str] = None


class QuotaUsage(BaseModel):
    """One metered dimension. ``limit``/``remaining`` are -1 when unlimited."""
    model_config = ConfigDict(frozen=True)

    used: int
    limit: int
    remaining: int
    percentage: float


class UsageSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    replies: QuotaUsage
    disputes: QuotaUsage
    usage_reset_date: Optional[datetime] = None


class UpgradeComparison(BaseModel):
    model_config = ConfigDict(frozen=True)

    current_plan: PlanSummary
    recommended_plan: PlanSummary
    additional_features: List[str]
    price_difference: Decimal


class EntitlementSnapshot(BaseModel):
    """Resolved quotas and feature flags for a business at a point in time."""
    model_config = ConfigDict(frozen=True)

    business_id: str
    plan: PlanSummary
    has_active_subscription: bool
    monthly_reply_limit: int
    monthly_dispute_limit: int
    external_source_limit: int
    user_login_limit: int
    features: List[FeatureAvailability]
