"""
business_service/features/entitlements/service.py

Entitlement evaluation.

Handles:
- Effective plan resolution (active subscription, else the default plan)
- Action checks: metered actions go through the usage meter, the rest read a flag
- Feature availability with the fixed required tier per feature
- Full entitlement snapshot
"""

from datetime import datetime
from typing import Optional
import logging

from business_service.features.subscriptions.persistence import get_active_subscription
from business_service.features.usage.service import check_quota, plan_for_subscription
from business_service.models.entitlement import (
    ActionType,
    EntitlementSnapshot,
    FeatureAvailability,
    FeatureName,
)
from business_service.models.plan import Plan, PlanSummary
from business_service.models.subscription import utc_now


logger = logging.getLogger(__name__)


def resolve_effective_plan(business_id: str, now: Optional[datetime] = None) -> Plan:
    """
    Plan that currently governs ``business_id``.

    Raises:
        ConfigurationError: If the business has no active subscription and the
            default plan is missing from the catalog.
    """
    sub = get_active_subscription(business_id, utc_now(now))
    return plan_for_subscription(sub)


def _feature_for_action(action: ActionType) -> FeatureName:
    return FeatureName(action.value)


def can_perform_action(business_id: str, action, now: Optional[datetime] = None) -> bool:
    """
    Whether the business may perform ``action`` right now.

    ``action`` may be an ActionType or its string value; unknown strings raise
    ValidationError.
    """
    if not isinstance(action, ActionType):
        action = ActionType.parse(action)
    now = utc_now(now)

    if action.is_metered:
        return check_quota(business_id, action, now)

    plan = resolve_effective_plan(business_id, now)
    return bool(getattr(plan, _feature_for_action(action).flag))


def _availability(plan: Plan, feature: FeatureName) -> FeatureAvailability:
    available = bool(getattr(plan, feature.flag))
    required = feature.required_tier
    return FeatureAvailability(
        feature=feature,
        available=available,
        required_tier=required,
        message=None if available else f"Upgrade to {required.label} to access this feature",
    )


def check_feature_availability(business_id: str, feature, now: Optional[datetime] = None) -> FeatureAvailability:
    if not isinstance(feature, FeatureName):
        feature = FeatureName.parse(feature)
    plan = resolve_effective_plan(business_id, now)
    result = _availability(plan, feature)
    if not result.available:
        logger.info(
            "[entitlements] feature unavailable",
            extra={
                "business_id": business_id,
                "feature": feature.value,
                "plan_tier": plan.tier.label,
                "required_tier": result.required_tier.label,
            },
        )
    return result


def get_entitlements(business_id: str, now: Optional[datetime] = None) -> EntitlementSnapshot:
    """Quotas and feature flags resolved for the business."""
    now = utc_now(now)
    sub = get_active_subscription(business_id, now)
    plan = plan_for_subscription(sub)
    return EntitlementSnapshot(
        business_id=business_id,
        plan=PlanSummary.from_plan(plan),
        has_active_subscription=sub is not None,
        monthly_reply_limit=plan.monthly_reply_limit,
        monthly_dispute_limit=plan.monthly_dispute_limit,
        external_source_limit=plan.external_source_limit,
        user_login_limit=plan.user_login_limit,
        features=[_availability(plan, feature) for feature in FeatureName],
    )
