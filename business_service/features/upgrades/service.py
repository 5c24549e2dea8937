"""Upgrade advisor: next tier in the chain and what it adds."""

import logging
from datetime import datetime
from typing import Optional

from business_service.features.entitlements.service import resolve_effective_plan
from business_service.features.plans.service import get_plan_by_tier
from business_service.models.entitlement import FeatureName, UpgradeComparison
from business_service.models.plan import Plan, PlanSummary

logger = logging.getLogger("business_service.upgrades")


def additional_features(current: Plan, recommended: Plan) -> list:
    """Display names of flags that go from off to on, in fixed display order."""
    return [
        feature.display_name
        for feature in FeatureName
        if not getattr(current, feature.flag) and getattr(recommended, feature.flag)
    ]


def get_upgrade_comparison(business_id: str, now: Optional[datetime] = None) -> Optional[UpgradeComparison]:
    """
    Compare the effective plan with the next tier up.

    Returns None at the top tier, or when the next tier has no active plan.
    """
    current = resolve_effective_plan(business_id, now)
    next_tier = current.tier.next_tier()
    if next_tier is None:
        return None

    recommended = get_plan_by_tier(next_tier)
    if recommended is None:
        logger.warning(
            "[upgrades] no active plan for next tier",
            extra={"business_id": business_id, "tier": next_tier.label},
        )
        return None

    return UpgradeComparison(
        current_plan=PlanSummary.from_plan(current),
        recommended_plan=PlanSummary.from_plan(recommended),
        additional_features=additional_features(current, recommended),
        price_difference=recommended.monthly_price - current.monthly_price,
    )
