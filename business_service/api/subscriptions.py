"""
Subscription API routes.

- GET  /api/subscriptions/plans
- GET  /api/subscriptions/plans/{plan_id}
- GET  /api/subscriptions/business/{business_id}
- POST /api/subscriptions
- PUT  /api/subscriptions/upgrade
- POST /api/subscriptions/cancel
- POST /api/subscriptions/business/{business_id}/suspend | /reactivate
- GET  /api/subscriptions/business/{business_id}/usage
- POST /api/subscriptions/business/{business_id}/usage/{action}
- POST /api/subscriptions/business/{business_id}/usage/{action}/consume
- GET  /api/subscriptions/business/{business_id}/can-perform/{action}
- GET  /api/subscriptions/business/{business_id}/feature/{feature}
- GET  /api/subscriptions/business/{business_id}/entitlements
- GET  /api/subscriptions/business/{business_id}/upgrade-comparison
- GET  /api/subscriptions/expiring?days=N
"""
from typing import List, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel

from business_service.core.errors import NotFoundError, QuotaExceededError
from business_service.features.entitlements.service import (
    can_perform_action,
    check_feature_availability,
    get_entitlements,
)
from business_service.features.plans.service import get_plan, get_plans
from business_service.features.subscriptions.service import (
    cancel_subscription,
    create_subscription,
    get_expiring_subscriptions,
    get_subscription,
    reactivate_subscription,
    suspend_subscription,
    upgrade_subscription,
)
from business_service.features.upgrades.service import get_upgrade_comparison
from business_service.features.usage.service import consume_quota, get_usage, increment_usage
from business_service.models.entitlement import (
    ActionType,
    EntitlementSnapshot,
    FeatureAvailability,
    UpgradeComparison,
    UsageSnapshot,
)
from business_service.models.plan import Plan
from business_service.models.subscription import SubscriptionView


router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])


class CreateSubscriptionRequest(BaseModel):
    business_id: str
    plan_id: str
    is_annual: bool = False


class UpgradeSubscriptionRequest(BaseModel):
    business_id: str
    new_plan_id: str
    is_annual: bool = False


class CancelSubscriptionRequest(BaseModel):
    business_id: str
    reason: Optional[str] = None


class CanPerformResponse(BaseModel):
    can_perform: bool
    action_type: ActionType


@router.get("/plans", response_model=List[Plan])
def list_plans():
    return get_plans()


@router.get("/plans/{plan_id}", response_model=Plan)
def read_plan(plan_id: str):
    plan = get_plan(plan_id)
    if plan is None:
        raise NotFoundError("Plan not found")
    return plan


@router.get("/expiring", response_model=List[SubscriptionView])
def list_expiring(days: int = Query(7, ge=0, le=366)):
    return get_expiring_subscriptions(days)


@router.post("", response_model=SubscriptionView, status_code=201)
def create(request: CreateSubscriptionRequest):
    return create_subscription(request.business_id, request.plan_id, request.is_annual)


@router.put("/upgrade", response_model=SubscriptionView)
def upgrade(request: UpgradeSubscriptionRequest):
    return upgrade_subscription(request.business_id, request.new_plan_id, request.is_annual)


@router.post("/cancel")
def cancel(request: CancelSubscriptionRequest):
    cancel_subscription(request.business_id, request.reason)
    return {"message": "Subscription cancelled successfully"}


@router.get("/business/{business_id}", response_model=SubscriptionView)
def read_subscription(business_id: str):
    view = get_subscription(business_id)
    if view is None:
        raise NotFoundError("No active subscription found")
    return view


@router.post("/business/{business_id}/suspend", response_model=SubscriptionView)
def suspend(business_id: str):
    return suspend_subscription(business_id)


@router.post("/business/{business_id}/reactivate", response_model=SubscriptionView)
def reactivate(business_id: str):
    return reactivate_subscription(business_id)


@router.get("/business/{business_id}/usage", response_model=UsageSnapshot)
def read_usage(business_id: str):
    return get_usage(business_id)


@router.post("/business/{business_id}/usage/{action}")
def record_usage(business_id: str, action: str):
    updated = increment_usage(business_id, action)
    return {"recorded": updated is not None, "action_type": ActionType.parse(action).value}


@router.post("/business/{business_id}/usage/{action}/consume")
def consume_usage(business_id: str, action: str):
    """
    Check and record one metered action in a single guarded write.

    Errors:
        403: The plan's limit for this action is used up for the period
    """
    action_type = ActionType.parse(action)
    if not consume_quota(business_id, action_type):
        raise QuotaExceededError(f"Monthly {action_type.value} limit reached")
    return {"allowed": True, "action_type": action_type.value}


@router.get("/business/{business_id}/can-perform/{action}", response_model=CanPerformResponse)
def can_perform(business_id: str, action: str):
    action_type = ActionType.parse(action)
    return CanPerformResponse(
        can_perform=can_perform_action(business_id, action_type),
        action_type=action_type,
    )


@router.get("/business/{business_id}/feature/{feature}", response_model=FeatureAvailability)
def feature_availability(business_id: str, feature: str):
    return check_feature_availability(business_id, feature)


@router.get("/business/{business_id}/entitlements", response_model=EntitlementSnapshot)
def entitlements(business_id: str):
    return get_entitlements(business_id)


@router.get("/business/{business_id}/upgrade-comparison", response_model=Optional[UpgradeComparison])
def upgrade_comparison(business_id: str):
    """Next-tier comparison, or ``null`` when no upgrade exists."""
    return get_upgrade_comparison(business_id)
