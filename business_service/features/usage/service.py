"""
Usage metering service.

Each check or increment is one atomic unit per subscription row: read,
roll over if due, decide or increment, then a version-guarded write.
"""

import logging
from datetime import datetime
from typing import Optional

from business_service.core.errors import ValidationError
from business_service.features.plans.service import get_plan, get_default_plan
from business_service.features.subscriptions.persistence import (
    get_active_subscription,
    mutate_active,
)
from business_service.features.usage import meter
from business_service.models.entitlement import ActionType, UsageSnapshot
from business_service.models.plan import Plan
from business_service.models.subscription import Subscription, utc_now

logger = logging.getLogger("business_service.usage")


def plan_for_subscription(sub: Optional[Subscription]) -> Plan:
    """
    Plan governing a subscription; the default plan when there is none.

    A subscription whose plan row was deleted falls back to the default plan.
    """
    if sub is None:
        return get_default_plan()
    plan = get_plan(sub.plan_id)
    if plan is None:
        logger.warning(
            "[usage] subscription references missing plan, using default",
            extra={"subscription_id": sub.id, "plan_id": sub.plan_id},
        )
        return get_default_plan()
    return plan


def _metered(action) -> ActionType:
    action = ActionType.parse(action) if not isinstance(action, ActionType) else action
    if not action.is_metered:
        raise ValidationError(f"{action.value} is not a metered action")
    return action


def check_quota(business_id: str, action, now: Optional[datetime] = None) -> bool:
    """Whether one more ``action`` fits in the current period. Persists any due rollover."""
    action = _metered(action)
    now = utc_now(now)

    def _check(sub):
        plan = plan_for_subscription(sub)
        if sub is None:
            return meter.can_use(0, meter.limit_for(plan, action)), None
        rolled, allowed = meter.can_perform(sub, plan, action, now)
        return allowed, rolled

    return mutate_active(business_id, now, _check, op_name=f"check_{action.value}")


def increment_usage(business_id: str, action, now: Optional[datetime] = None) -> Optional[Subscription]:
    """
    Record one use of ``action``.

    Without an active subscription this is a no-op and returns None.
    Limits are not enforced here; callers check first (or use ``consume_quota``).
    """
    action = _metered(action)
    now = utc_now(now)

    def _increment(sub):
        if sub is None:
            return None, None
        updated = meter.increment(sub, action, now)
        return updated, updated

    updated = mutate_active(business_id, now, _increment, op_name=f"increment_{action.value}")
    if updated is None:
        logger.info(
            "[usage] no active subscription, usage not recorded",
            extra={"business_id": business_id, "action": action.value},
        )
    return updated


def consume_quota(business_id: str, action, now: Optional[datetime] = None) -> bool:
    """
    Check and increment in one guarded write.

    Returns False (and records nothing) when the quota is exhausted. A business
    without a subscription is checked against the default plan at zero usage.
    """
    action = _metered(action)
    now = utc_now(now)

    def _consume(sub):
        plan = plan_for_subscription(sub)
        if sub is None:
            return meter.can_use(0, meter.limit_for(plan, action)), None
        rolled, allowed = meter.can_perform(sub, plan, action, now)
        if not allowed:
            return False, rolled
        return True, meter.increment(rolled, action, now)

    return mutate_active(business_id, now, _consume, op_name=f"consume_{action.value}")


def get_usage(business_id: str, now: Optional[datetime] = None) -> UsageSnapshot:
    """
    Current-period usage for a business.

    Read-only: a due rollover is reflected in the result but not written.
    Without an active subscription, reports zero usage against the default plan.
    """
    now = utc_now(now)
    sub = get_active_subscription(business_id, now)
    plan = plan_for_subscription(sub)
    if sub is not None:
        sub, _ = meter.check_and_rollover(sub, now)
    return meter.build_usage_snapshot(sub, plan)
