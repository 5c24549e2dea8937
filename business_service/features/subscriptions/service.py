"""
business_service/features/subscriptions/service.py

Subscription lifecycle.

States: active -> suspended -> active, active -> cancelled, active -> expired
(sweeper), none -> active (create), active -> active (upgrade).
All writes to an existing row are version guarded.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select, insert, and_
from sqlalchemy.exc import IntegrityError

from business_service.core.database import get_db_session, business_subscriptions
from business_service.core.errors import (
    ConflictError,
    InvalidOperationError,
    NotFoundError,
    ValidationError,
)
from business_service.features.businesses.service import get_business
from business_service.features.plans.service import get_plan
from business_service.features.subscriptions.persistence import (
    find_active_row,
    get_active_subscription,
    guarded_update,
    mutate_active,
    row_to_subscription,
)
from business_service.features.usage import meter
from business_service.features.usage.service import plan_for_subscription
from business_service.models.plan import Plan
from business_service.models.subscription import (
    Subscription,
    SubscriptionStatus,
    SubscriptionView,
    utc_now,
)

logger = logging.getLogger("business_service.subscriptions")


def compute_end_date(start: datetime, is_annual: bool) -> datetime:
    return meter.add_years(start, 1) if is_annual else meter.add_months(start, 1)


def to_view(sub: Subscription, now: datetime, plan: Optional[Plan] = None) -> SubscriptionView:
    """Caller-facing view. ``plan`` defaults to the subscription's own plan row."""
    plan = plan or get_plan(sub.plan_id)
    usage_plan = plan or plan_for_subscription(sub)
    rolled, _ = meter.check_and_rollover(sub, now)
    days_remaining = max(0, int((sub.end_date - now).total_seconds() // 86400))
    return SubscriptionView(
        id=sub.id,
        business_id=sub.business_id,
        plan_id=sub.plan_id,
        plan_name=plan.name if plan else None,
        tier=plan.tier if plan else None,
        start_date=sub.start_date,
        end_date=sub.end_date,
        billing_date=sub.billing_date,
        is_annual=sub.is_annual,
        status=sub.status,
        is_active=sub.is_active(now),
        days_remaining=days_remaining,
        cancelled_at=sub.cancelled_at,
        cancellation_reason=sub.cancellation_reason,
        usage=meter.build_usage_snapshot(rolled, usage_plan),
    )


def _retire_lapsed(session, lapsed: Subscription, op_name: str) -> None:
    """Expire an active row past its end date that the sweeper has not reached yet."""
    if not guarded_update(session, lapsed, {"status": SubscriptionStatus.EXPIRED.value}):
        raise ConflictError("Subscription was modified concurrently; please retry")
    logger.info(
        f"[subscriptions] expired lapsed subscription before {op_name}",
        extra={"business_id": lapsed.business_id, "subscription_id": lapsed.id},
    )


def get_subscription(business_id: str, now: Optional[datetime] = None) -> Optional[SubscriptionView]:
    now = utc_now(now)
    sub = get_active_subscription(business_id, now)
    if sub is None:
        return None
    return to_view(sub, now)


def create_subscription(
    business_id: str,
    plan_id: str,
    is_annual: bool = False,
    now: Optional[datetime] = None,
) -> SubscriptionView:
    """
    Start a subscription for a business.

    Raises:
        NotFoundError: Unknown business or plan.
        InvalidOperationError: The business already has an active subscription.
        ConflictError: A concurrent create won the race.
    """
    now = utc_now(now)
    if get_business(business_id) is None:
        raise NotFoundError(f"Business with ID {business_id} not found")
    plan = get_plan(plan_id)
    if plan is None:
        raise NotFoundError(f"Subscription plan with ID {plan_id} not found")

    sub_id = str(uuid.uuid4())
    try:
        with get_db_session() as session:
            existing = find_active_row(session, business_id)
            if existing is not None:
                if existing.is_active(now):
                    raise InvalidOperationError("Business already has an active subscription")
                _retire_lapsed(session, existing, "create")

            session.execute(
                insert(business_subscriptions).values(
                    id=sub_id,
                    business_id=business_id,
                    plan_id=plan_id,
                    start_date=now,
                    end_date=compute_end_date(now, is_annual),
                    billing_date=now,
                    is_annual=is_annual,
                    status=SubscriptionStatus.ACTIVE.value,
                    replies_used_this_month=0,
                    disputes_used_this_month=0,
                    usage_reset_date=meter.add_months(now, 1),
                    version=1,
                    created_at=now,
                    updated_at=now,
                )
            )
    except IntegrityError:
        raise ConflictError("Business already has an active subscription")

    logger.info(
        "[subscriptions] subscription created",
        extra={"business_id": business_id, "plan_id": plan_id, "is_annual": is_annual},
    )
    sub = get_active_subscription(business_id, now)
    return to_view(sub, now, plan)


def upgrade_subscription(
    business_id: str,
    new_plan_id: str,
    is_annual: bool = False,
    now: Optional[datetime] = None,
) -> SubscriptionView:
    """
    Move the active subscription to another plan.

    The end date is recomputed from ``now``; usage counters and the usage
    reset date carry over unchanged.
    """
    now = utc_now(now)
    if get_active_subscription(business_id, now) is None:
        raise NotFoundError("No active subscription found")
    plan = get_plan(new_plan_id)
    if plan is None:
        raise NotFoundError(f"Subscription plan with ID {new_plan_id} not found")

    def _upgrade(sub):
        if sub is None:
            raise NotFoundError("No active subscription found")
        updated = sub.model_copy(
            update={
                "plan_id": new_plan_id,
                "is_annual": is_annual,
                "end_date": compute_end_date(now, is_annual),
            }
        )
        return updated, updated

    updated = mutate_active(business_id, now, _upgrade, op_name="upgrade")
    logger.info(
        "[subscriptions] subscription upgraded",
        extra={"business_id": business_id, "plan_id": new_plan_id, "is_annual": is_annual},
    )
    return to_view(updated, now, plan)


def cancel_subscription(business_id: str, reason: Optional[str] = None, now: Optional[datetime] = None) -> None:
    """Cancel the active subscription. The row is kept for history."""
    now = utc_now(now)

    def _cancel(sub):
        if sub is None:
            raise NotFoundError("No active subscription found")
        return None, sub.model_copy(
            update={
                "status": SubscriptionStatus.CANCELLED,
                "cancelled_at": now,
                "cancellation_reason": reason,
            }
        )

    mutate_active(business_id, now, _cancel, op_name="cancel")
    logger.info("[subscriptions] subscription cancelled", extra={"business_id": business_id})


def suspend_subscription(business_id: str, now: Optional[datetime] = None) -> SubscriptionView:
    now = utc_now(now)

    def _suspend(sub):
        if sub is None:
            raise NotFoundError("No active subscription found")
        updated = sub.model_copy(update={"status": SubscriptionStatus.SUSPENDED})
        return updated, updated

    updated = mutate_active(business_id, now, _suspend, op_name="suspend")
    logger.info("[subscriptions] subscription suspended", extra={"business_id": business_id})
    return to_view(updated, now)


def _latest_with_status(session, business_id: str, status: SubscriptionStatus) -> Optional[Subscription]:
    row = session.execute(
        select(business_subscriptions)
        .where(
            and_(
                business_subscriptions.c.business_id == business_id,
                business_subscriptions.c.status == status.value,
            )
        )
        .order_by(business_subscriptions.c.updated_at.desc())
    ).first()
    return row_to_subscription(row) if row else None


def reactivate_subscription(business_id: str, now: Optional[datetime] = None) -> SubscriptionView:
    """
    Return the most recently suspended subscription to active.

    Raises:
        NotFoundError: No suspended subscription.
        InvalidOperationError: Another subscription is active, or the suspended
            one has already passed its end date.
    """
    now = utc_now(now)
    try:
        with get_db_session() as session:
            suspended = _latest_with_status(session, business_id, SubscriptionStatus.SUSPENDED)
            if suspended is None:
                raise NotFoundError("No suspended subscription found")
            active = find_active_row(session, business_id)
            if active is not None and active.is_active(now):
                raise InvalidOperationError("Business already has an active subscription")
            if now >= suspended.end_date:
                raise InvalidOperationError("Subscription has already ended")
            if active is not None:
                _retire_lapsed(session, active, "reactivate")
            if not guarded_update(session, suspended, {"status": SubscriptionStatus.ACTIVE.value}):
                raise ConflictError("Subscription was modified concurrently; please retry")
    except IntegrityError:
        raise ConflictError("Business already has an active subscription")

    logger.info("[subscriptions] subscription reactivated", extra={"business_id": business_id})
    reactivated = suspended.model_copy(
        update={"status": SubscriptionStatus.ACTIVE, "version": suspended.version + 1}
    )
    return to_view(reactivated, now)


def get_expiring_subscriptions(days: int, now: Optional[datetime] = None) -> List[SubscriptionView]:
    """Active subscriptions whose end date falls within the next ``days`` days."""
    if days < 0:
        raise ValidationError("days must be zero or positive")
    now = utc_now(now)
    horizon = now + timedelta(days=days)
    with get_db_session() as session:
        rows = session.execute(
            select(business_subscriptions)
            .where(
                and_(
                    business_subscriptions.c.status == SubscriptionStatus.ACTIVE.value,
                    business_subscriptions.c.end_date > now,
                    business_subscriptions.c.end_date <= horizon,
                )
            )
            .order_by(business_subscriptions.c.end_date)
        ).fetchall()
    subs = [row_to_subscription(row) for row in rows]
    return [to_view(sub, now) for sub in subs]
