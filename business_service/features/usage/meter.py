"""
Usage meter rules (pure).

Two monthly quota dimensions live on the subscription: replies and disputes.
Counters are zeroed lazily, by whichever check or increment first sees
``now >= usage_reset_date``. Nothing here touches the database; the usage
service wraps these functions in a version-guarded write.
"""
import calendar
from datetime import datetime
from typing import Optional, Tuple

from business_service.models.entitlement import ActionType, QuotaUsage, UsageSnapshot
from business_service.models.plan import Plan, UNLIMITED
from business_service.models.subscription import Subscription


_COUNTER_FIELDS = {
    ActionType.REPLY: "replies_used_this_month",
    ActionType.DISPUTE: "disputes_used_this_month",
}

_LIMIT_FIELDS = {
    ActionType.REPLY: "monthly_reply_limit",
    ActionType.DISPUTE: "monthly_dispute_limit",
}


def add_months(value: datetime, months: int) -> datetime:
    """Shift by calendar months, clamping to the last day of a shorter month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def add_years(value: datetime, years: int) -> datetime:
    return add_months(value, 12 * years)


def check_and_rollover(sub: Subscription, now: datetime) -> Tuple[Subscription, bool]:
    """
    Zero both counters if the usage period has ended.

    The new reset date is counted in whole calendar months from the previous
    reset date (never from ``now``), stepping as many months as needed to land
    after ``now``. Returns the (possibly unchanged) subscription and whether a
    rollover happened.
    """
    if now < sub.usage_reset_date:
        return sub, False

    anchor = sub.usage_reset_date
    months = 1
    next_reset = add_months(anchor, months)
    while next_reset <= now:
        months += 1
        next_reset = add_months(anchor, months)

    rolled = sub.model_copy(
        update={
            "replies_used_this_month": 0,
            "disputes_used_this_month": 0,
            "usage_reset_date": next_reset,
        }
    )
    return rolled, True


def can_use(counter: int, limit: int) -> bool:
    """Strict less-than: reaching the limit uses up the last permitted action."""
    return limit == UNLIMITED or counter < limit


def counter_for(sub: Subscription, action: ActionType) -> int:
    return getattr(sub, _COUNTER_FIELDS[action])


def limit_for(plan: Plan, action: ActionType) -> int:
    return getattr(plan, _LIMIT_FIELDS[action])


def can_perform(sub: Subscription, plan: Plan, action: ActionType, now: datetime) -> Tuple[Subscription, bool]:
    if not action.is_metered:
        raise ValueError(f"{action.value} is not a metered action")
    sub, _ = check_and_rollover(sub, now)
    return sub, can_use(counter_for(sub, action), limit_for(plan, action))


def can_reply(sub: Subscription, plan: Plan, now: datetime) -> Tuple[Subscription, bool]:
    return can_perform(sub, plan, ActionType.REPLY, now)


def can_dispute(sub: Subscription, plan: Plan, now: datetime) -> Tuple[Subscription, bool]:
    return can_perform(sub, plan, ActionType.DISPUTE, now)


def increment(sub: Subscription, action: ActionType, now: datetime) -> Subscription:
    """Roll over if due, then add exactly one use. Limits are not enforced here."""
    if not action.is_metered:
        raise ValueError(f"{action.value} is not a metered action")
    sub, _ = check_and_rollover(sub, now)
    field = _COUNTER_FIELDS[action]
    return sub.model_copy(update={field: getattr(sub, field) + 1})


def increment_reply_usage(sub: Subscription, now: datetime) -> Subscription:
    return increment(sub, ActionType.REPLY, now)


def increment_dispute_usage(sub: Subscription, now: datetime) -> Subscription:
    return increment(sub, ActionType.DISPUTE, now)


def _quota(used: int, limit: int) -> QuotaUsage:
    if limit == UNLIMITED:
        return QuotaUsage(used=used, limit=UNLIMITED, remaining=UNLIMITED, percentage=0.0)
    remaining = max(limit - used, 0)
    percentage = round(used * 100.0 / limit, 2) if limit > 0 else 100.0
    return QuotaUsage(used=used, limit=limit, remaining=remaining, percentage=percentage)


def build_usage_snapshot(sub: Optional[Subscription], plan: Plan) -> UsageSnapshot:
    """Usage view; a missing subscription reads as zero usage on ``plan``."""
    replies = sub.replies_used_this_month if sub else 0
    disputes = sub.disputes_used_this_month if sub else 0
    return UsageSnapshot(
        replies=_quota(replies, plan.monthly_reply_limit),
        disputes=_quota(disputes, plan.monthly_dispute_limit),
        usage_reset_date=sub.usage_reset_date if sub else None,
    )
