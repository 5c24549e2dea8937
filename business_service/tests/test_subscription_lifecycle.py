"""
Subscription lifecycle: create, upgrade, cancel, suspend/reactivate, expiring.
"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select, update

from business_service.core.database import get_db_session, business_subscriptions
from business_service.core.errors import InvalidOperationError, NotFoundError, ValidationError
from business_service.features.subscriptions.service import (
    cancel_subscription,
    create_subscription,
    get_expiring_subscriptions,
    get_subscription,
    reactivate_subscription,
    suspend_subscription,
    upgrade_subscription,
)
from business_service.features.usage.service import increment_usage
from business_service.models.plan import SubscriptionTier
from business_service.models.subscription import SubscriptionStatus


def _rows(business_id):
    with get_db_session() as session:
        return session.execute(
            select(business_subscriptions)
            .where(business_subscriptions.c.business_id == business_id)
            .order_by(business_subscriptions.c.created_at)
        ).fetchall()


def test_create_monthly_subscription(plans, business, now):
    premium = plans[SubscriptionTier.PREMIUM]

    view = create_subscription(business["id"], premium.id, is_annual=False, now=now)

    assert view.status == SubscriptionStatus.ACTIVE
    assert view.is_active is True
    assert view.plan_name == "Premium"
    assert view.end_date == datetime(2026, 2, 15, 12, 0, tzinfo=timezone.utc)
    assert view.billing_date == now
    assert view.usage.usage_reset_date == datetime(2026, 2, 15, 12, 0, tzinfo=timezone.utc)
    assert view.usage.replies.used == 0


def test_create_annual_subscription(plans, business, now):
    view = create_subscription(business["id"], plans[SubscriptionTier.ENTERPRISE].id, is_annual=True, now=now)

    assert view.end_date == datetime(2027, 1, 15, 12, 0, tzinfo=timezone.utc)
    assert view.usage.usage_reset_date == datetime(2026, 2, 15, 12, 0, tzinfo=timezone.utc)


def test_create_requires_business_and_plan(plans, business, now):
    with pytest.raises(NotFoundError):
        create_subscription("ghost", plans[SubscriptionTier.BASIC].id, now=now)
    with pytest.raises(NotFoundError):
        create_subscription(business["id"], "missing-plan", now=now)


def test_create_with_existing_active_fails_without_mutation(plans, business, now):
    create_subscription(business["id"], plans[SubscriptionTier.PREMIUM].id, now=now)
    increment_usage(business["id"], "reply", now=now)
    before = _rows(business["id"])

    with pytest.raises(InvalidOperationError):
        create_subscription(business["id"], plans[SubscriptionTier.ENTERPRISE].id, now=now + timedelta(days=1))

    after = _rows(business["id"])
    assert len(after) == 1
    assert after[0]._mapping == before[0]._mapping


def test_create_after_lapse_retires_old_row(plans, business, now):
    create_subscription(business["id"], plans[SubscriptionTier.PREMIUM].id, now=now)
    later = now + timedelta(days=40)  # past the monthly end date, sweeper not run

    view = create_subscription(business["id"], plans[SubscriptionTier.ENTERPRISE].id, now=later)

    rows = _rows(business["id"])
    assert [r.status for r in rows] == ["expired", "active"]
    assert view.tier == SubscriptionTier.ENTERPRISE


def test_upgrade_keeps_usage_and_reset_date(plans, business, now):
    create_subscription(business["id"], plans[SubscriptionTier.BASIC].id, now=now)
    increment_usage(business["id"], "reply", now=now)
    increment_usage(business["id"], "dispute", now=now)

    later = now + timedelta(days=5)
    view = upgrade_subscription(business["id"], plans[SubscriptionTier.PREMIUM].id, is_annual=True, now=later)

    assert view.tier == SubscriptionTier.PREMIUM
    assert view.is_annual is True
    assert view.end_date == datetime(2027, 1, 20, 12, 0, tzinfo=timezone.utc)
    assert view.usage.replies.used == 1
    assert view.usage.disputes.used == 1
    assert view.usage.replies.limit == 120
    assert view.usage.usage_reset_date == datetime(2026, 2, 15, 12, 0, tzinfo=timezone.utc)


def test_upgrade_without_active_subscription(plans, business, now):
    with pytest.raises(NotFoundError):
        upgrade_subscription(business["id"], plans[SubscriptionTier.PREMIUM].id, now=now)


def test_upgrade_to_missing_plan(plans, business, now):
    create_subscription(business["id"], plans[SubscriptionTier.BASIC].id, now=now)
    with pytest.raises(NotFoundError):
        upgrade_subscription(business["id"], "missing-plan", now=now)


def test_cancel_keeps_row_with_reason(plans, business, now):
    create_subscription(business["id"], plans[SubscriptionTier.PREMIUM].id, now=now)

    cancel_subscription(business["id"], "Too expensive", now=now + timedelta(days=2))

    assert get_subscription(business["id"], now=now + timedelta(days=2)) is None
    rows = _rows(business["id"])
    assert len(rows) == 1
    assert rows[0].status == "cancelled"
    assert rows[0].cancellation_reason == "Too expensive"
    assert rows[0].cancelled_at is not None


def test_cancel_without_active_subscription(business, now):
    with pytest.raises(NotFoundError):
        cancel_subscription(business["id"], "n/a", now=now)


def test_suspend_and_reactivate(plans, business, now):
    create_subscription(business["id"], plans[SubscriptionTier.PREMIUM].id, now=now)

    suspended = suspend_subscription(business["id"], now=now)
    assert suspended.status == SubscriptionStatus.SUSPENDED
    assert get_subscription(business["id"], now=now) is None

    reactivated = reactivate_subscription(business["id"], now=now + timedelta(days=1))
    assert reactivated.status == SubscriptionStatus.ACTIVE
    assert get_subscription(business["id"], now=now + timedelta(days=1)) is not None


def test_reactivate_requires_suspended(plans, business, now):
    with pytest.raises(NotFoundError):
        reactivate_subscription(business["id"], now=now)


def test_reactivate_blocked_by_newer_active(plans, business, now):
    create_subscription(business["id"], plans[SubscriptionTier.BASIC].id, now=now)
    suspend_subscription(business["id"], now=now)
    create_subscription(business["id"], plans[SubscriptionTier.PREMIUM].id, now=now)

    with pytest.raises(InvalidOperationError):
        reactivate_subscription(business["id"], now=now)


def test_reactivate_after_newer_subscription_lapsed(plans, business, now):
    premium = plans[SubscriptionTier.PREMIUM]
    basic = plans[SubscriptionTier.BASIC]
    create_subscription(business["id"], premium.id, is_annual=True, now=now)
    suspend_subscription(business["id"], now=now)
    create_subscription(business["id"], basic.id, now=now)
    later = now + timedelta(days=40)  # basic monthly has lapsed, sweeper not run

    reactivated = reactivate_subscription(business["id"], now=later)

    assert reactivated.plan_id == premium.id
    assert reactivated.status == SubscriptionStatus.ACTIVE
    statuses = {r.plan_id: r.status for r in _rows(business["id"])}
    assert statuses == {premium.id: "active", basic.id: "expired"}
    assert get_subscription(business["id"], now=later).plan_id == premium.id


def test_naive_clock_is_treated_as_utc(plans, business, now):
    naive = now.replace(tzinfo=None)
    create_subscription(business["id"], plans[SubscriptionTier.BASIC].id, now=naive)

    increment_usage(business["id"], "reply", now=naive)

    view = get_subscription(business["id"], now=naive)
    assert view.usage.replies.used == 1
    assert view.end_date == datetime(2026, 2, 15, 12, 0, tzinfo=timezone.utc)


def test_reactivate_after_end_date_rejected(plans, business, now):
    create_subscription(business["id"], plans[SubscriptionTier.BASIC].id, now=now)
    suspend_subscription(business["id"], now=now)

    with pytest.raises(InvalidOperationError):
        reactivate_subscription(business["id"], now=now + timedelta(days=45))


def test_get_subscription_reports_days_remaining(plans, business, now):
    create_subscription(business["id"], plans[SubscriptionTier.PREMIUM].id, now=now)

    view = get_subscription(business["id"], now=now + timedelta(days=10))

    assert view.days_remaining == 21
    assert view.plan_name == "Premium"


def test_get_subscription_when_plan_deleted(plans, business, now):
    create_subscription(business["id"], plans[SubscriptionTier.PREMIUM].id, now=now)
    with get_db_session() as session:
        session.execute(
            update(business_subscriptions)
            .where(business_subscriptions.c.business_id == business["id"])
            .values(plan_id="retired-plan")
        )

    view = get_subscription(business["id"], now=now)

    assert view.plan_name is None
    assert view.usage.replies.limit == 10  # default plan


def test_expiring_window(plans, business, other_business, now):
    create_subscription(business["id"], plans[SubscriptionTier.PREMIUM].id, is_annual=False, now=now)
    create_subscription(other_business["id"], plans[SubscriptionTier.PREMIUM].id, is_annual=True, now=now)

    soon = get_expiring_subscriptions(7, now=now + timedelta(days=25))

    assert [v.business_id for v in soon] == [business["id"]]
    assert get_expiring_subscriptions(7, now=now) == []


def test_expiring_rejects_negative_days():
    with pytest.raises(ValidationError):
        get_expiring_subscriptions(-1)
