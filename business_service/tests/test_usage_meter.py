"""
Usage meter rules: quota boundaries, unlimited plans and monthly rollover.
"""
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from business_service.features.usage import meter
from business_service.models.entitlement import ActionType
from business_service.models.plan import Plan, SubscriptionTier, UNLIMITED
from business_service.models.subscription import Subscription, SubscriptionStatus


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def _plan(reply_limit=10, dispute_limit=5):
    return Plan(
        id="plan_x",
        name="Test",
        tier=SubscriptionTier.BASIC,
        monthly_price=Decimal("0"),
        annual_price=Decimal("0"),
        monthly_reply_limit=reply_limit,
        monthly_dispute_limit=dispute_limit,
        external_source_limit=1,
        user_login_limit=1,
    )


def _sub(replies=0, disputes=0, reset=None):
    return Subscription(
        id="sub_1",
        business_id="biz_1",
        plan_id="plan_x",
        start_date=_utc(2026, 1, 1),
        end_date=_utc(2027, 1, 1),
        status=SubscriptionStatus.ACTIVE,
        replies_used_this_month=replies,
        disputes_used_this_month=disputes,
        usage_reset_date=reset or _utc(2026, 2, 1),
    )


NOW = _utc(2026, 1, 20)


def test_one_below_limit_allows_reply():
    _, allowed = meter.can_reply(_sub(replies=9), _plan(reply_limit=10), NOW)
    assert allowed is True


def test_at_limit_blocks_reply():
    _, allowed = meter.can_reply(_sub(replies=10), _plan(reply_limit=10), NOW)
    assert allowed is False


def test_dispute_limit_boundary():
    _, allowed_below = meter.can_dispute(_sub(disputes=4), _plan(dispute_limit=5), NOW)
    _, allowed_at = meter.can_dispute(_sub(disputes=5), _plan(dispute_limit=5), NOW)
    assert allowed_below is True
    assert allowed_at is False


@pytest.mark.parametrize("used", [0, 10, 1_000_000])
def test_unlimited_always_allows(used):
    _, allowed = meter.can_reply(_sub(replies=used), _plan(reply_limit=UNLIMITED), NOW)
    assert allowed is True


def test_increment_adds_exactly_one():
    sub = meter.increment_reply_usage(_sub(replies=3, disputes=2), NOW)
    assert sub.replies_used_this_month == 4
    assert sub.disputes_used_this_month == 2

    sub = meter.increment_dispute_usage(sub, NOW)
    assert sub.disputes_used_this_month == 3


def test_increment_does_not_enforce_limit():
    sub = meter.increment(_sub(replies=10), ActionType.REPLY, NOW)
    assert sub.replies_used_this_month == 11


def test_rollover_resets_counters_and_advances_from_previous_reset():
    sub = _sub(replies=10, disputes=5, reset=_utc(2026, 2, 1))
    late = _utc(2026, 2, 3, 9, 30)

    rolled, happened = meter.check_and_rollover(sub, late)

    assert happened is True
    assert rolled.replies_used_this_month == 0
    assert rolled.disputes_used_this_month == 0
    assert rolled.usage_reset_date == _utc(2026, 3, 1)


def test_rollover_twice_in_succession_advances_once():
    sub = _sub(replies=7, reset=_utc(2026, 2, 1))
    at = _utc(2026, 2, 1)

    once, _ = meter.check_and_rollover(sub, at)
    twice, happened_again = meter.check_and_rollover(once, at)

    assert happened_again is False
    assert twice.replies_used_this_month == 0
    assert twice.usage_reset_date == _utc(2026, 3, 1)


def test_no_rollover_before_reset_date():
    sub = _sub(replies=7)
    same, happened = meter.check_and_rollover(sub, NOW)
    assert happened is False
    assert same == sub


def test_check_after_rollover_sees_fresh_quota():
    sub = _sub(replies=10, reset=_utc(2026, 2, 1))
    rolled, allowed = meter.can_reply(sub, _plan(reply_limit=10), _utc(2026, 2, 2))
    assert allowed is True
    assert rolled.replies_used_this_month == 0


def test_add_months_clamps_to_month_end():
    assert meter.add_months(_utc(2026, 1, 31), 1) == _utc(2026, 2, 28)
    assert meter.add_months(_utc(2028, 1, 31), 1) == _utc(2028, 2, 29)
    assert meter.add_months(_utc(2026, 12, 15), 1) == _utc(2027, 1, 15)
    assert meter.add_years(_utc(2028, 2, 29), 1) == _utc(2029, 2, 28)


def test_month_end_anchor_does_not_drift():
    # Anchored on Jan 31: a check two months late lands on Mar 31, not Mar 28.
    sub = _sub(replies=1, reset=_utc(2026, 1, 31))
    rolled, _ = meter.check_and_rollover(sub, _utc(2026, 3, 1))
    assert rolled.usage_reset_date == _utc(2026, 3, 31)


def test_snapshot_reports_remaining_and_percentage():
    snapshot = meter.build_usage_snapshot(_sub(replies=3, disputes=5), _plan(reply_limit=10, dispute_limit=5))

    assert snapshot.replies.remaining == 7
    assert snapshot.replies.percentage == 30.0
    assert snapshot.disputes.remaining == 0
    assert snapshot.disputes.percentage == 100.0


def test_snapshot_unlimited_and_missing_subscription():
    snapshot = meter.build_usage_snapshot(None, _plan(reply_limit=UNLIMITED))

    assert snapshot.replies.used == 0
    assert snapshot.replies.remaining == UNLIMITED
    assert snapshot.replies.percentage == 0.0
    assert snapshot.usage_reset_date is None


def test_feature_actions_are_not_metered():
    with pytest.raises(ValueError):
        meter.increment(_sub(), ActionType.DND_MODE, NOW)
