"""
Usage writes are version guarded: a lost update is retried, not overwritten.
"""
from datetime import datetime, timezone

import pytest
from sqlalchemy import select, update

from business_service.core.config import settings
from business_service.core.database import get_db_session, business_subscriptions
from business_service.core.errors import ConflictError
from business_service.features.subscriptions import persistence
from business_service.features.subscriptions.service import create_subscription
from business_service.features.usage.service import check_quota, consume_quota, get_usage, increment_usage
from business_service.models.plan import SubscriptionTier


def _row(business_id):
    with get_db_session() as session:
        return session.execute(
            select(business_subscriptions).where(business_subscriptions.c.business_id == business_id)
        ).first()


def _bump_behind_the_back(session, business_id):
    """Simulate another writer committing between our read and our write."""
    session.execute(
        update(business_subscriptions)
        .where(business_subscriptions.c.business_id == business_id)
        .values(
            replies_used_this_month=business_subscriptions.c.replies_used_this_month + 1,
            version=business_subscriptions.c.version + 1,
        )
    )


def test_concurrent_increment_is_not_lost(plans, business, now, monkeypatch):
    create_subscription(business["id"], plans[SubscriptionTier.PREMIUM].id, now=now)
    real_load = persistence.load_active
    calls = {"n": 0}

    def racing_load(session, business_id, at):
        sub = real_load(session, business_id, at)
        calls["n"] += 1
        if calls["n"] == 1:
            _bump_behind_the_back(session, business_id)
        return sub

    monkeypatch.setattr(persistence, "load_active", racing_load)

    increment_usage(business["id"], "reply", now=now)

    row = _row(business["id"])
    assert calls["n"] == 2
    assert row.replies_used_this_month == 2
    assert row.version == 3


def test_gives_up_after_max_retries(plans, business, now, monkeypatch):
    create_subscription(business["id"], plans[SubscriptionTier.PREMIUM].id, now=now)
    monkeypatch.setattr(settings, "USAGE_UPDATE_MAX_RETRIES", 3)
    real_load = persistence.load_active
    calls = {"n": 0}

    def always_racing(session, business_id, at):
        sub = real_load(session, business_id, at)
        calls["n"] += 1
        _bump_behind_the_back(session, business_id)
        return sub

    monkeypatch.setattr(persistence, "load_active", always_racing)

    with pytest.raises(ConflictError):
        increment_usage(business["id"], "reply", now=now)
    assert calls["n"] == 3


def test_every_write_bumps_version(plans, business, now):
    create_subscription(business["id"], plans[SubscriptionTier.PREMIUM].id, now=now)

    increment_usage(business["id"], "reply", now=now)
    increment_usage(business["id"], "dispute", now=now)

    row = _row(business["id"])
    assert row.version == 3
    assert row.replies_used_this_month == 1
    assert row.disputes_used_this_month == 1


def test_rollover_is_persisted_once(plans, business, now):
    create_subscription(business["id"], plans[SubscriptionTier.BASIC].id, is_annual=True, now=now)
    for _ in range(10):
        increment_usage(business["id"], "reply", now=now)
    assert check_quota(business["id"], "reply", now=now) is False

    after_reset = datetime(2026, 2, 16, tzinfo=timezone.utc)
    assert check_quota(business["id"], "reply", now=after_reset) is True
    assert check_quota(business["id"], "reply", now=after_reset) is True

    row = _row(business["id"])
    assert row.replies_used_this_month == 0
    assert row.usage_reset_date.replace(tzinfo=timezone.utc) == datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def test_consume_quota_stops_at_limit(plans, business, now):
    create_subscription(business["id"], plans[SubscriptionTier.BASIC].id, now=now)

    results = [consume_quota(business["id"], "dispute", now=now) for _ in range(6)]

    assert results == [True, True, True, True, True, False]
    assert _row(business["id"]).disputes_used_this_month == 5


def test_increment_without_subscription_is_noop(plans, business, now):
    assert increment_usage(business["id"], "reply", now=now) is None
    usage = get_usage(business["id"], now=now)
    assert usage.replies.used == 0
    assert usage.replies.limit == 10
