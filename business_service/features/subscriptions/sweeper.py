"""
Lifecycle sweeper.

Marks active subscriptions whose end date has passed as expired. Usage
counters and reset dates are left alone; usage rollover runs on its own clock.
"""
import logging
from datetime import datetime
from typing import Optional, Dict, Any

from sqlalchemy import select, and_

from business_service.core.database import get_db_session, business_subscriptions
from business_service.features.subscriptions.persistence import guarded_update, row_to_subscription
from business_service.models.subscription import SubscriptionStatus, utc_now

logger = logging.getLogger("business_service.sweeper")


def expire_subscriptions(now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Expire every active subscription with ``now >= end_date``.

    Each row is updated under its version guard; a row changed concurrently
    (upgraded, cancelled) is skipped and picked up on the next run if still due.
    """
    now = utc_now(now)
    expired = 0
    skipped = 0

    with get_db_session() as session:
        rows = session.execute(
            select(business_subscriptions).where(
                and_(
                    business_subscriptions.c.status == SubscriptionStatus.ACTIVE.value,
                    business_subscriptions.c.end_date <= now,
                )
            )
        ).fetchall()

        for row in rows:
            sub = row_to_subscription(row)
            if now < sub.end_date:
                continue
            if guarded_update(session, sub, {"status": SubscriptionStatus.EXPIRED.value}):
                expired += 1
            else:
                skipped += 1

    result = {
        "scanned": len(rows),
        "expired": expired,
        "skipped": skipped,
        "timestamp": now.isoformat(),
    }
    logger.info("[sweeper] expiry run complete", extra=result)
    return result
