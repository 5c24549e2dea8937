"""
Subscription row access and version-guarded writes.

Every mutation of a subscription row goes through ``guarded_update``:
``UPDATE ... WHERE id = :id AND version = :observed`` with ``version + 1``.
A zero rowcount means another writer got there first.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar

from sqlalchemy import select, update, and_

from business_service.core.config import settings
from business_service.core.database import get_db_session, business_subscriptions, as_utc
from business_service.core.errors import ConflictError
from business_service.models.subscription import Subscription, SubscriptionStatus, utc_now

logger = logging.getLogger("business_service.subscriptions")

T = TypeVar("T")

_MUTABLE_FIELDS = (
    "plan_id",
    "end_date",
    "billing_date",
    "is_annual",
    "status",
    "cancelled_at",
    "cancellation_reason",
    "replies_used_this_month",
    "disputes_used_this_month",
    "usage_reset_date",
)


def row_to_subscription(row) -> Subscription:
    return Subscription(
        id=row.id,
        business_id=row.business_id,
        plan_id=row.plan_id,
        start_date=as_utc(row.start_date),
        end_date=as_utc(row.end_date),
        billing_date=as_utc(row.billing_date),
        is_annual=row.is_annual,
        status=SubscriptionStatus(row.status),
        replies_used_this_month=row.replies_used_this_month,
        disputes_used_this_month=row.disputes_used_this_month,
        usage_reset_date=as_utc(row.usage_reset_date),
        cancelled_at=as_utc(row.cancelled_at),
        cancellation_reason=row.cancellation_reason,
        version=row.version,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def find_active_row(session, business_id: str) -> Optional[Subscription]:
    """The row in status=active for a business, whether or not it has lapsed."""
    row = session.execute(
        select(business_subscriptions).where(
            and_(
                business_subscriptions.c.business_id == business_id,
                business_subscriptions.c.status == SubscriptionStatus.ACTIVE.value,
            )
        )
    ).first()
    return row_to_subscription(row) if row else None


def load_active(session, business_id: str, now: datetime) -> Optional[Subscription]:
    """The business's active subscription, or None if absent or past its end date."""
    sub = find_active_row(session, business_id)
    if sub is None or not sub.is_active(now):
        return None
    return sub


def get_active_subscription(business_id: str, now: Optional[datetime] = None) -> Optional[Subscription]:
    now = utc_now(now)
    with get_db_session() as session:
        return load_active(session, business_id, now)


def changed_fields(before: Subscription, after: Subscription) -> Dict[str, Any]:
    changes = {}
    for field in _MUTABLE_FIELDS:
        value = getattr(after, field)
        if value != getattr(before, field):
            changes[field] = value.value if isinstance(value, SubscriptionStatus) else value
    return changes


def guarded_update(session, observed: Subscription, changes: Dict[str, Any]) -> bool:
    """Write ``changes`` only if the row still carries ``observed.version``."""
    result = session.execute(
        update(business_subscriptions)
        .where(
            and_(
                business_subscriptions.c.id == observed.id,
                business_subscriptions.c.version == observed.version,
            )
        )
        .values(
            version=observed.version + 1,
            updated_at=datetime.now(timezone.utc),
            **changes,
        )
    )
    return result.rowcount == 1


def mutate_active(
    business_id: str,
    now: datetime,
    mutate: Callable[[Optional[Subscription]], Tuple[T, Optional[Subscription]]],
    op_name: str,
) -> T:
    """
    Read-compute-conditional-write loop for the business's active subscription.

    ``mutate`` receives the current subscription (or None) and returns
    ``(result, updated)``. When ``updated`` differs from what was read it is
    written with a version guard; on a lost race the whole unit is retried
    from a fresh read.

    Raises:
        ConflictError: If every attempt lost the race.
    """
    attempts = max(1, settings.USAGE_UPDATE_MAX_RETRIES)
    for attempt in range(1, attempts + 1):
        with get_db_session() as session:
            current = load_active(session, business_id, now)
            result, updated = mutate(current)
            if current is None or updated is None:
                return result
            changes = changed_fields(current, updated)
            if not changes:
                return result
            if guarded_update(session, current, changes):
                return result
        logger.info(
            "[subscriptions] version conflict, retrying",
            extra={"business_id": business_id, "operation": op_name, "attempt": attempt},
        )

    logger.warning(
        "[subscriptions] gave up after repeated version conflicts",
        extra={"business_id": business_id, "operation": op_name, "attempts": attempts},
    )
    raise ConflictError("Subscription was modified concurrently; please retry")
