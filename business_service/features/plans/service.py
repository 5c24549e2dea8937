"""
business_service/features/plans/service.py

Plan catalog service.

Handles:
- Plan seeding (Basic, Premium, Enterprise)
- Catalog lookups by id and by tier (cached, read-mostly)
- Write paths that keep one active plan per tier
- Default plan resolution from configuration
"""

import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, insert, update, and_
from sqlalchemy.exc import IntegrityError

from business_service.core.config import settings
from business_service.core.database import get_db_session, subscription_plans, as_utc
from business_service.core.errors import ConfigurationError, ConflictError, NotFoundError
from business_service.models.plan import Plan, SubscriptionTier, UNLIMITED

logger = logging.getLogger("business_service.plans")


# Default plan configurations, keyed by tier
DEFAULT_PLANS: Dict[SubscriptionTier, Dict[str, Any]] = {
    SubscriptionTier.BASIC: {
        "name": "Basic",
        "description": "Free plan with essential features",
        "monthly_price": Decimal("0"),
        "annual_price": Decimal("0"),
        "monthly_reply_limit": 10,
        "monthly_dispute_limit": 5,
        "external_source_limit": 1,
        "user_login_limit": 1,
    },
    SubscriptionTier.PREMIUM: {
        "name": "Premium",
        "description": "Enhanced features for growing businesses",
        "monthly_price": Decimal("15000"),
        "annual_price": Decimal("150000"),
        "monthly_reply_limit": 120,
        "monthly_dispute_limit": 25,
        "external_source_limit": 3,
        "user_login_limit": 3,
        "private_reviews_enabled": True,
    },
    SubscriptionTier.ENTERPRISE: {
        "name": "Enterprise",
        "description": "Full-featured plan for large businesses",
        "monthly_price": Decimal("50000"),
        "annual_price": Decimal("500000"),
        "monthly_reply_limit": UNLIMITED,
        "monthly_dispute_limit": UNLIMITED,
        "external_source_limit": UNLIMITED,
        "user_login_limit": 10,
        "private_reviews_enabled": True,
        "data_api_enabled": True,
        "dnd_mode_enabled": True,
        "auto_response_enabled": True,
        "branch_comparison_enabled": True,
        "competitor_comparison_enabled": True,
    },
}

_WRITABLE_FIELDS = {
    "name",
    "description",
    "monthly_price",
    "annual_price",
    "currency",
    "monthly_reply_limit",
    "monthly_dispute_limit",
    "external_source_limit",
    "user_login_limit",
    "private_reviews_enabled",
    "data_api_enabled",
    "dnd_mode_enabled",
    "auto_response_enabled",
    "branch_comparison_enabled",
    "competitor_comparison_enabled",
    "is_active",
    "tier",
}


# Read-through cache: key -> (expires_at, plan or None)
_cache: Dict[Tuple[str, Any], Tuple[float, Optional[Plan]]] = {}
_cache_lock = threading.Lock()


def invalidate_plan_cache() -> None:
    """Drop every cached catalog lookup (called after each catalog write)."""
    with _cache_lock:
        _cache.clear()


def _cached(key: Tuple[str, Any], loader) -> Optional[Plan]:
    ttl = settings.PLAN_CACHE_TTL_SECONDS
    now = time.monotonic()
    if ttl > 0:
        with _cache_lock:
            hit = _cache.get(key)
            if hit and hit[0] > now:
                return hit[1]
    value = loader()
    if ttl > 0:
        with _cache_lock:
            _cache[key] = (now + ttl, value)
    return value


def row_to_plan(row) -> Plan:
    return Plan(
        id=row.id,
        name=row.name,
        tier=SubscriptionTier(row.tier),
        description=row.description,
        monthly_price=Decimal(str(row.monthly_price)),
        annual_price=Decimal(str(row.annual_price)),
        currency=row.currency,
        monthly_reply_limit=row.monthly_reply_limit,
        monthly_dispute_limit=row.monthly_dispute_limit,
        external_source_limit=row.external_source_limit,
        user_login_limit=row.user_login_limit,
        private_reviews_enabled=row.private_reviews_enabled,
        data_api_enabled=row.data_api_enabled,
        dnd_mode_enabled=row.dnd_mode_enabled,
        auto_response_enabled=row.auto_response_enabled,
        branch_comparison_enabled=row.branch_comparison_enabled,
        competitor_comparison_enabled=row.competitor_comparison_enabled,
        is_active=row.is_active,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def seed_plans() -> None:
    """
    Seed default plans into database (idempotent).

    A tier that already has an active plan is left alone.
    """
    now = datetime.now(timezone.utc)
    created = []

    with get_db_session() as session:
        for tier, config in DEFAULT_PLANS.items():
            existing = session.execute(
                select(subscription_plans.c.id).where(
                    and_(
                        subscription_plans.c.tier == int(tier),
                        subscription_plans.c.is_active.is_(True),
                    )
                )
            ).first()
            if existing:
                continue

            values = {
                "private_reviews_enabled": False,
                "data_api_enabled": False,
                "dnd_mode_enabled": False,
                "auto_response_enabled": False,
                "branch_comparison_enabled": False,
                "competitor_comparison_enabled": False,
            }
            values.update(config)
            session.execute(
                insert(subscription_plans).values(
                    id=str(uuid.uuid4()),
                    tier=int(tier),
                    currency="NGN",
                    is_active=True,
                    created_at=now,
                    updated_at=now,
                    **values,
                )
            )
            created.append(tier.label)

    invalidate_plan_cache()
    if created:
        logger.info("[plans] seeded default plans", extra={"tiers": created})


def get_plans() -> List[Plan]:
    """Active plans ordered by tier."""
    with get_db_session() as session:
        rows = session.execute(
            select(subscription_plans)
            .where(subscription_plans.c.is_active.is_(True))
            .order_by(subscription_plans.c.tier)
        ).fetchall()
    return [row_to_plan(row) for row in rows]


def _load_plan(plan_id: str) -> Optional[Plan]:
    with get_db_session() as session:
        row = session.execute(
            select(subscription_plans).where(subscription_plans.c.id == plan_id)
        ).first()
    return row_to_plan(row) if row else None


def _load_plan_by_tier(tier: SubscriptionTier) -> Optional[Plan]:
    with get_db_session() as session:
        row = session.execute(
            select(subscription_plans).where(
                and_(
                    subscription_plans.c.tier == int(tier),
                    subscription_plans.c.is_active.is_(True),
                )
            )
        ).first()
    return row_to_plan(row) if row else None


def get_plan(plan_id: str) -> Optional[Plan]:
    """Any plan (active or not) by id, or None."""
    return _cached(("id", plan_id), lambda: _load_plan(plan_id))


def get_plan_by_tier(tier: SubscriptionTier) -> Optional[Plan]:
    """The active plan for a tier, or None."""
    tier = SubscriptionTier.parse(tier)
    return _cached(("tier", int(tier)), lambda: _load_plan_by_tier(tier))


def get_default_plan() -> Plan:
    """
    Resolve the configured default tier through the catalog.

    Raises:
        ConfigurationError: If the default tier has no active plan.
    """
    tier = SubscriptionTier.parse(settings.DEFAULT_PLAN_TIER)
    plan = get_plan_by_tier(tier)
    if plan is None:
        logger.critical(
            "[plans] default plan missing from catalog",
            extra={"tier": tier.label},
        )
        raise ConfigurationError(f"Default plan for tier {tier.label} is missing from the catalog")
    return plan


def verify_catalog() -> bool:
    """Startup check. Returns False (after a CRITICAL log) if the default plan is missing."""
    try:
        get_default_plan()
    except ConfigurationError:
        return False
    return True


def _ensure_tier_free(session, tier: int, exclude_plan_id: Optional[str] = None) -> None:
    clauses = [
        subscription_plans.c.tier == tier,
        subscription_plans.c.is_active.is_(True),
    ]
    if exclude_plan_id:
        clauses.append(subscription_plans.c.id != exclude_plan_id)
    clash = session.execute(select(subscription_plans.c.id).where(and_(*clauses))).first()
    if clash:
        raise ConflictError(
            f"An active plan already exists for tier {SubscriptionTier(tier).label}"
        )


def create_plan(
    name: str,
    tier: SubscriptionTier,
    monthly_price: Decimal,
    annual_price: Decimal,
    monthly_reply_limit: int,
    monthly_dispute_limit: int,
    external_source_limit: int,
    user_login_limit: int,
    description: Optional[str] = None,
    currency: str = "NGN",
    is_active: bool = True,
    **features: bool,
) -> Plan:
    """
    Add a plan to the catalog.

    Raises:
        ConflictError: If ``is_active`` and the tier already has an active plan.
    """
    tier = SubscriptionTier.parse(tier)
    unknown = set(features) - _WRITABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown plan fields: {sorted(unknown)}")

    now = datetime.now(timezone.utc)
    plan_id = str(uuid.uuid4())
    values = {
        "private_reviews_enabled": False,
        "data_api_enabled": False,
        "dnd_mode_enabled": False,
        "auto_response_enabled": False,
        "branch_comparison_enabled": False,
        "competitor_comparison_enabled": False,
    }
    values.update(features)

    try:
        with get_db_session() as session:
            if is_active:
                _ensure_tier_free(session, int(tier))
            session.execute(
                insert(subscription_plans).values(
                    id=plan_id,
                    name=name,
                    tier=int(tier),
                    description=description,
                    monthly_price=monthly_price,
                    annual_price=annual_price,
                    currency=currency,
                    monthly_reply_limit=monthly_reply_limit,
                    monthly_dispute_limit=monthly_dispute_limit,
                    external_source_limit=external_source_limit,
                    user_login_limit=user_login_limit,
                    is_active=is_active,
                    created_at=now,
                    updated_at=now,
                    **values,
                )
            )
    except IntegrityError:
        raise ConflictError(f"An active plan already exists for tier {tier.label}")
    finally:
        invalidate_plan_cache()

    logger.info("[plans] plan created", extra={"plan_id": plan_id, "tier": tier.label})
    return get_plan(plan_id)


def update_plan(plan_id: str, **changes: Any) -> Plan:
    """
    Update catalog fields of a plan.

    Raises:
        NotFoundError: If the plan does not exist.
        ConflictError: If the change would leave two active plans on one tier.
    """
    unknown = set(changes) - _WRITABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown plan fields: {sorted(unknown)}")
    if "tier" in changes:
        changes["tier"] = int(SubscriptionTier.parse(changes["tier"]))

    try:
        with get_db_session() as session:
            row = session.execute(
                select(subscription_plans).where(subscription_plans.c.id == plan_id)
            ).first()
            if not row:
                raise NotFoundError(f"Plan {plan_id} not found")

            tier = changes.get("tier", row.tier)
            active = changes.get("is_active", row.is_active)
            if active:
                _ensure_tier_free(session, tier, exclude_plan_id=plan_id)

            session.execute(
                update(subscription_plans)
                .where(subscription_plans.c.id == plan_id)
                .values(updated_at=datetime.now(timezone.utc), **changes)
            )
    except IntegrityError:
        raise ConflictError("An active plan already exists for that tier")
    finally:
        invalidate_plan_cache()

    logger.info("[plans] plan updated", extra={"plan_id": plan_id, "fields": sorted(changes)})
    return get_plan(plan_id)
