# business_service/conftest.py
import os
from datetime import datetime, timezone

import pytest

# Point the engine at in-memory SQLite before anything imports the database module.
os.environ.setdefault("TEST_DATABASE_URL", "sqlite://")


@pytest.fixture(autouse=True)
def reset_db():
    """
    Fresh schema and an empty plan cache for every test.
    """
    from business_service.core.database import reset_database
    from business_service.features.plans.service import invalidate_plan_cache

    reset_database()
    invalidate_plan_cache()
    yield
    invalidate_plan_cache()


@pytest.fixture
def now():
    """Fixed clock for deterministic lifecycle and rollover tests."""
    return datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def plans():
    """Seeded default catalog, keyed by tier."""
    from business_service.features.plans.service import seed_plans, get_plan_by_tier
    from business_service.models.plan import SubscriptionTier

    seed_plans()
    return {tier: get_plan_by_tier(tier) for tier in SubscriptionTier}


@pytest.fixture
def business():
    from business_service.features.businesses.service import create_business

    return create_business("Mama Put Kitchen", business_id="biz_alpha")


@pytest.fixture
def other_business():
    from business_service.features.businesses.service import create_business

    return create_business("Lekki Laundry", business_id="biz_beta")
