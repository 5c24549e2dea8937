"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support (in-memory SQLite)
- Table definitions for plans, subscriptions and invoices
"""
from typing import Optional
from contextlib import contextmanager
from datetime import datetime, timezone
import logging
import os

from sqlalchemy import (
    create_engine,
    MetaData,
    Table,
    Column,
    Integer,
    String,
    DateTime,
    Boolean,
    Numeric,
    Text,
    Index,
    ForeignKey,
    text,
)
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func

from business_service.core.config import settings


logger = logging.getLogger("business_service.database")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if url.startswith("sqlite"):
        # One shared connection so an in-memory database survives across sessions
        _engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,
        )
    else:
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            echo=False,  # Set to True for SQL query logging
        )

    # Create session factory
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Commits when the block exits cleanly, rolls back on any exception.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


def drop_all_tables():
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    engine = get_engine()
    metadata.drop_all(bind=engine)


def reset_database():
    """
    Reset the database by dropping and recreating all tables.

    WARNING: This is destructive! Only use in tests.
    """
    drop_all_tables()
    create_all_tables()


def check_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("Database connection check failed: %s", e)
        return False


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime read from the database to an aware UTC value.

    SQLite hands back naive datetimes even for timezone-aware columns.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Businesses (lookup collaborator; profile CRUD lives elsewhere)
businesses = Table(
    'businesses',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('name', Text, nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Plan catalog
subscription_plans = Table(
    'subscription_plans',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('name', String(100), nullable=False),
    Column('tier', Integer, nullable=False, index=True),
    Column('description', Text, nullable=True),
    Column('monthly_price', Numeric(12, 2), nullable=False),
    Column('annual_price', Numeric(12, 2), nullable=False),
    Column('currency', String(3), nullable=False, default="NGN"),
    Column('monthly_reply_limit', Integer, nullable=False),  # -1 = unlimited
    Column('monthly_dispute_limit', Integer, nullable=False),
    Column('external_source_limit', Integer, nullable=False),
    Column('user_login_limit', Integer, nullable=False),
    Column('private_reviews_enabled', Boolean, nullable=False, default=False),
    Column('data_api_enabled', Boolean, nullable=False, default=False),
    Column('dnd_mode_enabled', Boolean, nullable=False, default=False),
    Column('auto_response_enabled', Boolean, nullable=False, default=False),
    Column('branch_comparison_enabled', Boolean, nullable=False, default=False),
    Column('competitor_comparison_enabled', Boolean, nullable=False, default=False),
    Column('is_active', Boolean, nullable=False, default=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# At most one active plan per tier
Index(
    'uq_subscription_plans_active_tier',
    subscription_plans.c.tier,
    unique=True,
    postgresql_where=text("is_active"),
    sqlite_where=text("is_active = 1"),
)

# Per-business subscriptions (history retained)
business_subscriptions = Table(
    'business_subscriptions',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('business_id', String(36), ForeignKey('businesses.id'), nullable=False),
    Column('plan_id', String(36), ForeignKey('subscription_plans.id'), nullable=False),
    Column('start_date', DateTime(timezone=True), nullable=False),
    Column('end_date', DateTime(timezone=True), nullable=False, index=True),
    Column('billing_date', DateTime(timezone=True), nullable=True),
    Column('is_annual', Boolean, nullable=False, default=False),
    Column('status', String(30), nullable=False, index=True),  # active, suspended, cancelled, expired, pending_payment
    Column('cancelled_at', DateTime(timezone=True), nullable=True),
    Column('cancellation_reason', Text, nullable=True),
    Column('replies_used_this_month', Integer, nullable=False, default=0),
    Column('disputes_used_this_month', Integer, nullable=False, default=0),
    Column('usage_reset_date', DateTime(timezone=True), nullable=False),
    Column('version', Integer, nullable=False, default=1),  # optimistic concurrency token
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('ix_business_subscriptions_business_status', 'business_id', 'status'),
)

# One row in status=active per business
Index(
    'uq_business_subscriptions_active_business',
    business_subscriptions.c.business_id,
    unique=True,
    postgresql_where=text("status = 'active'"),
    sqlite_where=text("status = 'active'"),
)

# Checkout invoices (append-only)
subscription_invoices = Table(
    'subscription_invoices',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('business_id', String(36), ForeignKey('businesses.id'), nullable=False, index=True),
    Column('plan_id', String(36), nullable=False),  # no FK: plan may be deleted later
    Column('is_annual', Boolean, nullable=False, default=False),
    Column('platform', String(50), nullable=False),
    Column('email', String(320), nullable=False),
    Column('reference', String(200), nullable=True, unique=True),
    Column('payment_url', Text, nullable=True),
    Column('status', String(20), nullable=False, default="unpaid"),  # unpaid, paid
    Column('currency', String(3), nullable=False),
    Column('base_amount', Numeric(12, 2), nullable=False),
    Column('fee_amount', Numeric(12, 2), nullable=False),
    Column('vat_amount', Numeric(12, 2), nullable=False),
    Column('total_amount', Numeric(12, 2), nullable=False),
    Column('created_at', DateTime(timezone=True), nullable=False),
)
