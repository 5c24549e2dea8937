"""
Business lookups.

Profile management lives in another service; subscriptions only need to know
whether a business exists.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, insert

from business_service.core.database import get_db_session, businesses, as_utc


def get_business(business_id: str) -> Optional[dict]:
    """Return the business as a dict, or None when absent."""
    with get_db_session() as session:
        row = session.execute(
            select(businesses).where(businesses.c.id == business_id)
        ).first()
    if not row:
        return None
    return {"id": row.id, "name": row.name, "created_at": as_utc(row.created_at)}


def create_business(name: str, business_id: Optional[str] = None) -> dict:
    """Register a business record (used by provisioning and tests)."""
    business_id = business_id or str(uuid.uuid4())
    now = datetime.now(timezone.utc)
    with get_db_session() as session:
        session.execute(insert(businesses).values(id=business_id, name=name, created_at=now))
    return {"id": business_id, "name": name, "created_at": now}
