"""
Health and readiness endpoints.

Lightweight probes for operational monitoring; no secrets exposed.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import inspect

from business_service.core.database import check_connection, get_engine
from business_service.core.logging import latency_bucket_ms
from business_service.features.plans.service import verify_catalog

logger = logging.getLogger("business_service")

router = APIRouter(prefix="/api/health", tags=["health"])
root_router = APIRouter(tags=["health"])

REQUIRED_TABLES = [
    "businesses",
    "subscription_plans",
    "business_subscriptions",
    "subscription_invoices",
]


class DBHealth(BaseModel):
    connected: bool
    latency_bucket: Optional[str] = None
    tables_present: list[str] = []


class HealthResponse(BaseModel):
    ok: bool
    db: DBHealth
    catalog_ok: bool
    computed_at: str  # UTC ISO format


def _present_tables() -> list[str]:
    inspector = inspect(get_engine())
    return [t for t in REQUIRED_TABLES if inspector.has_table(t)]


@root_router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz():
    """Readiness check: DB connectivity, required tables and the default plan."""
    if not check_connection():
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})

    present = _present_tables()
    missing = [t for t in REQUIRED_TABLES if t not in present]
    if missing:
        detail = f"missing tables: {', '.join(missing)}"
        logger.warning(f"[readyz] {detail}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": detail})

    if not verify_catalog():
        return JSONResponse(status_code=503, content={"status": "error", "detail": "default plan missing"})

    return {"status": "ok"}


@router.get("/db", response_model=HealthResponse)
def health_db():
    """Database and catalog diagnostics."""
    start = time.perf_counter()
    connected = check_connection()
    tables = _present_tables() if connected else []

    latency = (time.perf_counter() - start) * 1000
    tables_ok = len(tables) == len(REQUIRED_TABLES)
    catalog_ok = verify_catalog() if connected and tables_ok else False
    return HealthResponse(
        ok=connected and tables_ok and catalog_ok,
        db=DBHealth(connected=connected, latency_bucket=latency_bucket_ms(latency), tables_present=tables),
        catalog_ok=catalog_ok,
        computed_at=datetime.now(timezone.utc).isoformat(),
    )
