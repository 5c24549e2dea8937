import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from dotenv import load_dotenv

if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

# Import after dotenv is loaded
from business_service.core.config import settings, validate_config
from business_service.core.logging import configure_logging
from business_service.core.middleware.request_id import RequestIdMiddleware
from business_service.core.background import drain
from business_service.core.database import create_all_tables
from business_service.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from business_service.api import health, invoices, subscriptions
from business_service.features.plans.service import seed_plans, verify_catalog

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("business_service")
    logger.info("Starting business subscription service...")
    app.state.startup_time = time.time()

    if settings.AUTO_CREATE_TABLES:
        create_all_tables()
    if settings.SEED_DEFAULT_PLANS:
        seed_plans()
    if not verify_catalog():
        logger.critical("[startup] default plan missing; entitlement checks will fail until the catalog is fixed")
        if settings.CONFIG_STRICT:
            raise RuntimeError("Default plan missing from catalog")

    try:
        yield
    finally:
        await drain(timeout=settings.NOTIFICATION_TIMEOUT_SECONDS)
        logger.info("Stopping business subscription service...")


app = FastAPI(title="Business Subscription Service", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(subscriptions.router)
app.include_router(invoices.router)
app.include_router(health.router)
app.include_router(health.root_router)
