import logging
from decimal import Decimal

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Paystack
    PAYSTACK_SECRET_KEY: Optional[str] = None
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"
    PAYSTACK_CALLBACK_URL: Optional[str] = None
    PAYMENT_GATEWAY_TIMEOUT_SECONDS: float = 15.0
    DEFAULT_PAYMENT_PLATFORM: str = "paystack"

    # Notification service
    NOTIFICATION_SERVICE_URL: Optional[str] = None
    NOTIFICATION_TIMEOUT_SECONDS: float = 10.0

    # Invoice charges
    INVOICE_DATE_FORMAT: str = "%d/%m/%Y"
    INVOICE_CHARGES_DESCRIPTION: str = "Paystack Transaction Fee - (1.5%)"
    INVOICE_CHARGES_PERCENTAGE: Decimal = Decimal("1.5")
    INVOICE_CHARGES_CAP: Decimal = Decimal("2000")
    INVOICE_VAT_PERCENTAGE: Decimal = Decimal("7.5")

    # Startup
    AUTO_CREATE_TABLES: bool = True
    SEED_DEFAULT_PLANS: bool = True

    # Plan catalog
    DEFAULT_PLAN_TIER: str = "basic"  # basic | premium | enterprise
    PLAN_CACHE_TTL_SECONDS: int = 300

    # Usage metering
    USAGE_UPDATE_MAX_RETRIES: int = 5

    # Lifecycle sweeper
    SWEEPER_INTERVAL_SECONDS: int = 3600

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("business_service")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "PAYSTACK_SECRET_KEY",
        "NOTIFICATION_SERVICE_URL",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
