"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

import logging
from typing import Any, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


# Billing defaults, also used when a configured value is unusable
DEFAULT_FREE_TIER_GB = 5.0
DEFAULT_COST_PER_GB_USD = 0.40
DEFAULT_USD_TO_INR_RATE = 83.0
DEFAULT_MIN_CHARGE_INR = 1.0
DEFAULT_BILLING_CYCLE_DAYS = 30

_BILLING_DEFAULTS = {
    "FREE_TIER_GB": DEFAULT_FREE_TIER_GB,
    "COST_PER_GB_USD": DEFAULT_COST_PER_GB_USD,
    "USD_TO_INR_RATE": DEFAULT_USD_TO_INR_RATE,
    "MIN_CHARGE_INR": DEFAULT_MIN_CHARGE_INR,
    "BILLING_CYCLE_DAYS": DEFAULT_BILLING_CYCLE_DAYS,
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "Walt"
    VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/walt.db"

    # Storage quota
    DEFAULT_STORAGE_LIMIT_BYTES: int = 10 * 1024 * 1024 * 1024

    # IPFS node (Kubo HTTP RPC)
    IPFS_API_URL: str = "http://127.0.0.1:5001"
    IPFS_TIMEOUT_SECONDS: float = 60.0

    # Billing
    FREE_TIER_GB: float = DEFAULT_FREE_TIER_GB
    COST_PER_GB_USD: float = DEFAULT_COST_PER_GB_USD
    USD_TO_INR_RATE: float = DEFAULT_USD_TO_INR_RATE
    MIN_CHARGE_INR: float = DEFAULT_MIN_CHARGE_INR
    BILLING_CYCLE_DAYS: int = DEFAULT_BILLING_CYCLE_DAYS
    BILLING_CURRENCY: str = "INR"

    # Cashfree payment gateway
    CASHFREE_CLIENT_ID: str = ""
    CASHFREE_CLIENT_SECRET: str = ""
    CASHFREE_ENVIRONMENT: str = "SANDBOX"  # SANDBOX or PRODUCTION
    CASHFREE_API_VERSION: str = "2023-08-01"
    PAYMENT_HTTP_TIMEOUT_SECONDS: float = 30.0
    WEBHOOK_TOLERANCE_SECONDS: int = 600
    DEFAULT_CUSTOMER_PHONE: str = "9999999999"

    # Checkout redirect / notification endpoints
    FRONTEND_URL: str = "http://localhost:3000"
    BACKEND_URL: str = "http://localhost:8000"

    # Payment status polling after checkout
    PAYMENT_POLL_INTERVAL_SECONDS: float = 5.0
    PAYMENT_POLL_MAX_ATTEMPTS: int = 60

    # Identity provider tokens
    AUTH_JWT_SECRET: str = ""
    AUTH_JWT_ALGORITHMS: list[str] = ["HS256"]
    AUTH_JWT_AUDIENCE: Optional[str] = None
    AUTH_JWT_ISSUER: Optional[str] = None

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"

    @field_validator(*_BILLING_DEFAULTS.keys(), mode="before")
    @classmethod
    def _fallback_on_unparseable(cls, value: Any, info) -> Any:
        """Replace unparseable billing numbers with their defaults."""
        default = _BILLING_DEFAULTS[info.field_name]
        cast = int if isinstance(default, int) else float
        try:
            cast(value)
        except (TypeError, ValueError):
            logger.warning(
                f"Invalid value {value!r} for {info.field_name}, using default {default}"
            )
            return default
        return value

    @property
    def cashfree_is_sandbox(self) -> bool:
        return self.CASHFREE_ENVIRONMENT.upper() != "PRODUCTION"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
