from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Local Marketplace Settlement"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Operator key for admin endpoints (reconciliation, ledger audit)
    ADMIN_API_KEY: str = ""

    # Razorpay Payment Gateway
    RAZORPAY_KEY_ID: str = ""  # Razorpay Key ID
    RAZORPAY_KEY_SECRET: str = ""  # Razorpay Key Secret
    RAZORPAY_WEBHOOK_SECRET: Optional[str] = None  # For webhook verification
    BASE_CURRENCY: str = "GBP"

    # Commission
    PLATFORM_COMMISSION_RATE: float = 0.10  # Used when tier data is unavailable
    COMMISSION_TIERS: list[dict] = []  # Empty -> built-in schedule
    COMMISSION_TIERS_VERSION: str = "2025-01"
    TURNOVER_WINDOW_DAYS: int = 30  # Rolling turnover window

    # Rewards
    CASHBACK_RATE: float = 0.01  # 1% of the settled amount

    # Notification outbox
    NOTIFICATION_WEBHOOK_URL: Optional[str] = None  # Logged only when unset
    NOTIFICATION_TIMEOUT_SECONDS: float = 10.0
    OUTBOX_DISPATCH_INTERVAL_SECONDS: int = 30
    OUTBOX_BATCH_SIZE: int = 50
    OUTBOX_MAX_ATTEMPTS: int = 5

    # Pending payment reconciliation
    PENDING_PAYMENT_CHECK_INTERVAL_MINUTES: int = 10
    PENDING_PAYMENT_MIN_AGE_MINUTES: int = 5

    SCHEDULER_ENABLED: bool = True

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @field_validator('COMMISSION_TIERS', mode='before')
    @classmethod
    def parse_commission_tiers(cls, v):
        if isinstance(v, str):
            if not v.strip():
                return []
            return json.loads(v)
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
