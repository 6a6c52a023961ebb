"""
Application configuration using pydantic-settings.
Loads from environment variables / .env file.
"""

from functools import lru_cache
from typing import List, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "kmedia-payments"
    app_env: Literal["development", "staging", "production", "test"] = "development"
    debug: bool = False

    # API Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Postgres
    database_url: str = ""

    # Redis (Celery broker / result backend)
    redis_url: str = "redis://localhost:6379/0"

    # Paystack
    paystack_secret_key: str = ""
    paystack_base_url: str = "https://api.paystack.co"
    paystack_timeout_seconds: float = 15.0
    paystack_channels: List[str] = [
        "card",
        "bank",
        "ussd",
        "qr",
        "mobile_money",
        "bank_transfer",
    ]

    # Payments
    default_currency: str = "GHS"
    payment_reference_prefix: str = "KM_MEDIA"
    payment_callback_url: str = "http://localhost:3000/payment/callback"
    gateway_metadata_max_bytes: int = 16384

    # Reconciliation re-drive
    reconciliation_batch_size: int = 50

    # Admin
    admin_api_key: str = ""

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
