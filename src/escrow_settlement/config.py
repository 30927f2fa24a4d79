"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup; if a setting is malformed the app fails fast with a clear error
message.

Usage:
    from escrow_settlement.config import get_settings
    settings = get_settings()
    print(settings.database_url)
"""

from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the settlement engine."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database (PostgreSQL) ---
    database_url: str = (
        "postgresql+asyncpg://settlement:settlement_dev"
        "@localhost:5432/escrow_settlement"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Payment gateway ---
    # "simulated" issues fake links locally; "cashfree" calls the hosted API.
    gateway_mode: Literal["simulated", "cashfree"] = "simulated"
    gateway_api_url: str = "https://sandbox.cashfree.com/pg"
    gateway_api_version: str = "2022-09-01"
    gateway_client_id: str = ""
    gateway_client_secret: str = ""
    gateway_timeout_seconds: float = 10.0
    gateway_max_attempts: int = 3
    gateway_return_url: str = "http://localhost:3000/payments/success"

    # --- Webhooks ---
    webhook_secret: str = "dev-webhook-secret-not-for-production"
    webhook_signature_header: str = "X-Webhook-Signature"

    # --- Money ---
    currency: str = "INR"
    # Under 50 the net credit of a 1-unit payment stays positive.
    platform_fee_percent: Decimal = Field(default=Decimal("10"), ge=0, lt=50)
    default_split_policy: dict[str, int] = Field(
        default_factory=lambda: {"upfront": 50, "completion": 50}
    )

    # --- Payments ---
    payment_link_expiry_minutes: int = 60 * 24
    auto_request_upfront_payment: bool = True

    # --- Payouts ---
    payout_minimum_amount: int = 50

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
