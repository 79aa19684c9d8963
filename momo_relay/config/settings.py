"""Application settings using Pydantic for environment-based configuration."""
from decimal import Decimal
from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # FusionPay Configuration
    fusionpay_api_base_url: str = Field(
        default="https://www.pay.moneyfusion.net/api/v1/",
        description="FusionPay pay-in API base URL",
    )
    public_api_base_url: str = Field(
        default="http://localhost:8000",
        description="Public base URL of this service, used to build the webhook URL",
    )
    gateway_timeout_seconds: float = Field(
        default=45.0, gt=0, description="Timeout for a single gateway request (seconds)"
    )
    product_name: str = Field(
        default="Commande", description="Article name sent to the gateway"
    )

    # Webhook Processing
    webhook_resolve_attempts: int = Field(
        default=2, ge=1, description="Lookups of a webhook token before giving up"
    )
    webhook_resolve_delay_seconds: float = Field(
        default=3.0, ge=0, description="Fixed delay between token lookups (seconds)"
    )

    # Payment Validation
    min_payment_amount: Decimal = Field(
        default=Decimal("200"), description="Amounts must be strictly greater than this"
    )
    min_phone_digits: int = Field(default=8, description="Minimum digits in a phone number")
    pending_transactions_limit: int = Field(
        default=50, description="Max rows returned by the pending transactions listing"
    )

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./momo_relay.db",
        description="Async SQLAlchemy database URL",
    )
    database_pool_size: int = Field(default=20, description="Database connection pool size")
    database_max_overflow: int = Field(default=50, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Application Configuration
    app_name: str = Field(default="momo-relay", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_workers: int = Field(default=4, description="Number of API workers")
    allowed_origins: str = Field(
        default="https://checkout.shopify.com",
        description="CORS allowed origins (comma-separated)",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("public_api_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def webhook_url(self) -> str:
        """URL the gateway posts notifications to."""
        return f"{self.public_api_base_url}/api/webhook/fusionpay"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
