from typing import Dict, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

from common.core.constants import (
    Environment,
    LockProviderType,
    TaxProviderType,
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Environment Profile
    environment: Environment = Environment.LOCAL

    # API Settings
    app_name: str = "billing-core"
    api_version: str = "v1"
    debug: bool = False

    # Database Components
    db_user: str = "billing"
    db_password: str = "billing"
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "billing"
    db_use_nullpool: bool = (
        False  # True for workers (sequential), False for API (concurrent)
    )
    db_pool_size: int = 10
    db_pool_overflow: int = 5

    @property
    def database_url(self) -> str:
        """Construct database URL from components."""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    # Redis
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0

    @property
    def redis_connection_url(self) -> str:
        """Construct Redis URL from components."""
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        else:
            return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # Locking
    lock_provider: LockProviderType = LockProviderType.REDIS
    subscription_lock_ttl_seconds: int = 300

    # OpenTelemetry
    otel_service_name: str = "billing-core"
    otel_service_version: str = "0.1.0"

    # Axiom (exporters are only attached when a token is configured)
    axiom_token: Optional[str] = None
    axiom_dataset: Optional[str] = None

    # Stripe
    stripe_secret_key: str = ""
    stripe_publishable_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_currency: str = "usd"

    # Tax
    tax_provider: TaxProviderType = TaxProviderType.FLAT_RATE
    tax_default_rate_bps: int = 0  # Basis points, 1900 = 19%
    tax_jurisdiction_rates_bps: Dict[str, int] = {}

    # Retry policies per failure class: max attempts, base delay, multiplier, fallback
    retry_insufficient_funds_max_attempts: int = 3
    retry_insufficient_funds_base_delay_seconds: int = 3600
    retry_insufficient_funds_backoff_multiplier: float = 2.0
    retry_insufficient_funds_fallback_enabled: bool = True

    retry_network_error_max_attempts: int = 4
    retry_network_error_base_delay_seconds: int = 60
    retry_network_error_backoff_multiplier: float = 2.0
    retry_network_error_fallback_enabled: bool = False

    retry_generic_max_attempts: int = 2
    retry_generic_base_delay_seconds: int = 86400
    retry_generic_backoff_multiplier: float = 1.0
    retry_generic_fallback_enabled: bool = True

    retry_card_expired_fallback_enabled: bool = True

    # Dunning
    dunning_max_attempts: int = 3
    dunning_exhausted_status: str = "unpaid"  # unpaid or cancelled

    # Invoicing
    invoice_persist_attempts: int = 3
    usage_overflow_policy: str = "extend_last_tier"  # extend_last_tier or reject

    # Scheduler
    billing_scheduler_interval_seconds: int = 300
    billing_max_concurrency: int = 10

    # Environment-aware properties
    @property
    def cors_allowed_origins(self) -> list[str]:
        """Auto-select CORS origins based on environment."""
        if self.environment == Environment.LOCAL:
            return [
                "http://localhost:3000",
                "http://localhost:3001",
            ]
        return []


settings = Settings()
