"""Application configuration using pydantic-settings."""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Supabase API Keys
    supabase_url: str
    supabase_secret_key: str  # For GoTrue auth operations
    supabase_publishable_key: str  # Anon/publishable key for client requests
    supabase_service_role_key: str  # Bypasses RLS, used by cron jobs

    # Plaid
    plaid_client_id: str | None = None
    plaid_secret: str | None = None
    plaid_env: str = "sandbox"  # sandbox, development, production

    # Tink
    tink_client_id: str | None = None
    tink_client_secret: str | None = None
    tink_api_url: str = "https://api.tink.com"

    # SimpleFin (optional, for development/testing only)
    simplefin_access_url: str | None = None  # Pre-claimed access URL for dev/test

    # App
    app_name: str = "LedgerSync"
    app_env: str = "development"
    debug: bool = True

    # Logging
    log_level: str = "INFO"  # Console level; app.log always gets DEBUG
    log_dir: str = "logs"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # API
    api_v1_prefix: str = "/api/v1"

    # Encryption
    encryption_key: str  # Fernet key for provider credentials

    # Outbound provider calls
    provider_timeout_seconds: float = 30.0
    provider_max_concurrent_requests: int = 4

    # Connection health policy
    health_weight_30d: float = 0.30
    health_weight_7d: float = 0.70
    health_failure_penalty: float = 0.05
    health_failure_penalty_cap: int = 5
    health_error_threshold: int = 3  # Consecutive failures that force status=error

    # Backfill window per account type (days)
    backfill_days_checking: int = 90
    backfill_days_savings: int = 180
    backfill_days_credit: int = 365
    backfill_days_loan: int = 365
    backfill_days_investment: int = 180
    backfill_days_default: int = 90

    # Cron Jobs
    enable_cron_jobs: bool = True  # Enable/disable scheduled background tasks
    sync_interval_hours: int = 24
    sync_max_concurrent_jobs: int = 4

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
