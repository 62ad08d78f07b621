from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Database
    database_url: str = "sqlite+aiosqlite:////data/gym_accounting.db"

    # Hosted auth service (bearer tokens are resolved against it)
    supabase_url: str = "http://localhost:54321"
    supabase_service_key: str = ""

    # QuickBooks OAuth app
    quickbooks_client_id: str = ""
    quickbooks_client_secret: str = ""
    quickbooks_environment: str = "sandbox"  # "sandbox" or "production"
    quickbooks_redirect_uri: str = ""

    # Xero OAuth app
    xero_client_id: str = ""
    xero_client_secret: str = ""
    xero_redirect_uri: str = ""

    # 64 hex chars (32 bytes), used to encrypt stored OAuth tokens
    accounting_encryption_key: str = ""

    # Sync behaviour
    default_sync_limit: int = 100
    sync_claim_timeout_minutes: int = 15
    auto_sync_enabled: bool = False
    auto_sync_interval_minutes: int = 60

    # Optional settings
    expose_error_details: bool = True
    log_level: str = "INFO"
    debug: bool = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
