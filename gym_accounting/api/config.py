from fastapi import APIRouter, Depends
from pydantic import BaseModel

from gym_accounting.core.auth import require_admin
from gym_accounting.core.config import get_settings

router = APIRouter(prefix="/api", tags=["config"])


class HealthResponse(BaseModel):
    status: str
    version: str


class ConfigResponse(BaseModel):
    quickbooks_environment: str
    quickbooks_configured: bool
    xero_configured: bool
    encryption_configured: bool
    default_sync_limit: int
    auto_sync_enabled: bool
    auto_sync_interval_minutes: int
    debug: bool


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="ok", version="0.1.0")


@router.get("/config", response_model=ConfigResponse)
async def get_config(user_id: str = Depends(require_admin)) -> ConfigResponse:
    """Get current configuration (secrets reported only as present or absent)."""
    settings = get_settings()
    return ConfigResponse(
        quickbooks_environment=settings.quickbooks_environment,
        quickbooks_configured=bool(settings.quickbooks_client_id and settings.quickbooks_client_secret),
        xero_configured=bool(settings.xero_client_id and settings.xero_client_secret),
        encryption_configured=bool(settings.accounting_encryption_key),
        default_sync_limit=settings.default_sync_limit,
        auto_sync_enabled=settings.auto_sync_enabled,
        auto_sync_interval_minutes=settings.auto_sync_interval_minutes,
        debug=settings.debug,
    )
