"""Accounting sync API endpoints."""

import logging
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from gym_accounting.core.auth import require_admin
from gym_accounting.core.config import get_settings
from gym_accounting.core.database import get_db
from gym_accounting.core.errors import InvalidProviderError, SyncValidationError
from gym_accounting.models.sync_log import SyncLog
from gym_accounting.schemas.responses import (
    ErrorResponse,
    ManualSyncRequest,
    SyncErrorEntry,
    SyncStatusResponse,
    SyncSummaryResponse,
)
from gym_accounting.services import store
from gym_accounting.services.providers import AdapterFactory, build_adapter
from gym_accounting.services.sync import AccountingSyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/accounting/sync", tags=["sync"])


def get_adapter_factory() -> AdapterFactory:
    """Dependency: builds the provider adapter for a sync."""
    return build_adapter


def internal_error(e: Exception) -> JSONResponse:
    settings = get_settings()
    body = ErrorResponse(
        error="Internal server error",
        details=str(e) if settings.expose_error_details else None,
    )
    return JSONResponse(status_code=500, content=body.model_dump())


def _status_response(sync_log: SyncLog) -> SyncStatusResponse:
    error_details = None
    if sync_log.transactions_failed > 0:
        error_details = [
            SyncErrorEntry(payment_id=d["payment_id"], error=d["error"])
            for d in (sync_log.error_details or [])
        ]

    return SyncStatusResponse(
        sync_log_id=sync_log.id,
        provider=sync_log.provider,
        sync_type=sync_log.sync_type,
        status=sync_log.status,
        started_at=sync_log.started_at,
        completed_at=sync_log.completed_at,
        duration_seconds=sync_log.duration_seconds,
        attempted=sync_log.transactions_attempted,
        succeeded=sync_log.transactions_succeeded,
        failed=sync_log.transactions_failed,
        error_message=sync_log.error_message,
        error_details=error_details,
        triggered_by=sync_log.triggered_by,
    )


async def _parse_manual_request(request: Request) -> ManualSyncRequest:
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be JSON")

    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")

    try:
        return ManualSyncRequest.model_validate(body)
    except ValidationError as e:
        if any(err["loc"][:1] == ("provider",) for err in e.errors()):
            raise HTTPException(status_code=400, detail=str(InvalidProviderError(body.get("provider"))))
        raise HTTPException(status_code=400, detail="limit must be an integer between 1 and 1000")


@router.post("/manual", response_model=SyncSummaryResponse, response_model_exclude_none=True)
async def manual_sync(
    request: Request,
    user_id: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    adapter_factory: AdapterFactory = Depends(get_adapter_factory),
):
    """
    Sync unsynced payments to QuickBooks or Xero.

    Body: {"provider": "quickbooks" | "xero", "limit": int (optional)}.
    Failed payments are listed in `errors`; they do not fail the request.
    """
    sync_request = await _parse_manual_request(request)

    service = AccountingSyncService(db, get_settings(), adapter_factory)
    try:
        summary = await service.run_sync(
            sync_request.provider,
            limit=sync_request.limit,
            sync_type="manual",
            triggered_by=user_id,
        )
    except SyncValidationError as e:
        logger.info(f"[Sync] Rejected manual sync: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception(f"[Sync] Fatal error: {e}")
        await db.rollback()
        return internal_error(e)

    return summary.to_dict()


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(
    sync_log_id: str | None = Query(None, alias="syncLogId"),
    user_id: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Status and failure detail of one sync run."""
    if not sync_log_id or not sync_log_id.strip():
        raise HTTPException(status_code=400, detail="Missing or invalid syncLogId parameter")

    sync_log = await store.get_sync_log(db, sync_log_id)
    if sync_log is None:
        raise HTTPException(status_code=404, detail="Sync log not found")

    return _status_response(sync_log)


@router.get("/logs", response_model=list[SyncStatusResponse])
async def sync_logs(
    provider: str | None = None,
    limit: int = Query(20, ge=1, le=100),
    user_id: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Recent sync runs, newest first."""
    if provider is not None and provider not in store.SUPPORTED_PROVIDERS:
        raise HTTPException(status_code=400, detail=str(InvalidProviderError(provider)))

    logs = await store.list_sync_logs(db, provider, limit)
    return [_status_response(log) for log in logs]
