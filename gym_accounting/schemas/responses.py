"""Pydantic request/response models for the accounting endpoints.

JSON bodies use camelCase keys, matching the admin dashboard client.
"""

from datetime import datetime
from typing import Any, Literal
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class ManualSyncRequest(CamelModel):
    """Body of POST /api/accounting/sync/manual."""
    provider: Literal["quickbooks", "xero"]
    limit: int | None = Field(default=None, ge=1, le=1000)


class SyncErrorEntry(CamelModel):
    payment_id: str
    error: str


class SyncSummaryResponse(CamelModel):
    sync_log_id: str
    status: str
    attempted: int
    succeeded: int
    failed: int
    errors: list[SyncErrorEntry]
    message: str | None = None


class SyncStatusResponse(CamelModel):
    """A sync log with failure detail."""
    sync_log_id: str
    provider: str
    sync_type: str
    status: str
    started_at: datetime
    completed_at: datetime | None
    duration_seconds: int | None
    attempted: int
    succeeded: int
    failed: int
    error_message: str | None
    error_details: list[SyncErrorEntry] | None
    triggered_by: str | None


class AccountMappingResponse(CamelModel):
    provider: str
    revenue_category: str
    external_account_id: str
    external_account_name: str
    external_account_code: str | None
    is_active: bool


class AccountMappingUpdate(CamelModel):
    external_account_id: str = Field(min_length=1)
    external_account_name: str = Field(min_length=1)
    external_account_code: str | None = None
    is_active: bool = True


class ExternalAccount(CamelModel):
    id: str
    name: str
    type: str | None
    sub_type: str | None
    code: str | None
    active: bool


class ChartOfAccountsResponse(CamelModel):
    provider: str
    accounts: list[ExternalAccount]


class ConnectRequest(CamelModel):
    provider: Literal["quickbooks", "xero"]
    redirect_url: str = Field(min_length=1)


class ConnectResponse(CamelModel):
    authorization_url: str
    state: str
    provider: str


class DisconnectRequest(CamelModel):
    provider: Literal["quickbooks", "xero"]


class ConnectionResponse(CamelModel):
    """Integration status; tokens are never returned."""
    provider: str
    status: str
    company_name: str | None = None
    connected: bool
    last_sync_at: datetime | None = None
    last_sync_status: str | None = None
    last_error: str | None = None
    auto_sync_enabled: bool | None = None


class ErrorResponse(BaseModel):
    error: str
    details: Any = None
