"""Accounting integration settings: connection, account mappings, chart of accounts."""

import logging
import secrets
from datetime import datetime, timedelta
from urllib.parse import urlencode
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from gym_accounting.api.sync import get_adapter_factory, internal_error
from gym_accounting.core.auth import require_admin
from gym_accounting.core.config import get_settings
from gym_accounting.core.database import get_db
from gym_accounting.core.encryption import decrypt_token
from gym_accounting.core.errors import InvalidProviderError, ProviderError, TokenEncryptionError
from gym_accounting.models.database import AccountingIntegration, OAuthState
from gym_accounting.schemas.responses import (
    AccountMappingResponse,
    AccountMappingUpdate,
    ChartOfAccountsResponse,
    ConnectionResponse,
    ConnectRequest,
    ConnectResponse,
    DisconnectRequest,
    ExternalAccount,
)
from gym_accounting.services import store
from gym_accounting.services.categorizer import RevenueCategory
from gym_accounting.services.oauth import OAuthClient, store_tokens
from gym_accounting.services.providers import AdapterFactory
from gym_accounting.services.quickbooks import QuickBooksClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/accounting", tags=["accounting"])

OAUTH_STATE_TTL = timedelta(minutes=10)


def get_oauth_client() -> OAuthClient:
    """Dependency: OAuth token client built from settings."""
    return OAuthClient(get_settings())


def _check_provider(provider: str) -> str:
    if provider not in store.SUPPORTED_PROVIDERS:
        raise HTTPException(status_code=400, detail=str(InvalidProviderError(provider)))
    return provider


def _connection_response(provider: str, integration: AccountingIntegration | None) -> ConnectionResponse:
    if integration is None:
        return ConnectionResponse(provider=provider, status="disconnected", connected=False)
    return ConnectionResponse(
        provider=provider,
        status=integration.status,
        company_name=integration.company_name,
        connected=integration.status == "active",
        last_sync_at=integration.last_sync_at,
        last_sync_status=integration.last_sync_status,
        last_error=integration.last_error,
        auto_sync_enabled=integration.auto_sync_enabled,
    )


# Account mappings

@router.get("/mappings", response_model=list[AccountMappingResponse])
async def list_account_mappings(
    provider: str = Query(...),
    user_id: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Active account mappings for a provider."""
    _check_provider(provider)
    return await store.get_account_mappings(db, provider)


@router.put("/mappings/{provider}/{category}", response_model=AccountMappingResponse)
async def upsert_account_mapping(
    provider: str,
    category: str,
    body: AccountMappingUpdate,
    user_id: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Create or update the mapping for one revenue category."""
    _check_provider(provider)
    try:
        revenue_category = RevenueCategory(category)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown revenue category: {category}")

    mapping = await store.upsert_account_mapping(
        db,
        provider,
        revenue_category,
        external_account_id=body.external_account_id,
        external_account_name=body.external_account_name,
        external_account_code=body.external_account_code,
        is_active=body.is_active,
    )
    await db.commit()
    await db.refresh(mapping)
    logger.info(f"Mapped {provider} {category} -> {mapping.external_account_name}")
    return mapping


# Chart of accounts

@router.get("/accounts", response_model=ChartOfAccountsResponse)
async def chart_of_accounts(
    provider: str = Query(...),
    user_id: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    adapter_factory: AdapterFactory = Depends(get_adapter_factory),
):
    """Income and expense accounts available for mapping."""
    _check_provider(provider)

    integration = await store.get_integration(db, provider)
    if integration is None or integration.status != "active":
        raise HTTPException(status_code=404, detail=f"{provider} integration not found or not active")

    if provider == "xero":
        raise HTTPException(status_code=501, detail="Xero integration not yet implemented")

    adapter = adapter_factory(provider, db, integration, get_settings())
    try:
        accounts = await adapter.get_chart_of_accounts()
    except (ProviderError, TokenEncryptionError) as e:
        logger.error(f"[Accounts] {provider} error: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    except Exception as e:
        logger.exception(f"[Accounts] Error: {e}")
        return internal_error(e)
    finally:
        await adapter.close()

    # A token refresh may have updated the integration row
    await db.commit()

    return ChartOfAccountsResponse(
        provider=provider,
        accounts=[
            ExternalAccount(
                id=str(a["Id"]),
                name=a.get("Name", ""),
                type=a.get("AccountType"),
                sub_type=a.get("AccountSubType"),
                code=a.get("AcctNum"),
                active=a.get("Active", True),
            )
            for a in accounts
        ],
    )


# Connection management

@router.get("/connection", response_model=ConnectionResponse)
async def connection_status(
    provider: str = Query(...),
    user_id: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    _check_provider(provider)
    integration = await store.get_integration(db, provider)
    return _connection_response(provider, integration)


@router.post("/connect", response_model=ConnectResponse)
async def connect(
    body: ConnectRequest,
    user_id: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    oauth: OAuthClient = Depends(get_oauth_client),
):
    """Start the OAuth flow; the admin is redirected to `authorizationUrl`."""
    state = secrets.token_hex(32)
    try:
        authorization_url = oauth.authorization_url(body.provider, state)
    except ProviderError as e:
        raise HTTPException(status_code=500, detail=str(e))

    db.add(OAuthState(
        state=state,
        provider=body.provider,
        user_id=user_id,
        redirect_url=body.redirect_url,
        created_at=datetime.utcnow(),
    ))
    await db.commit()

    logger.info(f"[OAuth] Issued {body.provider} authorization URL for user {user_id}")
    return ConnectResponse(authorization_url=authorization_url, state=state, provider=body.provider)


def _redirect(url: str, **params) -> RedirectResponse:
    separator = "&" if "?" in url else "?"
    return RedirectResponse(url=f"{url}{separator}{urlencode(params)}", status_code=302)


@router.get("/callback")
async def oauth_callback(
    state: str | None = None,
    code: str | None = None,
    realm_id: str | None = Query(None, alias="realmId"),
    error: str | None = None,
    db: AsyncSession = Depends(get_db),
    oauth: OAuthClient = Depends(get_oauth_client),
):
    """OAuth redirect target: exchange the code and store encrypted tokens."""
    if not state:
        raise HTTPException(status_code=400, detail="Missing state parameter")

    oauth_state = await db.get(OAuthState, state)
    if oauth_state is None or datetime.utcnow() - oauth_state.created_at > OAUTH_STATE_TTL:
        raise HTTPException(status_code=400, detail="Invalid or expired state")

    provider = oauth_state.provider
    redirect_url = oauth_state.redirect_url
    await db.execute(delete(OAuthState).where(OAuthState.state == state))
    await db.commit()

    if error or not code:
        logger.warning(f"[OAuth] {provider} authorization failed: {error or 'missing code'}")
        return _redirect(redirect_url, error=error or "missing_code", provider=provider)

    if provider == "quickbooks" and not realm_id:
        return _redirect(redirect_url, error="missing_realm_id", provider=provider)

    settings = get_settings()
    try:
        tokens = await oauth.exchange_code(provider, code)
        if provider == "quickbooks":
            qb = QuickBooksClient(tokens.access_token, realm_id, settings.quickbooks_environment)
            try:
                company_name = await qb.get_company_name()
            finally:
                await qb.close()
            tenant_id = None
        else:
            tenant = await oauth.get_xero_tenant(tokens.access_token)
            company_name = tenant.get("tenantName") or "Unknown Company"
            tenant_id = tenant.get("tenantId")

        integration = await store.get_integration(db, provider)
        if integration is None:
            integration = AccountingIntegration(provider=provider)
            db.add(integration)

        store_tokens(integration, tokens, settings.accounting_encryption_key)
        integration.realm_id = realm_id if provider == "quickbooks" else None
        integration.tenant_id = tenant_id
        integration.company_name = company_name
        integration.status = "active"
        integration.last_error = None
        await db.commit()
    except (ProviderError, TokenEncryptionError) as e:
        logger.error(f"[OAuth] {provider} callback failed: {e}")
        await db.rollback()
        return _redirect(redirect_url, error="token_exchange_failed", provider=provider)
    finally:
        await oauth.close()

    logger.info(f"[OAuth] Connected {provider} ({company_name})")
    return _redirect(redirect_url, success="true", provider=provider)


@router.post("/disconnect", response_model=ConnectionResponse)
async def disconnect(
    body: DisconnectRequest,
    user_id: str = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    oauth: OAuthClient = Depends(get_oauth_client),
):
    """Revoke tokens (best effort) and mark the integration disconnected."""
    integration = await store.get_integration(db, body.provider)
    if integration is None:
        raise HTTPException(status_code=404, detail=f"{body.provider} integration not found")

    # QuickBooks revokes by refresh token, Xero by access token
    if body.provider == "quickbooks":
        encrypted, revoke = integration.refresh_token_encrypted, oauth.revoke_quickbooks
    else:
        encrypted, revoke = integration.access_token_encrypted, oauth.revoke_xero
    if encrypted:
        try:
            token = decrypt_token(encrypted, get_settings().accounting_encryption_key)
        except TokenEncryptionError as e:
            logger.warning(f"Could not decrypt {body.provider} token for revocation: {e}")
        else:
            await revoke(token)
    await oauth.close()

    integration.access_token_encrypted = None
    integration.refresh_token_encrypted = None
    integration.token_expires_at = None
    integration.status = "disconnected"
    integration.updated_at = datetime.utcnow()
    await db.commit()

    logger.info(f"[OAuth] Disconnected {body.provider} by user {user_id}")
    return _connection_response(body.provider, integration)
