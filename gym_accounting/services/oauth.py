"""OAuth 2.0 flows for QuickBooks and Xero.

Covers authorization URLs, code exchange, token refresh and revocation, and
storing tokens encrypted on the integration row.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional
from urllib.parse import urlencode
import httpx

from gym_accounting.core.config import Settings
from gym_accounting.core.encryption import decrypt_token, encrypt_token
from gym_accounting.core.errors import ProviderError
from gym_accounting.models.database import AccountingIntegration

logger = logging.getLogger(__name__)

QUICKBOOKS_AUTH_URL = "https://appcenter.intuit.com/connect/oauth2"
QUICKBOOKS_TOKEN_URL = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
QUICKBOOKS_REVOKE_URL = "https://developer.api.intuit.com/v2/oauth2/tokens/revoke"
QUICKBOOKS_SCOPE = "com.intuit.quickbooks.accounting"

XERO_AUTH_URL = "https://login.xero.com/identity/connect/authorize"
XERO_TOKEN_URL = "https://identity.xero.com/connect/token"
XERO_CONNECTIONS_URL = "https://api.xero.com/connections"
XERO_REVOKE_URL = "https://identity.xero.com/connect/revocation"
XERO_SCOPE = "offline_access accounting.transactions accounting.settings"

# Refresh access tokens that expire within this window
REFRESH_MARGIN = timedelta(minutes=5)


@dataclass
class OAuthTokens:
    access_token: str
    refresh_token: str
    expires_in: int  # seconds

    @property
    def expires_at(self) -> datetime:
        return datetime.utcnow() + timedelta(seconds=self.expires_in)


class OAuthClient:
    """Token endpoint client for both accounting providers."""

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self.client is None:
            self.client = httpx.AsyncClient(timeout=30.0)
        return self.client

    async def close(self):
        if self.client:
            await self.client.aclose()
            self.client = None

    def _credentials(self, provider: str) -> tuple[str, str]:
        if provider == "quickbooks":
            client_id, secret = self.settings.quickbooks_client_id, self.settings.quickbooks_client_secret
        else:
            client_id, secret = self.settings.xero_client_id, self.settings.xero_client_secret
        if not client_id or not secret:
            raise ProviderError(f"{provider} OAuth credentials not configured")
        return client_id, secret

    def redirect_uri(self, provider: str) -> str:
        if provider == "quickbooks":
            return self.settings.quickbooks_redirect_uri
        return self.settings.xero_redirect_uri

    def authorization_url(self, provider: str, state: str) -> str:
        """URL the admin is sent to in order to grant access."""
        client_id, _ = self._credentials(provider)
        params = {
            "client_id": client_id,
            "redirect_uri": self.redirect_uri(provider),
            "response_type": "code",
            "scope": QUICKBOOKS_SCOPE if provider == "quickbooks" else XERO_SCOPE,
            "state": state,
        }
        base = QUICKBOOKS_AUTH_URL if provider == "quickbooks" else XERO_AUTH_URL
        return f"{base}?{urlencode(params)}"

    async def _token_request(self, provider: str, data: dict[str, str]) -> OAuthTokens:
        client = await self._get_client()
        url = QUICKBOOKS_TOKEN_URL if provider == "quickbooks" else XERO_TOKEN_URL
        try:
            response = await client.post(
                url,
                data=data,
                auth=self._credentials(provider),
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"{provider} token request failed: HTTP {e.response.status_code} {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"{provider} token request failed: {e}") from e

        body = response.json()
        return OAuthTokens(
            access_token=body["access_token"],
            refresh_token=body["refresh_token"],
            expires_in=int(body.get("expires_in", 3600)),
        )

    async def exchange_code(self, provider: str, code: str) -> OAuthTokens:
        return await self._token_request(provider, {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri(provider),
        })

    async def refresh(self, provider: str, refresh_token: str) -> OAuthTokens:
        return await self._token_request(provider, {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })

    async def revoke_quickbooks(self, refresh_token: str) -> bool:
        """Revoke a QuickBooks refresh token. Failures are logged, not raised."""
        try:
            client = await self._get_client()
            response = await client.post(
                QUICKBOOKS_REVOKE_URL,
                json={"token": refresh_token},
                auth=self._credentials("quickbooks"),
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            return True
        except (httpx.HTTPError, ProviderError) as e:
            logger.warning(f"QuickBooks token revocation failed: {e}")
            return False

    async def revoke_xero(self, access_token: str) -> bool:
        """Revoke a Xero token. Failures are logged, not raised."""
        try:
            client = await self._get_client()
            response = await client.post(
                XERO_REVOKE_URL,
                data={"token": access_token},
                auth=self._credentials("xero"),
            )
            response.raise_for_status()
            return True
        except (httpx.HTTPError, ProviderError) as e:
            logger.warning(f"Xero token revocation failed: {e}")
            return False

    async def get_xero_tenant(self, access_token: str) -> dict[str, Any]:
        """First organisation the Xero grant covers."""
        client = await self._get_client()
        try:
            response = await client.get(
                XERO_CONNECTIONS_URL,
                headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ProviderError(f"Failed to fetch Xero connections: {e}") from e

        connections = response.json()
        if not connections:
            raise ProviderError("No Xero organisations authorised")
        return connections[0]


def store_tokens(integration: AccountingIntegration, tokens: OAuthTokens, master_key: str | None = None) -> None:
    """Encrypt and save tokens on the integration row."""
    integration.access_token_encrypted = encrypt_token(tokens.access_token, master_key)
    integration.refresh_token_encrypted = encrypt_token(tokens.refresh_token, master_key)
    integration.token_expires_at = tokens.expires_at
    integration.updated_at = datetime.utcnow()


async def get_access_token(
    integration: AccountingIntegration,
    oauth: OAuthClient,
    master_key: str | None = None,
) -> str:
    """
    Return a usable access token for the integration.

    Refreshes (and re-stores) the tokens when they expire within five minutes.
    The caller commits the session.
    """
    if not integration.access_token_encrypted or not integration.refresh_token_encrypted:
        raise ProviderError(f"{integration.provider} integration has no stored tokens")

    access_token = decrypt_token(integration.access_token_encrypted, master_key)
    expires_at = integration.token_expires_at
    if expires_at is not None and expires_at - datetime.utcnow() > REFRESH_MARGIN:
        return access_token

    logger.info(f"{integration.provider} token expiring soon, refreshing")
    refresh_token = decrypt_token(integration.refresh_token_encrypted, master_key)
    tokens = await oauth.refresh(integration.provider, refresh_token)
    store_tokens(integration, tokens, master_key)
    logger.info(f"{integration.provider} token refreshed")
    return tokens.access_token
