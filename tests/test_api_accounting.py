"""Tests for the accounting settings endpoints: mappings, accounts and connection."""

from datetime import datetime, timedelta
from unittest.mock import patch

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import select

from gym_accounting.api import accounting
from gym_accounting.api.accounting import get_oauth_client, router
from gym_accounting.api.sync import get_adapter_factory
from gym_accounting.core.auth import get_auth_client
from gym_accounting.core.config import Settings
from gym_accounting.core.database import get_db
from gym_accounting.core.encryption import encrypt_token
from gym_accounting.core.errors import ProviderError
from gym_accounting.models.database import AccountingIntegration, AccountMapping, OAuthState
from gym_accounting.services.oauth import OAuthClient

KEY = "0f" * 32

ADMIN = {"Authorization": "Bearer admin-token"}
MEMBER = {"Authorization": "Bearer member-token"}


class FakeAccountsAdapter:

    def __init__(self, accounts=None, error=None):
        self.accounts = accounts or []
        self.error = error
        self.closed = False

    async def get_chart_of_accounts(self):
        if self.error:
            raise self.error
        return self.accounts

    async def close(self):
        self.closed = True


def _make_test_app(session, auth_client, adapter=None, oauth=None):
    """Build a minimal FastAPI app with the accounting router and a mocked DB."""
    app = FastAPI()
    app.include_router(router)

    async def override_get_db():
        yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_auth_client] = lambda: auth_client
    if adapter is not None:
        app.dependency_overrides[get_adapter_factory] = lambda: (lambda *args: adapter)
    app.dependency_overrides[get_oauth_client] = lambda: oauth or OAuthClient(Settings(
        quickbooks_client_id="qb-client",
        quickbooks_client_secret="qb-secret",
        quickbooks_redirect_uri="https://gym.test/api/accounting/callback",
    ))
    return app


class TestMappings:

    @pytest.mark.asyncio
    async def test_list_mappings(self, async_session, auth_client, profiles, make_mappings):
        await make_mappings("quickbooks")
        await make_mappings("xero")

        app = _make_test_app(async_session, auth_client)
        with TestClient(app) as client:
            resp = client.get("/api/accounting/mappings", params={"provider": "quickbooks"}, headers=ADMIN)

        assert resp.status_code == 200
        data = resp.json()
        assert len(data) == 7
        assert {d["provider"] for d in data} == {"quickbooks"}
        assert {"revenueCategory", "externalAccountId", "externalAccountName", "isActive"} <= set(data[0])

    @pytest.mark.asyncio
    async def test_put_creates_then_updates(self, async_session, auth_client, profiles):
        app = _make_test_app(async_session, auth_client)
        with TestClient(app) as client:
            first = client.put(
                "/api/accounting/mappings/quickbooks/day_pass",
                json={"externalAccountId": "79", "externalAccountName": "Sales"},
                headers=ADMIN,
            )
            second = client.put(
                "/api/accounting/mappings/quickbooks/day_pass",
                json={"externalAccountId": "80", "externalAccountName": "Day Pass Income", "externalAccountCode": "4010"},
                headers=ADMIN,
            )

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.json()["externalAccountId"] == "80"
        rows = (await async_session.execute(select(AccountMapping))).scalars().all()
        assert len(rows) == 1
        assert rows[0].external_account_code == "4010"

    @pytest.mark.asyncio
    async def test_put_unknown_category(self, async_session, auth_client, profiles):
        app = _make_test_app(async_session, auth_client)
        with TestClient(app) as client:
            resp = client.put(
                "/api/accounting/mappings/quickbooks/merchandise",
                json={"externalAccountId": "79", "externalAccountName": "Sales"},
                headers=ADMIN,
            )
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Unknown revenue category: merchandise"

    @pytest.mark.asyncio
    async def test_requires_admin(self, async_session, auth_client, profiles):
        app = _make_test_app(async_session, auth_client)
        with TestClient(app) as client:
            resp = client.get("/api/accounting/mappings", params={"provider": "quickbooks"}, headers=MEMBER)
        assert resp.status_code == 403


class TestChartOfAccounts:

    @pytest.mark.asyncio
    async def test_lists_accounts(self, async_session, auth_client, profiles, make_integration):
        await make_integration("quickbooks")
        adapter = FakeAccountsAdapter(accounts=[
            {"Id": 79, "Name": "Day Pass Income", "AccountType": "Income", "AccountSubType": "SalesOfProductIncome"},
        ])

        app = _make_test_app(async_session, auth_client, adapter=adapter)
        with TestClient(app) as client:
            resp = client.get("/api/accounting/accounts", params={"provider": "quickbooks"}, headers=ADMIN)

        assert resp.status_code == 200
        account = resp.json()["accounts"][0]
        assert account["id"] == "79"
        assert account["subType"] == "SalesOfProductIncome"
        assert account["active"] is True
        assert adapter.closed

    @pytest.mark.asyncio
    async def test_provider_error_is_502(self, async_session, auth_client, profiles, make_integration):
        await make_integration("quickbooks")
        adapter = FakeAccountsAdapter(error=ProviderError("Query failed: token expired"))

        app = _make_test_app(async_session, auth_client, adapter=adapter)
        with TestClient(app) as client:
            resp = client.get("/api/accounting/accounts", params={"provider": "quickbooks"}, headers=ADMIN)

        assert resp.status_code == 502
        assert adapter.closed

    @pytest.mark.asyncio
    async def test_not_connected(self, async_session, auth_client, profiles):
        app = _make_test_app(async_session, auth_client)
        with TestClient(app) as client:
            resp = client.get("/api/accounting/accounts", params={"provider": "quickbooks"}, headers=ADMIN)
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_xero_not_implemented(self, async_session, auth_client, profiles, make_integration):
        await make_integration("xero")
        app = _make_test_app(async_session, auth_client)
        with TestClient(app) as client:
            resp = client.get("/api/accounting/accounts", params={"provider": "xero"}, headers=ADMIN)
        assert resp.status_code == 501


class TestConnection:

    @pytest.mark.asyncio
    async def test_status_without_integration(self, async_session, auth_client, profiles):
        app = _make_test_app(async_session, auth_client)
        with TestClient(app) as client:
            resp = client.get("/api/accounting/connection", params={"provider": "xero"}, headers=ADMIN)

        assert resp.status_code == 200
        assert resp.json()["connected"] is False
        assert resp.json()["status"] == "disconnected"

    @pytest.mark.asyncio
    async def test_status_never_exposes_tokens(self, async_session, auth_client, profiles, make_integration):
        await make_integration("quickbooks", company_name="Iron Temple Gym", access_token_encrypted="secret")
        app = _make_test_app(async_session, auth_client)
        with TestClient(app) as client:
            resp = client.get("/api/accounting/connection", params={"provider": "quickbooks"}, headers=ADMIN)

        data = resp.json()
        assert data["connected"] is True
        assert data["companyName"] == "Iron Temple Gym"
        assert "secret" not in resp.text

    @pytest.mark.asyncio
    async def test_connect_issues_state(self, async_session, auth_client, profiles):
        app = _make_test_app(async_session, auth_client)
        with TestClient(app) as client:
            resp = client.post(
                "/api/accounting/connect",
                json={"provider": "quickbooks", "redirectUrl": "https://gym.test/admin/accounting"},
                headers=ADMIN,
            )

        assert resp.status_code == 200
        data = resp.json()
        assert data["authorizationUrl"].startswith("https://appcenter.intuit.com/connect/oauth2?")
        assert f"state={data['state']}" in data["authorizationUrl"]

        oauth_state = await async_session.get(OAuthState, data["state"])
        assert oauth_state.user_id == "admin-1"
        assert oauth_state.redirect_url == "https://gym.test/admin/accounting"

    @pytest.mark.asyncio
    async def test_callback_rejects_unknown_state(self, async_session, auth_client):
        app = _make_test_app(async_session, auth_client)
        with TestClient(app) as client:
            resp = client.get("/api/accounting/callback", params={"state": "forged", "code": "abc"})
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_callback_rejects_expired_state(self, async_session, auth_client):
        async_session.add(OAuthState(
            state="old",
            provider="quickbooks",
            user_id="admin-1",
            redirect_url="https://gym.test/admin",
            created_at=datetime.utcnow() - timedelta(minutes=11),
        ))
        await async_session.commit()

        app = _make_test_app(async_session, auth_client)
        with TestClient(app) as client:
            resp = client.get("/api/accounting/callback", params={"state": "old", "code": "abc", "realmId": "1"})
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_callback_provider_error_redirects(self, async_session, auth_client):
        async_session.add(OAuthState(
            state="s1",
            provider="xero",
            user_id="admin-1",
            redirect_url="https://gym.test/admin",
            created_at=datetime.utcnow(),
        ))
        await async_session.commit()

        app = _make_test_app(async_session, auth_client, oauth=OAuthClient(Settings()))
        with TestClient(app) as client:
            resp = client.get(
                "/api/accounting/callback",
                params={"state": "s1", "code": "abc"},
                follow_redirects=False,
            )

        assert resp.status_code == 302
        assert resp.headers["location"] == "https://gym.test/admin?error=token_exchange_failed&provider=xero"
        # State is single use
        assert (await async_session.execute(select(OAuthState))).scalars().all() == []

    @pytest.mark.asyncio
    async def test_disconnect_clears_tokens(self, async_session, auth_client, profiles, make_integration):
        integration = await make_integration(
            "xero", access_token_encrypted="enc-a", refresh_token_encrypted="enc-r"
        )
        app = _make_test_app(async_session, auth_client)
        with TestClient(app) as client:
            resp = client.post("/api/accounting/disconnect", json={"provider": "xero"}, headers=ADMIN)

        assert resp.status_code == 200
        assert resp.json()["status"] == "disconnected"
        refreshed = await async_session.get(AccountingIntegration, integration.id)
        assert refreshed.access_token_encrypted is None
        assert refreshed.refresh_token_encrypted is None

    @pytest.mark.asyncio
    async def test_disconnect_revokes_xero_access_token(self, async_session, auth_client, profiles, make_integration):
        await make_integration(
            "xero",
            access_token_encrypted=encrypt_token("xero-access", KEY),
            refresh_token_encrypted=encrypt_token("xero-refresh", KEY),
        )
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200)

        oauth = OAuthClient(
            Settings(xero_client_id="xero-client", xero_client_secret="xero-secret"),
            httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        app = _make_test_app(async_session, auth_client, oauth=oauth)
        with patch.object(accounting, "get_settings", return_value=Settings(accounting_encryption_key=KEY)):
            with TestClient(app) as client:
                resp = client.post("/api/accounting/disconnect", json={"provider": "xero"}, headers=ADMIN)

        assert resp.status_code == 200
        assert len(requests) == 1
        assert str(requests[0].url) == "https://identity.xero.com/connect/revocation"
        assert requests[0].content == b"token=xero-access"

    @pytest.mark.asyncio
    async def test_disconnect_survives_failed_revocation(self, async_session, auth_client, profiles, make_integration):
        integration = await make_integration("xero", access_token_encrypted=encrypt_token("xero-access", KEY))

        oauth = OAuthClient(
            Settings(xero_client_id="xero-client", xero_client_secret="xero-secret"),
            httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(503))),
        )
        app = _make_test_app(async_session, auth_client, oauth=oauth)
        with patch.object(accounting, "get_settings", return_value=Settings(accounting_encryption_key=KEY)):
            with TestClient(app) as client:
                resp = client.post("/api/accounting/disconnect", json={"provider": "xero"}, headers=ADMIN)

        assert resp.status_code == 200
        refreshed = await async_session.get(AccountingIntegration, integration.id)
        assert refreshed.status == "disconnected"
        assert refreshed.access_token_encrypted is None

    @pytest.mark.asyncio
    async def test_disconnect_unknown_integration(self, async_session, auth_client, profiles):
        app = _make_test_app(async_session, auth_client)
        with TestClient(app) as client:
            resp = client.post("/api/accounting/disconnect", json={"provider": "quickbooks"}, headers=ADMIN)
        assert resp.status_code == 404
