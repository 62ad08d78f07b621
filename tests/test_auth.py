"""Tests for admin authentication."""

import httpx
import pytest

from gym_accounting.core.auth import SupabaseAuthClient, verify_admin
from gym_accounting.core.errors import AuthError


class TestVerifyAdmin:

    @pytest.mark.asyncio
    async def test_admin_token(self, async_session, auth_client, profiles):
        assert await verify_admin("Bearer admin-token", async_session, auth_client) == "admin-1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("header", [None, "", "Token admin-token", "Bearer ", "Bearer unknown"])
    async def test_rejected_headers(self, async_session, auth_client, profiles, header):
        with pytest.raises(AuthError):
            await verify_admin(header, async_session, auth_client)

    @pytest.mark.asyncio
    async def test_member_is_not_admin(self, async_session, auth_client, profiles):
        with pytest.raises(AuthError, match="Admin access required"):
            await verify_admin("Bearer member-token", async_session, auth_client)

    @pytest.mark.asyncio
    async def test_user_without_profile(self, async_session, profiles):
        class Client:
            async def get_user_id(self, token):
                return "ghost"

        with pytest.raises(AuthError):
            await verify_admin("Bearer any", async_session, Client())


class TestSupabaseAuthClient:

    @pytest.mark.asyncio
    async def test_resolves_user_id(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["apikey"] = request.headers["apikey"]
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json={"id": "user-42", "email": "a@b.c"})

        client = SupabaseAuthClient(
            "https://auth.gym.test/", "service-key", httpx.AsyncClient(transport=httpx.MockTransport(handler))
        )
        assert await client.get_user_id("tok") == "user-42"
        assert seen == {
            "url": "https://auth.gym.test/auth/v1/user",
            "apikey": "service-key",
            "auth": "Bearer tok",
        }
        await client.close()

    @pytest.mark.asyncio
    async def test_rejected_token(self):
        client = SupabaseAuthClient(
            "https://auth.gym.test",
            "service-key",
            httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(401))),
        )
        assert await client.get_user_id("expired") is None
        await client.close()
