"""Bearer-token authentication against the hosted auth service."""

import logging
from typing import Optional
import httpx
from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from gym_accounting.core.config import get_settings
from gym_accounting.core.database import get_db
from gym_accounting.core.errors import AuthError
from gym_accounting.models.database import Profile

logger = logging.getLogger(__name__)

ADMIN_REQUIRED = "Unauthorized - Admin access required"


class SupabaseAuthClient:
    """Resolves access tokens to user ids via the auth service's /user endpoint."""

    def __init__(self, base_url: str, service_key: str, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip('/')
        self.service_key = service_key
        self.client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self.client is None:
            self.client = httpx.AsyncClient(timeout=10.0)
        return self.client

    async def close(self):
        if self.client:
            await self.client.aclose()
            self.client = None

    async def get_user_id(self, token: str) -> Optional[str]:
        """Return the user id for a valid token, None otherwise."""
        client = await self._get_client()
        try:
            response = await client.get(
                f"{self.base_url}/auth/v1/user",
                headers={"apikey": self.service_key, "Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            logger.error(f"Auth service request failed: {e}")
            return None

        if response.status_code != 200:
            logger.info(f"Token rejected by auth service (HTTP {response.status_code})")
            return None

        try:
            return response.json().get("id")
        except ValueError:
            logger.error("Auth service returned a non-JSON body")
            return None


def get_auth_client() -> SupabaseAuthClient:
    """Dependency: auth client built from settings."""
    settings = get_settings()
    return SupabaseAuthClient(settings.supabase_url, settings.supabase_service_key)


async def verify_admin(
    authorization: Optional[str],
    session: AsyncSession,
    auth: SupabaseAuthClient,
) -> str:
    """
    Resolve the Authorization header to an admin user id.

    Raises:
        AuthError: header missing or malformed, token invalid, or role is not admin
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthError("Missing authorization header")

    token = authorization[len("Bearer "):].strip()
    if not token:
        raise AuthError("Missing bearer token")

    user_id = await auth.get_user_id(token)
    if not user_id:
        raise AuthError("Invalid token")

    profile = await session.get(Profile, user_id)
    if profile is None or profile.role != "admin":
        raise AuthError("Admin access required")

    return user_id


async def require_admin(
    authorization: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    auth: SupabaseAuthClient = Depends(get_auth_client),
) -> str:
    """Dependency: admin user id, or 403."""
    try:
        return await verify_admin(authorization, db, auth)
    except AuthError as e:
        logger.info(f"Rejected request: {e}")
        raise HTTPException(status_code=403, detail=ADMIN_REQUIRED)
    finally:
        await auth.close()
