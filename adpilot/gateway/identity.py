"""ADPILOT - Identity Provider Session Verification.

Key issuance is the one endpoint that does not take an API key: it takes a
user session token from the identity provider. The two credential types are
never interchangeable.
"""

from typing import Optional

import httpx

from adpilot.config import settings
from adpilot.core.logging import get_logger

logger = get_logger("gateway.identity")

API_KEY_PREFIXES = ("ap_live_", "ap_test_")


def looks_like_api_key(token: str) -> bool:
    return token.startswith(API_KEY_PREFIXES)


class IdentityClient:
    """Resolves a session token to a user id via the provider's user endpoint."""

    def __init__(
        self,
        base_url: str | None = None,
        anon_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ):
        self.base_url = (base_url or settings.identity_url).rstrip("/")
        self.anon_key = anon_key or settings.identity_anon_key
        self._transport = transport
        self._timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def get_user_id(self, session_token: str) -> Optional[str]:
        """Return the user id for a valid session, None otherwise."""
        if not self.base_url:
            logger.error("Identity provider URL is not configured")
            return None

        client = await self._get_client()
        try:
            resp = await client.get(
                f"{self.base_url}/auth/v1/user",
                headers={
                    "apikey": self.anon_key,
                    "Authorization": f"Bearer {session_token}",
                },
            )
        except httpx.RequestError as e:
            logger.warning(f"Identity provider unreachable: {e}")
            return None

        if resp.status_code != 200:
            return None
        try:
            user = resp.json()
        except ValueError:
            return None
        return user.get("id") if isinstance(user, dict) else None
