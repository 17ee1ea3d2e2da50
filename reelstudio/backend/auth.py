"""Bearer-token cache backed by the local auth proxy."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from reelstudio.agents.base import AuthUnavailable


logger = logging.getLogger(__name__)


DEFAULT_AUTH_URL = "http://localhost:3001/api/auth/token"
DEFAULT_TOKEN_TTL_SECONDS = 50 * 60
EXPIRY_MARGIN_SECONDS = 60


@dataclass(frozen=True)
class AuthToken:
    """Access token plus the project it is scoped to"""
    token: str
    project_id: str
    expires_at: float


class TokenCache:
    """Fetches a token from the auth proxy and reuses it until near expiry.

    The proxy answers ``GET auth_url`` with ``{"token", "projectId",
    "expiresIn"?}``. A token is reused until ``expiresIn`` (default 50
    minutes) minus a 60 second margin has elapsed.
    """

    def __init__(
        self,
        auth_url: str = DEFAULT_AUTH_URL,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
        timeout: float = 30.0
    ):
        self.auth_url = auth_url
        self._client = client
        self._owns_client = client is None
        self._clock = clock
        self._timeout = timeout
        self._cached: Optional[AuthToken] = None
        self._lock: Optional[asyncio.Lock] = None

    async def get(self) -> AuthToken:
        """Return a valid token, refreshing it from the proxy when needed.

        Raises:
            AuthUnavailable: If the proxy is unreachable or answers without a token
        """
        if self._is_fresh():
            return self._cached
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            if self._is_fresh():
                return self._cached
            self._cached = await self._fetch()
            return self._cached

    def invalidate(self) -> None:
        """Drop the cached token so the next ``get`` refreshes it"""
        self._cached = None

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _is_fresh(self) -> bool:
        return self._cached is not None and self._clock() < self._cached.expires_at

    async def _fetch(self) -> AuthToken:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        try:
            response = await self._client.get(self.auth_url)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            raise AuthUnavailable(
                f"Auth proxy request failed: {e}",
                {"auth_url": self.auth_url}
            ) from e
        except ValueError as e:
            raise AuthUnavailable(
                "Auth proxy returned a non-JSON body",
                {"auth_url": self.auth_url}
            ) from e

        token = body.get("token") if isinstance(body, dict) else None
        if not token:
            raise AuthUnavailable(
                "Auth proxy response carried no token",
                {"auth_url": self.auth_url}
            )

        try:
            ttl = float(body.get("expiresIn") or DEFAULT_TOKEN_TTL_SECONDS)
        except (TypeError, ValueError):
            ttl = DEFAULT_TOKEN_TTL_SECONDS
        expires_at = self._clock() + max(0.0, ttl - EXPIRY_MARGIN_SECONDS)
        logger.info(f"Fetched access token, valid for {ttl - EXPIRY_MARGIN_SECONDS:.0f}s")
        return AuthToken(token=token, project_id=str(body.get("projectId") or ""), expires_at=expires_at)
