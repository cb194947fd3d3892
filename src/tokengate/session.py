# Authorized Session — what API clients get once the flow is done.
# Created: 2026-10-05
#
# Holds the token and the AuthorizationConfig it came from, so it can refresh
# itself. ``client()`` hands out an httpx.AsyncClient that signs every request
# and refreshes transparently.

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator, Generator
from typing import TYPE_CHECKING, Any

import httpx

from tokengate.errors import PersistenceError

if TYPE_CHECKING:
    from tokengate.config import AuthorizationConfig
    from tokengate.oauth import OAuthClient
    from tokengate.token_store import Token, TokenStore

logger = logging.getLogger(__name__)


class AuthorizedSession:
    """A usable token plus the means to refresh it."""

    def __init__(
        self,
        token: Token,
        config: AuthorizationConfig,
        oauth: OAuthClient,
        store: TokenStore | None = None,
        log: logging.Logger | None = None,
    ):
        self._token = token
        self.config = config
        self.oauth = oauth
        self.store = store
        self._log = log or logger
        self._lock = asyncio.Lock()

    @property
    def token(self) -> Token:
        return self._token

    @property
    def access_token(self) -> str:
        return self._token.access_token

    async def refresh(self) -> Token:
        """Refresh now and persist the result (best-effort).

        Raises:
            ExchangeError: the token has no refresh value or the server refused.
        """
        async with self._lock:
            return await self._refresh_locked()

    async def ensure_fresh(self) -> Token:
        """Return a non-expired token, refreshing first if needed."""
        async with self._lock:
            if self._token.expired:
                return await self._refresh_locked()
            return self._token

    async def _refresh_locked(self) -> Token:
        self._token = await self.oauth.refresh(self._token)
        if self.store is not None:
            try:
                self.store.save(self._token)
            except PersistenceError as exc:
                self._log.error("Refreshed token not cached: %s", exc)
        return self._token

    @property
    def auth(self) -> TokenAuth:
        return TokenAuth(self)

    def client(self, **kwargs: Any) -> httpx.AsyncClient:
        """An httpx.AsyncClient that authenticates with this session."""
        return httpx.AsyncClient(auth=self.auth, **kwargs)


class TokenAuth(httpx.Auth):
    """httpx auth: bearer header, refresh when expired, retry once on 401."""

    def __init__(self, session: AuthorizedSession):
        self.session = session

    def sync_auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        raise RuntimeError("TokenAuth needs an httpx.AsyncClient")

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        token = await self.session.ensure_fresh()
        request.headers["Authorization"] = token.authorization_header
        response = yield request

        if response.status_code == 401 and token.refresh_token:
            logger.info("Got 401 from %s; refreshing token and retrying", request.url.host)
            token = await self.session.refresh()
            request.headers["Authorization"] = token.authorization_header
            yield request
