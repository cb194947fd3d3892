# OAuth Client — authorization URL, code exchange and token refresh.
# Created: 2026-10-04
#
# Standard OAuth 2.0 authorization-code grant against the endpoints named in
# an AuthorizationConfig. Provider-agnostic: Google, Spotify, anything that
# speaks RFC 6749 with form-encoded token requests.

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
import urllib.parse
from datetime import UTC, datetime, timedelta

import httpx
from pydantic import ValidationError

from tokengate.config import AuthorizationConfig
from tokengate.errors import ExchangeError
from tokengate.schemas import TokenResponse
from tokengate.token_store import Token

logger = logging.getLogger(__name__)


def make_state() -> str:
    """Unguessable value tying a redirect back to the request that caused it."""
    return secrets.token_urlsafe(32)


def make_code_verifier() -> str:
    return secrets.token_urlsafe(64)


def code_challenge(verifier: str) -> str:
    """PKCE S256 challenge: BASE64URL(SHA256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode()).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode()


class OAuthClient:
    """Talks to one authorization server on behalf of one client registration."""

    def __init__(
        self,
        config: AuthorizationConfig,
        timeout: float = 15.0,
        log: logging.Logger | None = None,
    ):
        self.config = config
        self.timeout = timeout
        self._log = log or logger

    def get_auth_url(self, state: str, code_verifier: str | None = None) -> str:
        """Build the consent URL the user has to visit.

        Args:
            state: Opaque CSRF value echoed back on the redirect.
            code_verifier: PKCE verifier; its S256 challenge is sent when given.

        Returns:
            Authorization URL requesting offline access (so a refresh token
            is issued).
        """
        params = {
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.config.scopes),
            "state": state,
            "access_type": "offline",
            "prompt": "consent",
        }
        if code_verifier:
            params["code_challenge"] = code_challenge(code_verifier)
            params["code_challenge_method"] = "S256"

        sep = "&" if "?" in self.config.auth_url else "?"
        return f"{self.config.auth_url}{sep}{urllib.parse.urlencode(params)}"

    async def exchange_code(self, code: str, code_verifier: str | None = None) -> Token:
        """Exchange an authorization code for access + refresh tokens.

        Raises:
            ExchangeError: the code is empty, or the token endpoint failed or
                returned something that isn't a token. An empty code is never
                sent to the server.
        """
        code = (code or "").strip()
        if not code:
            raise ExchangeError("Authorization code is empty; nothing to exchange")

        data = {
            "code": code,
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "redirect_uri": self.config.redirect_uri,
            "grant_type": "authorization_code",
        }
        if code_verifier:
            data["code_verifier"] = code_verifier

        payload = await self._post_token(data, what="code exchange")
        token = self._to_token(payload)
        if not token.refresh_token:
            self._log.warning(
                "Token endpoint returned no refresh token; re-authorization will be "
                "needed once the access token expires"
            )
        self._log.info("OAuth token obtained from %s", self._token_host)
        return token

    async def refresh(self, token: Token) -> Token:
        """Use the refresh token to get a new access token.

        The returned token keeps the old refresh token if the server did not
        issue a new one.

        Raises:
            ExchangeError: no refresh token, or the refresh request failed.
        """
        if not token.refresh_token:
            raise ExchangeError("Token has no refresh token", stage="refresh")

        payload = await self._post_token(
            {
                "refresh_token": token.refresh_token,
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                "grant_type": "refresh_token",
            },
            what="token refresh",
            stage="refresh",
        )
        refreshed = self._to_token(payload, previous=token)
        self._log.info("Refreshed OAuth token from %s", self._token_host)
        return refreshed

    @property
    def _token_host(self) -> str:
        return urllib.parse.urlsplit(self.config.token_url).netloc or self.config.token_url

    async def _post_token(
        self, data: dict[str, str], what: str, stage: str = "exchange"
    ) -> TokenResponse:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    self.config.token_url,
                    data=data,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            raise ExchangeError(f"{what} failed: {exc}", stage=stage) from exc

        if resp.is_error:
            raise ExchangeError(
                f"{what} rejected by {self._token_host}: HTTP {resp.status_code} "
                f"{_describe_error(resp)}",
                stage=stage,
            )

        try:
            return TokenResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            raise ExchangeError(
                f"{what} returned an invalid token response: {exc}", stage=stage
            ) from exc

    def _to_token(self, payload: TokenResponse, previous: Token | None = None) -> Token:
        expires_at = None
        if payload.expires_in is not None:
            expires_at = datetime.now(UTC) + timedelta(seconds=payload.expires_in)

        if payload.scope:
            scopes = payload.scope.split()
        elif previous is not None:
            scopes = list(previous.scopes)
        else:
            scopes = list(self.config.scopes)

        return Token(
            access_token=payload.access_token,
            token_type=payload.token_type or "Bearer",
            refresh_token=payload.refresh_token
            or (previous.refresh_token if previous else None),
            expires_at=expires_at,
            scopes=scopes,
        )


def _describe_error(resp: httpx.Response) -> str:
    """Pull ``error``/``error_description`` out of an OAuth error body."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(body, dict) and "error" in body:
        desc = body.get("error_description")
        return f"{body['error']}: {desc}" if desc else str(body["error"])
    return resp.text[:200]
