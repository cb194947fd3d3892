# Tests for oauth.py
# Created: 2026-10-04

from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
import respx

from tokengate.config import AuthorizationConfig
from tokengate.errors import ExchangeError
from tokengate.oauth import OAuthClient, code_challenge, make_code_verifier, make_state
from tokengate.token_store import Token

TOKEN_URL = "https://auth.example.com/token"


@pytest.fixture
def config():
    return AuthorizationConfig(
        client_id="test-client-id",
        client_secret="test-secret",
        auth_url="https://auth.example.com/authorize",
        token_url=TOKEN_URL,
        scopes=("email", "profile"),
        redirect_uri="http://localhost:8090/",
    )


@pytest.fixture
def oauth(config):
    return OAuthClient(config)


# ---------------------------------------------------------------------------
# Authorization URL
# ---------------------------------------------------------------------------


class TestAuthUrl:
    def test_get_auth_url(self, oauth):
        url = oauth.get_auth_url(state="state123")
        parsed = urlparse(url)
        query = parse_qs(parsed.query)

        assert parsed.netloc == "auth.example.com"
        assert query["client_id"] == ["test-client-id"]
        assert query["redirect_uri"] == ["http://localhost:8090/"]
        assert query["response_type"] == ["code"]
        assert query["scope"] == ["email profile"]
        assert query["state"] == ["state123"]
        assert query["access_type"] == ["offline"]
        assert "code_challenge" not in query

    def test_get_auth_url_with_pkce(self, oauth):
        verifier = make_code_verifier()
        query = parse_qs(urlparse(oauth.get_auth_url("s", verifier)).query)
        assert query["code_challenge"] == [code_challenge(verifier)]
        assert query["code_challenge_method"] == ["S256"]

    def test_auth_url_with_existing_query(self, config):
        client = OAuthClient(
            AuthorizationConfig(
                client_id="c",
                client_secret="",
                auth_url="https://auth.example.com/authorize?tenant=x",
                token_url=TOKEN_URL,
                scopes=("a",),
                redirect_uri="http://localhost:8090/",
            )
        )
        query = parse_qs(urlparse(client.get_auth_url("s")).query)
        assert query["tenant"] == ["x"]
        assert query["state"] == ["s"]


class TestHelpers:
    def test_state_is_random(self):
        assert make_state() != make_state()
        assert len(make_state()) >= 32

    def test_code_challenge_rfc7636_vector(self):
        # Example from RFC 7636 appendix B
        verifier = "dBjftJeZ4CVP-mJ92K9Ny8KZcRAR8rz69rrLAPo4mLw"
        assert code_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


# ---------------------------------------------------------------------------
# Code exchange
# ---------------------------------------------------------------------------


@respx.mock
async def test_exchange_code_posts_form_payload(oauth):
    route = respx.post(TOKEN_URL).respond(
        200,
        json={
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "expires_in": 3600,
            "token_type": "Bearer",
        },
    )

    token = await oauth.exchange_code("abc123", code_verifier="verifier")

    assert route.called
    form = parse_qs(route.calls.last.request.content.decode())
    assert form["code"] == ["abc123"]
    assert form["grant_type"] == ["authorization_code"]
    assert form["client_id"] == ["test-client-id"]
    assert form["client_secret"] == ["test-secret"]
    assert form["redirect_uri"] == ["http://localhost:8090/"]
    assert form["code_verifier"] == ["verifier"]

    assert token.access_token == "access-1"
    assert token.refresh_token == "refresh-1"
    assert token.scopes == ["email", "profile"]
    assert token.expires_at > datetime.now(UTC) + timedelta(minutes=59)


@respx.mock(assert_all_called=False)
async def test_exchange_empty_code_never_dispatched(oauth):
    route = respx.post(TOKEN_URL).respond(200, json={"access_token": "x"})

    with pytest.raises(ExchangeError, match="empty"):
        await oauth.exchange_code("   ")
    assert not route.called


@respx.mock
async def test_exchange_rejected_includes_oauth_error(oauth):
    respx.post(TOKEN_URL).respond(
        400, json={"error": "invalid_grant", "error_description": "Bad code"}
    )

    with pytest.raises(ExchangeError, match="invalid_grant: Bad code") as exc_info:
        await oauth.exchange_code("stale")
    assert exc_info.value.stage == "exchange"


@respx.mock
async def test_exchange_network_failure_keeps_cause(oauth):
    respx.post(TOKEN_URL).mock(side_effect=httpx.ConnectError("refused"))

    with pytest.raises(ExchangeError) as exc_info:
        await oauth.exchange_code("abc")
    assert isinstance(exc_info.value.cause, httpx.ConnectError)


@respx.mock
async def test_exchange_malformed_response(oauth):
    respx.post(TOKEN_URL).respond(200, json={"token_type": "Bearer"})

    with pytest.raises(ExchangeError, match="invalid token response"):
        await oauth.exchange_code("abc")


@respx.mock
async def test_exchange_non_json_response(oauth):
    respx.post(TOKEN_URL).respond(200, text="<html>oops</html>")

    with pytest.raises(ExchangeError):
        await oauth.exchange_code("abc")


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------


@respx.mock
async def test_refresh_keeps_old_refresh_token(oauth):
    route = respx.post(TOKEN_URL).respond(
        200, json={"access_token": "access-2", "expires_in": 60, "scope": "email"}
    )
    old = Token(access_token="access-1", refresh_token="refresh-1", scopes=["email", "profile"])

    new = await oauth.refresh(old)

    form = parse_qs(route.calls.last.request.content.decode())
    assert form["grant_type"] == ["refresh_token"]
    assert form["refresh_token"] == ["refresh-1"]
    assert new.access_token == "access-2"
    assert new.refresh_token == "refresh-1"
    assert new.scopes == ["email"]


@respx.mock
async def test_refresh_rotates_refresh_token(oauth):
    respx.post(TOKEN_URL).respond(
        200, json={"access_token": "access-2", "refresh_token": "refresh-2"}
    )
    new = await oauth.refresh(Token(access_token="a", refresh_token="refresh-1"))
    assert new.refresh_token == "refresh-2"
    assert new.expires_at is None


async def test_refresh_without_refresh_token(oauth):
    with pytest.raises(ExchangeError, match="no refresh token") as exc_info:
        await oauth.refresh(Token(access_token="a"))
    assert exc_info.value.stage == "refresh"


@respx.mock
async def test_refresh_rejected(oauth):
    respx.post(TOKEN_URL).respond(401, json={"error": "invalid_client"})
    with pytest.raises(ExchangeError, match="invalid_client") as exc_info:
        await oauth.refresh(Token(access_token="a", refresh_token="r"))
    assert exc_info.value.stage == "refresh"
