# Authorization Flow — cached token or interactive consent, then code exchange.
# Created: 2026-10-05
#
#   CHECKING_CACHE -> AWAITING_USER_CONSENT -> EXCHANGING_CODE -> AUTHENTICATED
#                 \______________________________________________/
#                  (usable cached token: no listener, browser or network)
#
# Any failure moves to ERROR and is raised as the TokenGateError naming the
# stage. Cache read and cache write problems are logged and worked around.

from __future__ import annotations

import asyncio
import logging
import threading
import urllib.parse
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from rich.console import Console

from tokengate.browser import BrowserLauncher
from tokengate.callback import CallbackListener, CallbackResult
from tokengate.config import (
    AuthorizationConfig,
    FlowMode,
    Settings,
    get_settings,
    get_token_path,
    load_authorization_config,
)
from tokengate.errors import (
    BindError,
    BrowserError,
    CacheError,
    ExchangeError,
    PersistenceError,
    TokenGateError,
)
from tokengate.oauth import OAuthClient, make_code_verifier, make_state
from tokengate.session import AuthorizedSession
from tokengate.token_store import Token, TokenStore

logger = logging.getLogger(__name__)

PromptFn = Callable[[str], str]


class FlowState(str, Enum):
    CHECKING_CACHE = "checking_cache"
    AWAITING_USER_CONSENT = "awaiting_user_consent"
    EXCHANGING_CODE = "exchanging_code"
    AUTHENTICATED = "authenticated"
    ERROR = "error"


@dataclass
class PendingExchange:
    """One outstanding authorization request, alive until its code arrives."""

    state: str
    auth_url: str
    code_verifier: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


def parse_pasted_code(value: str) -> CallbackResult:
    """Accept either a bare code or the full redirect URL the browser ended on."""
    value = (value or "").strip()
    if "code=" in value or "error=" in value:
        query = urllib.parse.urlsplit(value).query or value.split("?", 1)[-1]
        params = urllib.parse.parse_qs(query)
        return CallbackResult(
            code=params.get("code", [""])[0],
            state=params.get("state", [""])[0],
            error=params.get("error", [""])[0],
            error_description=params.get("error_description", [""])[0],
            pasted=True,
        )
    return CallbackResult(code=value, pasted=True)


class AuthorizationFlow:
    """Produces an AuthorizedSession for one AuthorizationConfig.

    Scope-agnostic: the same flow serves any downstream operation, the scope
    set lives in the config.
    """

    def __init__(
        self,
        config: AuthorizationConfig,
        store: TokenStore,
        *,
        mode: FlowMode = "auto",
        host: str = "localhost",
        port: int = 8090,
        timeout: float | None = 300.0,
        open_browser: bool = True,
        use_pkce: bool = True,
        oauth: OAuthClient | None = None,
        browser: BrowserLauncher | None = None,
        prompt: PromptFn | None = None,
        console: Console | None = None,
        log: logging.Logger | None = None,
    ):
        self.config = config
        self.store = store
        self.mode = mode
        self.host = host
        self.port = port
        self.timeout = timeout
        self.open_browser = open_browser
        self.use_pkce = use_pkce
        self._log = log or logger
        self.oauth = oauth or OAuthClient(config, log=self._log)
        self.browser = browser or BrowserLauncher(log=self._log)
        self._prompt = prompt or input
        self.console = console or Console(stderr=True, highlight=False)
        self.state = FlowState.CHECKING_CACHE

    @classmethod
    def from_settings(
        cls, settings: Settings, config: AuthorizationConfig | None = None, **kwargs
    ) -> AuthorizationFlow:
        config = config or load_authorization_config(settings)
        log = kwargs.pop("log", None)
        kwargs.setdefault("oauth", OAuthClient(config, timeout=settings.http_timeout, log=log))
        return cls(
            config,
            TokenStore(get_token_path(settings), log=log),
            mode=settings.flow_mode,
            host=settings.callback_host,
            port=settings.callback_port,
            timeout=settings.consent_timeout,
            open_browser=settings.open_browser,
            use_pkce=settings.use_pkce,
            log=log,
            **kwargs,
        )

    async def run(self, force: bool = False) -> AuthorizedSession:
        """Run the flow to completion.

        Args:
            force: Skip the cache and always ask the user for consent.

        Raises:
            TokenGateError: the subclass names the failing stage (bind,
                consent, exchange, ...). Never returns an unusable token.
        """
        self.state = FlowState.CHECKING_CACHE
        try:
            token = None if force else self._check_cache()
            if token is None:
                self._transition(FlowState.AWAITING_USER_CONSENT)
                pending = self._begin()
                result = await self._obtain_code(pending)
                code = self._verify(pending, result)

                self._transition(FlowState.EXCHANGING_CODE)
                token = await self.oauth.exchange_code(code, pending.code_verifier)
                if not token.usable:
                    raise ExchangeError(
                        "Token endpoint returned a token that expires immediately "
                        "and has no refresh token"
                    )
                self._persist(token)
        except TokenGateError as exc:
            self._transition(FlowState.ERROR)
            self._log.error("Authorization failed at %s: %s", exc.stage, exc)
            raise

        self._transition(FlowState.AUTHENTICATED)
        return AuthorizedSession(token, self.config, self.oauth, self.store, log=self._log)

    def _transition(self, new: FlowState) -> None:
        self._log.debug("flow: %s -> %s", self.state.value, new.value)
        self.state = new

    def _check_cache(self) -> Token | None:
        try:
            token = self.store.load()
        except CacheError as exc:
            self._log.warning("Ignoring unusable token cache: %s", exc)
            return None

        if token is None:
            self._log.info("No cached token at %s", self.store.path)
            return None
        if not token.usable:
            self._log.info("Cached token expired and has no refresh token")
            return None

        self._log.info("Using cached token from %s", self.store.path)
        return token

    def _begin(self) -> PendingExchange:
        verifier = make_code_verifier() if self.use_pkce else None
        state = make_state()
        return PendingExchange(
            state=state,
            auth_url=self.oauth.get_auth_url(state, verifier),
            code_verifier=verifier,
        )

    async def _obtain_code(self, pending: PendingExchange) -> CallbackResult:
        if self.mode == "manual":
            return await self._via_prompt(pending)

        try:
            return await self._via_listener(pending)
        except BindError as exc:
            if self.mode != "auto":
                raise
            self._log.warning("%s; falling back to manual code entry", exc)
            return await self._via_prompt(pending)

    async def _via_listener(self, pending: PendingExchange) -> CallbackResult:
        async with CallbackListener(self.host, self.port, log=self._log) as listener:
            if self.open_browser:
                try:
                    self.browser.open(pending.auth_url)
                except BrowserError as exc:
                    self._log.warning("Could not open browser: %s", exc)
            self.console.print(
                "Complete authorization in your browser. If it did not open, visit:\n"
                f"{pending.auth_url}\n",
                soft_wrap=True,
                markup=False,
            )
            return await listener.wait(self.timeout)

    async def _via_prompt(self, pending: PendingExchange) -> CallbackResult:
        self.console.print(
            "Go to the following link in your browser. After completing the "
            "authorization flow, paste the authorization code (or the full URL "
            "you were redirected to) below:\n"
            f"{pending.auth_url}\n",
            soft_wrap=True,
            markup=False,
        )
        try:
            value = await self._read_line("Authorization code: ")
        except EOFError as exc:
            raise ExchangeError("No authorization code entered (input closed)") from exc
        return parse_pasted_code(value)

    async def _read_line(self, prompt: str) -> str:
        """Run the prompt on a daemon thread.

        A pending ``input()`` cannot be interrupted; on Ctrl-C or a timeout
        the loop moves on and the thread is abandoned instead of joined.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[str] = loop.create_future()

        def deliver(value: str | None, exc: BaseException | None) -> None:
            if future.done():
                return
            if exc is not None:
                future.set_exception(exc)
            else:
                future.set_result(value)

        def read() -> None:
            value, error = None, None
            try:
                value = self._prompt(prompt)
            except Exception as exc:
                error = exc
            try:
                loop.call_soon_threadsafe(deliver, value, error)
            except RuntimeError:
                # Loop already closed; nobody is waiting for the answer.
                pass

        threading.Thread(target=read, name="tokengate-prompt", daemon=True).start()
        return await future

    def _verify(self, pending: PendingExchange, result: CallbackResult) -> str:
        if result.error:
            detail = f" ({result.error_description})" if result.error_description else ""
            raise ExchangeError(f"Authorization server returned error: {result.error}{detail}")
        code = result.code.strip()
        if not code:
            raise ExchangeError("No authorization code received")
        # A bare pasted code carries no state; everything else must echo ours.
        if result.state != pending.state and not (result.pasted and not result.state):
            raise ExchangeError("State mismatch on redirect; possible stale or forged response")
        self._log.debug("Got authorization code %s...", code[:4])
        return code

    def _persist(self, token: Token) -> None:
        try:
            self.store.save(token)
        except PersistenceError as exc:
            self._log.error("Token obtained but not cached: %s", exc)


async def get_authorized_session(
    settings: Settings | None = None,
    scopes: list[str] | None = None,
    force: bool = False,
    **kwargs,
) -> AuthorizedSession:
    """Entry point for API clients: an authenticated session for ``scopes``.

    Raises:
        ConfigError: the credentials file is missing or malformed.
        TokenGateError: any other stage failed.
    """
    settings = settings or get_settings()
    config = load_authorization_config(settings)
    if scopes:
        config = config.with_scopes(*scopes)
    flow = AuthorizationFlow.from_settings(settings, config, **kwargs)
    return await flow.run(force=force)
