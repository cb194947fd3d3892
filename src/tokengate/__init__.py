"""tokengate — OAuth2 authorization-code login for command-line tools.

Gets a user-granted token once (local redirect listener or pasted code),
caches it under ``~/.<app>/`` and hands API clients an authenticated,
self-refreshing httpx session.
"""

from tokengate.config import AuthorizationConfig, Settings, get_settings, load_client_secrets
from tokengate.errors import (
    BindError,
    BrowserError,
    CacheError,
    CallbackTimeoutError,
    ConfigError,
    ExchangeError,
    PersistenceError,
    TokenGateError,
)
from tokengate.flow import AuthorizationFlow, FlowState, get_authorized_session
from tokengate.session import AuthorizedSession
from tokengate.token_store import Token, TokenStore

__all__ = [
    "AuthorizationConfig",
    "AuthorizationFlow",
    "AuthorizedSession",
    "BindError",
    "BrowserError",
    "CacheError",
    "CallbackTimeoutError",
    "ConfigError",
    "ExchangeError",
    "FlowState",
    "PersistenceError",
    "Settings",
    "Token",
    "TokenGateError",
    "TokenStore",
    "get_authorized_session",
    "get_settings",
    "load_client_secrets",
]
