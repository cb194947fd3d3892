# Errors — failure taxonomy for the authorization flow.
# Created: 2026-10-03
#
# Every error names the stage that failed so the CLI can report it.
# Causes are chained with ``raise ... from exc``.

from __future__ import annotations


class TokenGateError(Exception):
    """Base error for all tokengate failures."""

    stage = "flow"

    def __init__(self, message: str, *, stage: str | None = None):
        super().__init__(message)
        if stage is not None:
            self.stage = stage

    @property
    def cause(self) -> BaseException | None:
        return self.__cause__


class ConfigError(TokenGateError):
    """Raised when the client credentials file is missing or malformed."""

    stage = "bootstrap"


class CacheError(TokenGateError):
    """Raised when the cached token exists but cannot be read or parsed."""

    stage = "cache"


class PersistenceError(TokenGateError):
    """Raised when the token cannot be written to the cache file."""

    stage = "persist"


class BindError(TokenGateError):
    """Raised when the callback listener cannot bind its loopback port."""

    stage = "bind"


class BrowserError(TokenGateError):
    """Raised when the browser could not be launched."""

    stage = "browser"


class UnsupportedPlatformError(BrowserError):
    """Raised when there is no known way to open a URL on this OS."""


class ExchangeError(TokenGateError):
    """Raised when the authorization code cannot be turned into a token."""

    stage = "exchange"


class CallbackTimeoutError(TokenGateError):
    """Raised when no redirect arrived before the consent deadline."""

    stage = "consent"
