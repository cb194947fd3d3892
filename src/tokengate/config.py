# Configuration — runtime settings and the client credentials bootstrap.
# Created: 2026-10-03
#
# Settings come from TOKENGATE_* environment variables (or a .env file).
# The credentials file is read once and turned into an immutable
# AuthorizationConfig; any problem with it is a ConfigError.

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from tokengate.errors import ConfigError
from tokengate.schemas import ClientSecretsFile

logger = logging.getLogger(__name__)

FlowMode = Literal["local", "manual", "auto"]


class Settings(BaseSettings):
    """Runtime settings loaded from environment."""

    app_name: str = "tokengate"
    credentials_file: Path = Path("client_credentials.json")
    scopes: list[str] = []

    callback_host: str = "localhost"
    callback_port: int = 8090
    redirect_uri: str | None = None

    flow_mode: FlowMode = "auto"
    callback_timeout: float | None = 300.0
    open_browser: bool = True
    use_pkce: bool = True

    http_timeout: float = 15.0
    token_file: Path | None = None
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="TOKENGATE_", env_file=".env", extra="ignore")

    @property
    def consent_timeout(self) -> float | None:
        """Seconds to wait for the redirect, or None to wait forever."""
        if not self.callback_timeout or self.callback_timeout <= 0:
            return None
        return self.callback_timeout

    @property
    def default_redirect_uri(self) -> str:
        return self.redirect_uri or f"http://{self.callback_host}:{self.callback_port}/"


@lru_cache
def get_settings() -> Settings:
    return Settings()


def get_config_dir(settings: Settings | None = None) -> Path:
    """Per-user directory holding the token cache (``~/.<app_name>``)."""
    settings = settings or get_settings()
    return Path.home() / f".{settings.app_name}"


def get_token_path(settings: Settings | None = None) -> Path:
    """Location of the cached token (``~/.<app>/<app>-token.json``)."""
    settings = settings or get_settings()
    if settings.token_file is not None:
        return settings.token_file.expanduser()
    return get_config_dir(settings) / f"{settings.app_name}-token.json"


@dataclass(frozen=True)
class AuthorizationConfig:
    """Everything needed to talk to one authorization server for one scope set."""

    client_id: str
    client_secret: str
    auth_url: str
    token_url: str
    scopes: tuple[str, ...]
    redirect_uri: str

    def with_scopes(self, *scopes: str) -> AuthorizationConfig:
        """Same client, different scope set."""
        return AuthorizationConfig(
            client_id=self.client_id,
            client_secret=self.client_secret,
            auth_url=self.auth_url,
            token_url=self.token_url,
            scopes=tuple(scopes),
            redirect_uri=self.redirect_uri,
        )


def load_client_secrets(
    path: Path | str,
    scopes: list[str] | tuple[str, ...] | None = None,
    redirect_uri: str | None = None,
) -> AuthorizationConfig:
    """Parse the client credentials file into an AuthorizationConfig.

    Args:
        path: JSON file with client id/secret and endpoint URLs.
        scopes: Scopes to request. Falls back to a ``scopes`` list in the file.
        redirect_uri: Redirect target. Falls back to the file's first
            ``redirect_uris`` entry.

    Raises:
        ConfigError: the file is missing, unreadable, not JSON, or lacks
            required fields, or no scopes were given.
    """
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigError(f"Credentials file not found: {path}") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read credentials file {path}: {exc}") from exc

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Credentials file {path} is not valid JSON: {exc}") from exc

    try:
        client = ClientSecretsFile.model_validate(data).client
    except (ValidationError, ValueError) as exc:
        raise ConfigError(f"Credentials file {path} is malformed: {exc}") from exc

    requested = tuple(scopes or client.scopes)
    if not requested:
        raise ConfigError("No OAuth scopes configured (set TOKENGATE_SCOPES or --scope)")

    redirect = redirect_uri or (client.redirect_uris[0] if client.redirect_uris else "")
    if not redirect:
        raise ConfigError(f"No redirect URI configured and none listed in {path}")

    logger.debug("Loaded client %s from %s", client.client_id, path)
    return AuthorizationConfig(
        client_id=client.client_id,
        client_secret=client.client_secret,
        auth_url=client.auth_uri,
        token_url=client.token_uri,
        scopes=requested,
        redirect_uri=redirect,
    )


def load_authorization_config(settings: Settings | None = None) -> AuthorizationConfig:
    """Build the AuthorizationConfig described by the current settings."""
    settings = settings or get_settings()
    return load_client_secrets(
        settings.credentials_file,
        scopes=settings.scopes,
        redirect_uri=settings.default_redirect_uri,
    )
