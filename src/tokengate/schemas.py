# Wire schemas — client secrets file and token endpoint payloads.
# Created: 2026-10-03

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator


class ClientSecrets(BaseModel):
    """OAuth client registration as downloaded from the provider console."""

    client_id: str = Field(..., min_length=1)
    client_secret: str = ""
    auth_uri: str = Field(..., min_length=1)
    token_uri: str = Field(..., min_length=1)
    redirect_uris: list[str] = Field(default_factory=list)
    scopes: list[str] = Field(default_factory=list)


class ClientSecretsFile(BaseModel):
    """Top-level credentials file.

    Accepts the Google layout (``{"installed": {...}}`` or ``{"web": {...}}``)
    as well as a flat object carrying the client fields directly.
    """

    installed: ClientSecrets | None = None
    web: ClientSecrets | None = None

    @model_validator(mode="before")
    @classmethod
    def _wrap_flat(cls, data):
        if isinstance(data, dict) and "installed" not in data and "web" not in data:
            return {"installed": data}
        return data

    @property
    def client(self) -> ClientSecrets:
        client = self.installed or self.web
        if client is None:
            raise ValueError("credentials file has no 'installed' or 'web' section")
        return client


class TokenResponse(BaseModel):
    """OAuth2 token endpoint response (code exchange or refresh)."""

    access_token: str = Field(..., min_length=1)
    token_type: str = "Bearer"
    refresh_token: str | None = None
    expires_in: int | None = None
    scope: str | None = None
