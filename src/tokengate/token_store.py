# Token Store — file-based OAuth token persistence at ~/.<app>/<app>-token.json.
# Created: 2026-10-03
#
# The file holds a bearer credential: the directory is 0700 and the file 0600.
# Writes go to a temp file in the same directory and are os.replace()d over
# the target, so a crash never leaves a half-written token behind.

from __future__ import annotations

import json
import logging
import os
import stat
import tempfile
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from tokengate.errors import CacheError, PersistenceError

logger = logging.getLogger(__name__)

# Treat tokens as expired slightly early so they don't die mid-request
EXPIRY_SKEW = timedelta(seconds=60)

_DIR_MODE = stat.S_IRWXU  # 0700
_FILE_MODE = stat.S_IRUSR | stat.S_IWUSR  # 0600


@dataclass
class Token:
    """OAuth 2.0 token set."""

    access_token: str
    token_type: str = "Bearer"
    refresh_token: str | None = None
    expires_at: datetime | None = None  # UTC; None = no known expiry
    scopes: list[str] = field(default_factory=list)

    @property
    def expired(self) -> bool:
        if self.expires_at is None:
            return False
        return datetime.now(UTC) >= self.expires_at - EXPIRY_SKEW

    @property
    def usable(self) -> bool:
        """Valid now, or refreshable without user interaction."""
        return bool(self.access_token) and (not self.expired or bool(self.refresh_token))

    @property
    def authorization_header(self) -> str:
        return f"{self.token_type or 'Bearer'} {self.access_token}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "scopes": list(self.scopes),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Token:
        expires_at = data.get("expires_at")
        if expires_at:
            expires_at = datetime.fromisoformat(expires_at)
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=UTC)
        return cls(
            access_token=data["access_token"],
            token_type=data.get("token_type") or "Bearer",
            refresh_token=data.get("refresh_token"),
            expires_at=expires_at or None,
            scopes=list(data.get("scopes") or []),
        )


def ensure_private_dir(path: Path) -> Path:
    """Create ``path`` (and parents) with owner-only permissions.

    Idempotent: an existing directory is left in place.
    """
    path.mkdir(mode=_DIR_MODE, parents=True, exist_ok=True)
    return path


class TokenStore:
    """Single-token file store.

    ``load()`` distinguishes a missing cache (returns None) from a broken one
    (raises CacheError) so callers can fall back to a fresh authorization.
    """

    def __init__(self, path: Path | str, log: logging.Logger | None = None):
        self.path = Path(path).expanduser()
        self._log = log or logger

    def load(self) -> Token | None:
        """Load the cached token. Returns None if there is no cache file."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise CacheError(f"Cannot read token cache {self.path}: {exc}") from exc

        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("token cache is not a JSON object")
            token = Token.from_dict(data)
        except (ValueError, KeyError, TypeError) as exc:
            raise CacheError(f"Token cache {self.path} is corrupt: {exc}") from exc

        if not token.access_token:
            raise CacheError(f"Token cache {self.path} has an empty access token")

        self._log.debug("Loaded cached token from %s", self.path)
        return token

    def save(self, token: Token) -> None:
        """Atomically replace the cache file with ``token``."""
        try:
            ensure_private_dir(self.path.parent)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
        except OSError as exc:
            raise PersistenceError(f"Cannot write token cache {self.path}: {exc}") from exc

        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                os.chmod(tmp_path, _FILE_MODE)
                json.dump(token.to_dict(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            raise PersistenceError(f"Cannot write token cache {self.path}: {exc}") from exc

        self._log.info("Saved OAuth token to %s", self.path)

    def delete(self) -> bool:
        """Delete the cache file. Returns True if deleted."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        self._log.info("Deleted cached token %s", self.path)
        return True
