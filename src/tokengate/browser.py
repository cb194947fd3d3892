# Browser Launcher — best-effort "open this URL" across macOS, Windows, Linux.
# Created: 2026-10-04

from __future__ import annotations

import logging
import platform
import shutil
import subprocess

from tokengate.errors import BrowserError, UnsupportedPlatformError

logger = logging.getLogger(__name__)


def _open_command(system: str, url: str) -> list[str]:
    if system == "Darwin":
        return ["open", url]
    elif system == "Windows":
        return ["rundll32", "url.dll,FileProtocolHandler", url]
    elif system == "Linux":
        return ["xdg-open", url]
    raise UnsupportedPlatformError(f"Cannot open URL on this platform ({system or 'unknown'})")


class BrowserLauncher:
    """Opens URLs in the user's default browser.

    Failures raise BrowserError; callers are expected to fall back to
    showing the URL so the user can open it themselves.
    """

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._system = platform.system()
        self._log = log or logger

    def open(self, url: str) -> None:
        cmd = _open_command(self._system, url)
        if shutil.which(cmd[0]) is None:
            raise BrowserError(f"'{cmd[0]}' not found; cannot open a browser")

        try:
            # Don't wait: xdg-open and friends may block until the browser exits
            subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=self._system != "Windows",
            )
        except OSError as exc:
            raise BrowserError(f"Failed to launch {cmd[0]}: {exc}") from exc

        self._log.info("Opened browser via %s", cmd[0])
