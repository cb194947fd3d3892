"""Callback Listener — transient loopback HTTP endpoint for the OAuth redirect.

Accepts exactly one redirect on any path, hands its ``code`` (plus ``state``
and ``error``) to the waiting caller through a one-shot future, answers the
browser with a plain-text confirmation and stops listening. Requests that
slip in on already-open connections afterwards get ``410 Gone``.

Created: 2026-10-04
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from aiohttp import web

from tokengate.errors import BindError, CallbackTimeoutError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallbackResult:
    """Query parameters delivered by the authorization server's redirect.

    ``pasted`` marks values the user typed in at the prompt rather than ones
    that arrived on the listener.
    """

    code: str = ""
    state: str = ""
    error: str = ""
    error_description: str = ""
    pasted: bool = False


class CallbackListener:
    """One-shot redirect receiver bound to a loopback host/port.

    Use as an async context manager so the socket is released on every
    exit path::

        async with CallbackListener(port=8090) as listener:
            result = await listener.wait(timeout=300)
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 8090,
        log: logging.Logger | None = None,
    ):
        self.host = host
        self.port = port
        self._log = log or logger
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self._result: asyncio.Future[CallbackResult] | None = None

    @property
    def listening(self) -> bool:
        return self._site is not None

    async def start(self) -> asyncio.Future[CallbackResult]:
        """Bind the port and start serving.

        Returns the future that resolves with the first redirect.

        Raises:
            BindError: the port is unavailable (e.g. a previous run still
                holds it). Not retried.
        """
        if self._runner is not None:
            raise RuntimeError("CallbackListener already started")

        self._result = asyncio.get_running_loop().create_future()

        app = web.Application()
        app.router.add_route("GET", "/{tail:.*}", self._handle_redirect)

        runner = web.AppRunner(app, access_log=None, shutdown_timeout=1.0)
        await runner.setup()
        site = web.TCPSite(runner, self.host, self.port)
        try:
            await site.start()
        except OSError as exc:
            await runner.cleanup()
            raise BindError(f"Cannot listen on {self.host}:{self.port}: {exc}") from exc

        self._runner = runner
        self._site = site
        self._log.info("Waiting for OAuth redirect on http://%s:%d/", self.host, self.port)
        return self._result

    async def wait(self, timeout: float | None = None) -> CallbackResult:
        """Block until the redirect arrives.

        Raises:
            CallbackTimeoutError: nothing arrived within ``timeout`` seconds.
        """
        if self._result is None:
            raise RuntimeError("CallbackListener not started")
        try:
            return await asyncio.wait_for(asyncio.shield(self._result), timeout)
        except TimeoutError as exc:
            raise CallbackTimeoutError(
                f"No OAuth redirect received within {timeout:g}s"
            ) from exc

    async def close(self) -> None:
        """Stop listening and release the port. Safe to call more than once."""
        runner, self._runner = self._runner, None
        self._site = None
        if self._result is not None and not self._result.done():
            self._result.cancel()
        if runner is not None:
            await runner.cleanup()
            self._log.debug("Callback listener on port %d closed", self.port)

    async def __aenter__(self) -> CallbackListener:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _handle_redirect(self, request: web.Request) -> web.Response:
        if self._result is None or self._result.done():
            return web.Response(status=410, text="Authorization response already received.\r\n")

        result = CallbackResult(
            code=request.query.get("code", ""),
            state=request.query.get("state", ""),
            error=request.query.get("error", ""),
            error_description=request.query.get("error_description", ""),
        )
        self._result.set_result(result)

        # Stop accepting before answering so nothing can race in behind us
        site, self._site = self._site, None
        if site is not None:
            await site.stop()

        if result.code:
            self._log.info("Received authorization code")
            body = (
                f"Received code: {result.code}\r\n"
                "You can now safely close this browser window."
            )
        else:
            self._log.warning(
                "Redirect arrived without a code (error=%s)", result.error or "none"
            )
            body = (
                "No authorization code was received"
                + (f" ({result.error})" if result.error else "")
                + ".\r\nReturn to the terminal for details; you can close this window."
            )
        return web.Response(text=body, content_type="text/plain")
