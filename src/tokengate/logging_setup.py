# Logging setup — one Rich console sink on the root logger.
# Created: 2026-10-05

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_QUIET_LOGGERS = ("httpx", "httpcore", "aiohttp.access", "asyncio")


def setup_logging(level: str | int = "INFO", console: Console | None = None) -> None:
    """Route all logging through a single RichHandler on stderr.

    Safe to call repeatedly: the previous handler is replaced, not stacked.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    root.addHandler(handler)
    root.setLevel(level.upper() if isinstance(level, str) else level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
