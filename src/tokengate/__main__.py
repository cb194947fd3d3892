"""tokengate entry point.

Changes:
  - 2026-10-17: Unparseable TOKENGATE_* settings report as bootstrap errors.
  - 2026-10-08: Added `token` subcommand (prints a fresh access token for scripts).
  - 2026-10-07: --manual/--local override TOKENGATE_FLOW_MODE for one run.
  - 2026-10-06: Fatal errors print the failing stage and exit 1.
  - 2026-10-05: Rich logging via setup_logging().
"""

import argparse
import asyncio
import logging
import sys
from importlib.metadata import version as get_version
from pathlib import Path

from pydantic import ValidationError
from pydantic_settings import SettingsError
from rich.console import Console

from tokengate.config import Settings, get_settings, get_token_path
from tokengate.errors import ConfigError, TokenGateError
from tokengate.flow import AuthorizationFlow
from tokengate.logging_setup import setup_logging
from tokengate.token_store import TokenStore

logger = logging.getLogger(__name__)

console = Console(highlight=False, markup=False, soft_wrap=True)
err_console = Console(stderr=True, highlight=False, markup=False, soft_wrap=True)


async def cmd_login(args: argparse.Namespace, settings: Settings) -> int:
    """Authorize (or reuse the cached token) and report the result."""
    flow = AuthorizationFlow.from_settings(settings)
    session = await flow.run(force=args.force)
    token = session.token
    expires = token.expires_at.isoformat() if token.expires_at else "never"
    console.print(f"Authorized. Token cached at {flow.store.path} (expires {expires})")
    return 0


async def cmd_token(args: argparse.Namespace, settings: Settings) -> int:
    """Print a currently valid access token on stdout."""
    flow = AuthorizationFlow.from_settings(settings)
    session = await flow.run(force=args.force)
    token = await session.ensure_fresh()
    print(token.access_token)
    return 0


async def cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    """Describe the cached token without revealing it."""
    store = TokenStore(get_token_path(settings))
    token = store.load()
    if token is None:
        console.print(f"No cached token at {store.path}")
        return 1

    state = "expired" if token.expired else "valid"
    expires = token.expires_at.isoformat() if token.expires_at else "never"
    console.print(f"Cache:         {store.path}")
    console.print(f"Token type:    {token.token_type}")
    console.print(f"Status:        {state} (expires {expires})")
    console.print(f"Refreshable:   {'yes' if token.refresh_token else 'no'}")
    console.print(f"Scopes:        {' '.join(token.scopes) or '-'}")
    return 0 if token.usable else 1


async def cmd_logout(args: argparse.Namespace, settings: Settings) -> int:
    """Forget the cached token."""
    store = TokenStore(get_token_path(settings))
    if store.delete():
        console.print(f"Removed {store.path}")
    else:
        console.print(f"No cached token at {store.path}")
    return 0


COMMANDS = {
    "login": cmd_login,
    "token": cmd_token,
    "status": cmd_status,
    "logout": cmd_logout,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tokengate",
        description="OAuth2 authorization-code login for command-line tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  tokengate login --scope https://www.googleapis.com/auth/youtube.readonly
  tokengate login --manual           Paste the code instead of using the local listener
  tokengate login --force            Ignore the cached token and authorize again
  tokengate token                    Print a valid access token (refreshing if needed)
  tokengate status                   Show what is cached
  tokengate logout                   Delete the cached token
""",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="login",
        choices=sorted(COMMANDS),
        help="What to do (default: login)",
    )
    parser.add_argument(
        "--credentials",
        "-c",
        type=Path,
        default=None,
        help="Client credentials JSON (default: TOKENGATE_CREDENTIALS_FILE or client_credentials.json)",
    )
    parser.add_argument(
        "--scope",
        "-s",
        action="append",
        dest="scopes",
        default=None,
        help="OAuth scope to request (repeatable)",
    )
    parser.add_argument(
        "--port",
        "-p",
        type=int,
        default=None,
        help="Port for the local redirect listener (default: 8090)",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--manual",
        action="store_const",
        const="manual",
        dest="flow_mode",
        help="Print the URL and prompt for the code instead of listening locally",
    )
    mode.add_argument(
        "--local",
        action="store_const",
        const="local",
        dest="flow_mode",
        help="Only use the local redirect listener (no manual fallback)",
    )
    parser.add_argument(
        "--force", "-f", action="store_true", help="Ignore the cached token"
    )
    parser.add_argument(
        "--no-browser",
        action="store_true",
        help="Don't open the browser automatically",
    )
    parser.add_argument(
        "--log-level", default=None, help="Log level (default: TOKENGATE_LOG_LEVEL or INFO)"
    )
    parser.add_argument(
        "--version",
        "-v",
        action="version",
        version=f"%(prog)s {get_version('tokengate')}",
    )
    return parser


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Command-line flags win over environment settings."""
    updates = {}
    if args.credentials is not None:
        updates["credentials_file"] = args.credentials
    if args.scopes:
        updates["scopes"] = args.scopes
    if args.port is not None:
        updates["callback_port"] = args.port
    if args.flow_mode:
        updates["flow_mode"] = args.flow_mode
    if args.no_browser:
        updates["open_browser"] = False
    if args.log_level:
        updates["log_level"] = args.log_level
    return settings.model_copy(update=updates) if updates else settings


def load_settings(args: argparse.Namespace) -> Settings:
    """Environment settings plus command-line overrides.

    Raises:
        ConfigError: a TOKENGATE_* variable (or .env entry) does not parse.
    """
    try:
        settings = get_settings()
    except (SettingsError, ValidationError) as exc:
        raise ConfigError(f"Invalid TOKENGATE_* setting: {exc}") from exc
    return apply_overrides(settings, args)


def main() -> None:
    """Main entry point."""
    args = build_parser().parse_args()

    try:
        settings = load_settings(args)
        setup_logging(level=settings.log_level)
        exit_code = asyncio.run(COMMANDS[args.command](args, settings))
    except TokenGateError as exc:
        err_console.print(f"error [{exc.stage}]: {exc}")
        if exc.cause is not None:
            err_console.print(f"  caused by: {exc.cause!r}")
        exit_code = 1
    except KeyboardInterrupt:
        err_console.print("Interrupted.")
        exit_code = 130

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
