"""Command-line interface for loginflow."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from pathlib import Path
from typing import TYPE_CHECKING

from .auth.orchestrator import LoginOrchestrator
from .config import LoginFlowSettings
from .exceptions import LoginFlowException
from .log import configure, enable_debug


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


def main(argv: list[str] | None = None) -> int:
    """Run the main CLI entry point.

    Returns
    -------
    int
        Exit code.
    """
    parser = argparse.ArgumentParser(
        prog="loginflow",
        description="Interactive sign-in with the authorization code flow",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Log at DEBUG level",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("login", help="Sign in with the system browser")
    subparsers.add_parser("logout", help="Forget the stored refresh token")
    subparsers.add_parser("status", help="Sign in silently and print the login status")

    token_parser = subparsers.add_parser("token", help="Print an access token")
    token_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the full token as JSON",
    )

    config_parser = subparsers.add_parser(
        "config",
        help="Show or export configuration",
    )
    config_group = config_parser.add_mutually_exclusive_group()
    config_group.add_argument(
        "--show",
        action="store_true",
        help="Show current configuration",
    )
    config_group.add_argument(
        "--toml",
        action="store_true",
        help="Export configuration as TOML",
    )
    config_group.add_argument(
        "--env",
        action="store_true",
        help="Export configuration as environment variables",
    )
    config_parser.add_argument(
        "--output",
        "-o",
        type=str,
        help="Output file path (default: stdout)",
    )

    args = parser.parse_args(argv)

    settings = LoginFlowSettings()
    configure(settings.log.level, settings.log.format)
    if args.debug:
        enable_debug()

    handlers: dict[str, Callable[[argparse.Namespace, LoginFlowSettings], int]] = {
        "login": handle_login,
        "logout": handle_logout,
        "status": handle_status,
        "token": handle_token,
        "config": handle_config,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 0
    try:
        return handler(args, settings)
    except LoginFlowException as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


async def prompt_offline() -> bool:
    """Tell the user the provider is unreachable; keep waiting."""
    print(
        "You appear to be offline. Please check your network connection.",
        file=sys.stderr,
    )
    return False


def _run(settings: LoginFlowSettings, action: Callable[[LoginOrchestrator], Awaitable[int]]) -> int:
    """Run ``action`` against a fresh orchestrator on a new event loop."""

    async def _main() -> int:
        async with LoginOrchestrator(settings=settings, offline_prompt=prompt_offline) as orchestrator:
            return await action(orchestrator)

    return asyncio.run(_main())


def handle_login(_args: argparse.Namespace, settings: LoginFlowSettings) -> int:
    """Handle the login command."""

    async def _login(orchestrator: LoginOrchestrator) -> int:
        print("Opening the browser to sign in...", file=sys.stderr)
        await orchestrator.login()
        session = orchestrator.sessions[0]
        print(f"Signed in as {session.user_id or 'unknown user'} ({session.environment.name})")
        return 0

    return _run(settings, _login)


def handle_logout(_args: argparse.Namespace, settings: LoginFlowSettings) -> int:
    """Handle the logout command."""

    async def _logout(orchestrator: LoginOrchestrator) -> int:
        orchestrator.start()
        await orchestrator.logout()
        print("Signed out")
        return 0

    return _run(settings, _logout)


def handle_status(_args: argparse.Namespace, settings: LoginFlowSettings) -> int:
    """Handle the status command."""

    async def _status(orchestrator: LoginOrchestrator) -> int:
        await orchestrator.initialize("status")
        print(orchestrator.status.value)
        for session in orchestrator.sessions:
            print(f"  {session.environment.name}: {session.user_id} (tenant {session.tenant_id})")
        return 0

    return _run(settings, _status)


def handle_token(args: argparse.Namespace, settings: LoginFlowSettings) -> int:
    """Handle the token command."""

    async def _token(orchestrator: LoginOrchestrator) -> int:
        orchestrator.start()
        token = await orchestrator.get_token()
        if args.json:
            print(
                json.dumps(
                    {
                        "access_token": token.access_token,
                        "refresh_token": token.refresh_token,
                        "expires_in": token.expires_in,
                        "expires_on": token.expires_on,
                    },
                    indent=2,
                )
            )
        else:
            print(token.access_token)
        return 0

    return _run(settings, _token)


def handle_config(args: argparse.Namespace, settings: LoginFlowSettings) -> int:
    """Handle the config command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.
    settings : LoginFlowSettings
        The loaded settings.

    Returns
    -------
    int
        Exit code.
    """
    if args.toml:
        output = settings.to_toml()
    elif args.env:
        output = settings.to_env()
    else:
        output = settings.show()

    if args.output:
        Path(args.output).write_text(output, encoding="utf-8")
        print(f"Configuration written to {args.output}")
    else:
        print(output)

    return 0


if __name__ == "__main__":
    sys.exit(main())
