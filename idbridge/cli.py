"""Command-line interface for idbridge."""

from __future__ import annotations

import argparse
import os
import sys

from pathlib import Path

from . import __version__


def main(argv: list[str] | None = None) -> int:
    """Run the main CLI entry point.

    Returns
    -------
    int
        Exit code.
    """
    parser = argparse.ArgumentParser(
        prog="idbridge",
        description="idbridge identity client tools",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # config command
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
        "--env",
        action="store_true",
        help="Export configuration as environment variables",
    )
    config_group.add_argument(
        "--sources",
        action="store_true",
        help="Show configuration file sources",
    )
    config_parser.add_argument(
        "--output",
        "-o",
        type=str,
        help="Write output to file instead of stdout",
    )

    # login command
    login_parser = subparsers.add_parser(
        "login",
        help="Sign in through the system browser and print an access token",
    )
    login_parser.add_argument(
        "--scope",
        "-s",
        action="append",
        dest="scopes",
        required=True,
        help="Scope to request (repeatable)",
    )
    login_parser.add_argument("--client-id", type=str, default=None, help="Application (client) ID")
    login_parser.add_argument("--authority", type=str, default=None, help="Authority URL")
    login_parser.add_argument(
        "--redirect-uri",
        type=str,
        default=None,
        help="Loopback redirect URI (http://localhost:<port>/<path>)",
    )
    login_parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)

    if args.command == "config":
        return handle_config(args)
    if args.command == "login":
        return handle_login(args)
    parser.print_help()
    return 0


def handle_config(args: argparse.Namespace) -> int:
    """Handle the config command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code.
    """
    from .config import IdBridgeSettings

    if args.sources:
        return show_config_sources()

    settings = IdBridgeSettings()
    output = settings.to_env() if args.env else settings.show()

    if args.output:
        Path(args.output).write_text(output, encoding="utf-8")
        print(f"Configuration written to {args.output}")
    else:
        print(output)

    return 0


def show_config_sources() -> int:
    """Show configuration file sources and their status.

    Returns
    -------
    int
        Exit code.
    """
    sources = [
        ("pyproject.toml [tool.idbridge]", Path("pyproject.toml")),
        ("./idbridge.toml", Path("idbridge.toml")),
        ("~/.config/idbridge/config.toml", Path.home() / ".config" / "idbridge" / "config.toml"),
    ]
    env_file = os.environ.get("IDBRIDGE_CONFIG_FILE")
    if env_file:
        sources.append(("IDBRIDGE_CONFIG_FILE", Path(env_file)))

    print("Configuration Sources (in order of precedence):\n")
    print(f"{'Source':<40} {'Status':<15} {'Path'}")
    print("-" * 80)
    print(f"{'Built-in defaults':<40} {'Active':<15}")

    for name, path in sources:
        status = "Active" if path.exists() else "Not found"
        print(f"{name:<40} {status:<15} {path}")

    env_vars = sorted(k for k in os.environ if k.startswith("IDBRIDGE_"))
    if env_vars:
        shown = ", ".join(env_vars[:3]) + ("..." if len(env_vars) > 3 else "")
        print(f"{'Environment variables':<40} {f'{len(env_vars)} vars':<15} {shown}")
    else:
        print(f"{'Environment variables':<40} {'None set':<15}")
    return 0


def handle_login(args: argparse.Namespace) -> int:
    """Handle the login command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code.
    """
    from .client import IdentityClient
    from .config import get_settings
    from .exceptions import IdBridgeError
    from .log import enable_debug

    settings = get_settings()
    # The client applies the [log] settings; --debug overrides them
    client = IdentityClient(settings=settings)
    if args.debug:
        enable_debug()
    try:
        client.initialize(
            args.client_id or settings.client.client_id,
            args.authority or settings.client.authority,
            args.redirect_uri or settings.client.redirect_uri,
        )
        record = client.acquire_token(args.scopes)
    except IdBridgeError as exc:
        print(f"Error [{exc.code}]: {exc}", file=sys.stderr)
        return 1
    finally:
        client.close()

    print(f"Signed in as {record.account.username or record.account.identifier}", file=sys.stderr)
    print(record.access_token)
    return 0
