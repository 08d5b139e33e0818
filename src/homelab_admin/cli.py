"""Command-line interface for homelab-admin.

Provides the main entry point for serving the admin API and for running a
single command from a terminal, either in-process or against a running
server.
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, AsyncIterator, Awaitable, Callable

from homelab_admin.domain.models import (
    CommandEvent,
    CommandKind,
    DoneEvent,
    ErrorEvent,
    OutputEvent,
    PasswordPromptEvent,
)

if TYPE_CHECKING:
    from homelab_admin.config.settings import Settings

logger = logging.getLogger(__name__)

PASSWORD_PROMPT = "[homelab-admin] password: "


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="homelab-admin",
        description="Run repository updates and configuration rebuilds with live output",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/homelab-admin.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("serve", help="Start the admin API server")

    run_parser = subparsers.add_parser("run", help="Run one command and follow its output")
    run_parser.add_argument(
        "kind", choices=[k.value for k in CommandKind],
        help="Command to run",
    )
    run_parser.add_argument(
        "--server", type=str, default=None,
        help="Base URL of a running admin API (default: run in-process)",
    )

    return parser.parse_args(argv)


async def _follow(
    events: AsyncIterator[CommandEvent],
    send_input: Callable[[str], Awaitable[None]],
) -> int:
    """Print a session's events and answer password prompts.

    Returns the command's exit code, or 1 if the service ended it.
    """
    async for event in events:
        if isinstance(event, OutputEvent):
            sys.stdout.write(event.text)
            sys.stdout.flush()
        elif isinstance(event, PasswordPromptEvent):
            password = await asyncio.to_thread(getpass.getpass, PASSWORD_PROMPT)
            await send_input(password)
        elif isinstance(event, DoneEvent):
            print(f"\nFinished with exit code {event.exit_code} in {event.duration_ms / 1000:.1f}s")
            return event.exit_code
        elif isinstance(event, ErrorEvent):
            print(f"\nError: {event.message}", file=sys.stderr)
            return 1
    return 1


async def _run_local(settings: Settings, kind: str) -> int:
    """Run a command through an in-process session registry."""
    from homelab_admin.commands import CommandError, EventChannel, SessionRegistry

    registry = SessionRegistry(settings=settings.commands)
    try:
        try:
            session_id = await registry.start_command(kind, settings.repository.path)
        except CommandError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 2

        async def send_input(text: str) -> None:
            registry.send_stdin(session_id, text)

        channel = EventChannel()
        unsubscribe = registry.subscribe(session_id, channel.push)
        try:
            return await _follow(channel, send_input)
        finally:
            channel.close()
            unsubscribe()
    finally:
        await registry.shutdown()


async def _run_remote(base_url: str, kind: str) -> int:
    """Run a command on a running admin API server."""
    from homelab_admin.client import AdminClient, AdminClientError

    try:
        async with AdminClient(base_url=base_url) as client:
            session_id = await client.start(kind)

            async def send_input(text: str) -> None:
                await client.send_stdin(session_id, text)

            return await _follow(client.stream(session_id), send_input)
    except AdminClientError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the homelab-admin CLI."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return

    from homelab_admin.config.settings import load_settings
    from homelab_admin.utils.logging import setup_logging

    settings = load_settings(args.config)

    if args.verbose:
        settings.logging.level = "DEBUG"

    setup_logging(settings.logging)

    if args.command == "serve":
        logger.info("Starting admin API on %s:%d", settings.server.host, settings.server.port)
        from homelab_admin.api.server import main as serve
        serve(settings)

    elif args.command == "run":
        if args.server:
            logger.info("Running %s on %s", args.kind, args.server)
            code = asyncio.run(_run_remote(args.server, args.kind))
        else:
            logger.info("Running %s in %s", args.kind, settings.repository.path)
            code = asyncio.run(_run_local(settings, args.kind))
        sys.exit(code)


if __name__ == "__main__":
    main()
