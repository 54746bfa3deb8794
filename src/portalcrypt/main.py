"""
portalcrypt - Command line entry point.

Lets an operator check a pairing by hand: print the key fingerprint
both peers should agree on, seal or open a single message from stdin,
and inspect the message type policy.
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.markup import escape
from rich.prompt import Prompt
from rich.table import Table

from . import __version__
from .channel import PortalChannel, current_timestamp
from .config import Config
from .constants import LOG_DATE_FORMAT, LOG_FORMAT, PASSPHRASE_ENV_VAR
from .errors import PortalError
from .kdf import KeyCache
from .policy import Disposition, MessagePolicy
from .wire import Message, dumps, loads


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging with the package format."""
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        stream=sys.stderr,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="portalcrypt",
        description="portalcrypt - end-to-end encryption for relayed portal messages",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  portalcrypt fingerprint --desktop-id desktop-abc123
  echo '{"type":"ping","payload":{}}' | portalcrypt seal --desktop-id desktop-abc123
  portalcrypt open --desktop-id desktop-abc123 < envelope.json
  portalcrypt policy

The passphrase is read from --passphrase, then $PORTALCRYPT_PASSPHRASE,
otherwise prompted for.
        """,
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'portalcrypt {__version__}'
    )

    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help='Path to a TOML configuration file (default: ~/.portalcrypt/config.toml)'
    )

    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("fingerprint", "Derive the pairing key and print its fingerprint"),
        ("seal", "Read a message JSON document from stdin and print its envelope"),
        ("open", "Read an envelope JSON document from stdin and print the message"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument('--desktop-id', required=True, help='Stable desktop identifier')
        sub.add_argument('--passphrase', default=None, help='Pairing passphrase')

    subparsers.add_parser("policy", help="Show the message type policy table")

    return parser


def _read_passphrase(args: argparse.Namespace) -> str:
    if args.passphrase:
        return args.passphrase
    from_env = os.environ.get(PASSPHRASE_ENV_VAR)
    if from_env:
        return from_env
    return Prompt.ask("Pairing passphrase", password=True)


def _read_stdin_json() -> dict:
    return loads(sys.stdin.read())


def _show_policy(console: Console, policy: MessagePolicy) -> None:
    table = Table(title=f"Message policy v{policy.version}")
    table.add_column("Type")
    table.add_column("Disposition")
    for msg_type, disposition in policy.as_table().items():
        style = "yellow" if disposition is Disposition.CLEARTEXT else "green"
        table.add_row(msg_type, f"[{style}]{disposition.value}[/{style}]")
    console.print(table)
    console.print("Unregistered types: [green]encrypted[/green]")
    console.print(f"Digest: {policy.digest()}")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the portalcrypt command."""
    args = _build_parser().parse_args(argv)
    console = Console()
    err_console = Console(stderr=True)

    try:
        config = Config(Path(args.config).expanduser() if args.config else None)
        setup_logging("DEBUG" if args.debug else config.get("logging", "level", "INFO"))

        if args.command == "policy":
            _show_policy(console, MessagePolicy.from_config(config))
            return 0

        # One-shot process; nothing to gain from the shared cache.
        channel = PortalChannel.from_config(config, cache=KeyCache())
        channel.pair(_read_passphrase(args), args.desktop_id)

        if args.command == "fingerprint":
            console.out(channel.fingerprint, highlight=False)
        elif args.command == "seal":
            data = _read_stdin_json()
            data.setdefault("timestamp", current_timestamp())
            message = Message.from_dict(data)
            envelope = channel.seal(message.type, message.payload, message.timestamp, **message.routing)
            console.out(dumps(envelope), highlight=False)
        elif args.command == "open":
            message = channel.open(_read_stdin_json())
            console.out(json.dumps(message.to_dict(), ensure_ascii=False), highlight=False)

    except PortalError as e:
        err_console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
