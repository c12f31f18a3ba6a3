"""Command-line interface for claude-key-switch."""

from __future__ import annotations

import argparse
import getpass
import re
import shlex
import sys

from claude_key_switch import __version__
from claude_key_switch.exceptions import KeySwitchError, ValidationError
from claude_key_switch.switcher import KeySwitcher

DEFAULT_ENV_VAR = "ANTHROPIC_API_KEY"

_ENV_VAR_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="claude-key-switch",
        description="Rotate through multiple API keys sequentially",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                      rotate and print the next key
  eval "$(%(prog)s --export)"   rotate and export ANTHROPIC_API_KEY
  %(prog)s --current --export
  %(prog)s --list
  %(prog)s --add-key work < key.txt
  %(prog)s --disable 2
  %(prog)s --switch-to work
  %(prog)s --remove-key work
  %(prog)s --purge
        """,
    )

    # Version and output flags (outside mutually exclusive group)
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s v{__version__}",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--export",
        action="store_true",
        help="Print a shell export statement instead of the bare key",
    )
    parser.add_argument(
        "--var",
        default=DEFAULT_ENV_VAR,
        metavar="NAME",
        help=f"Environment variable used by --export (default: {DEFAULT_ENV_VAR})",
    )
    parser.add_argument(
        "-y",
        "--yes",
        action="store_true",
        help="Do not ask for confirmation",
    )

    group = parser.add_mutually_exclusive_group()
    group.add_argument(
        "--rotate",
        action="store_true",
        help="Rotate to the next key (default)",
    )
    group.add_argument(
        "--current",
        action="store_true",
        help="Print the current key without rotating",
    )
    group.add_argument(
        "--switch-to",
        metavar="NUM|LABEL",
        help="Make a specific key current",
    )
    group.add_argument(
        "--list",
        action="store_true",
        help="List all configured keys (masked)",
    )
    group.add_argument(
        "--status",
        action="store_true",
        help="Show the current key position",
    )
    group.add_argument(
        "--add-key",
        nargs="?",
        const="",
        metavar="LABEL",
        help="Add a key read from stdin, with an optional label",
    )
    group.add_argument(
        "--remove-key",
        metavar="NUM|LABEL",
        help="Remove a key by position or label",
    )
    group.add_argument(
        "--disable",
        metavar="NUM|LABEL",
        help="Skip a key during rotation",
    )
    group.add_argument(
        "--enable",
        metavar="NUM|LABEL",
        help="Re-enable a disabled key",
    )
    group.add_argument(
        "--purge",
        action="store_true",
        help="Remove all claude-key-switch data from the system",
    )
    return parser


def format_key(key: str, export: bool, var: str) -> str:
    """Format a key for stdout, optionally as an eval-able export."""
    if not export:
        return key
    if not _ENV_VAR_PATTERN.match(var):
        raise ValidationError(f"Invalid environment variable name: {var}")
    return f"export {var}={shlex.quote(key)}"


def read_secret() -> str:
    """Read a key from stdin, hiding input on a terminal."""
    if sys.stdin.isatty():
        return getpass.getpass("API key: ").strip()
    return sys.stdin.readline().strip()


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.export and not _ENV_VAR_PATTERN.match(args.var):
        parser.error(f"invalid environment variable name: {args.var}")

    try:
        switcher = KeySwitcher(debug=args.debug)

        if args.current:
            print(format_key(switcher.current_key(), args.export, args.var))
        elif args.switch_to is not None:
            print(format_key(switcher.switch_to(args.switch_to), args.export, args.var))
        elif args.list:
            switcher.list_keys()
        elif args.status:
            switcher.status()
        elif args.add_key is not None:
            switcher.add_key(read_secret(), args.add_key)
        elif args.remove_key is not None:
            switcher.remove_key(args.remove_key, confirm=not args.yes)
        elif args.disable is not None:
            switcher.set_disabled(args.disable, True)
        elif args.enable is not None:
            switcher.set_disabled(args.enable, False)
        elif args.purge:
            switcher.purge(confirm=not args.yes)
        else:
            print(format_key(switcher.rotate(), args.export, args.var))
    except KeySwitchError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(e.exit_code)
    except EOFError:
        print("Error: no input on stdin", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nOperation cancelled", file=sys.stderr)
        sys.exit(130)


if __name__ == "__main__":
    main()
