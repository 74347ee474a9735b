#!/usr/bin/env python3
"""Account Book application entry point.

This module provides a unified entry point for both interfaces:
- CLI: Local records and sync commands
- Web: The sync server (HTTP API)

Usage:
    python -m accountbook.main cli list-records     # Use CLI
    python -m accountbook.main cli sync now         # Sync with the server
    python -m accountbook.main web [--port 3001]    # Start sync server
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    """Create the unified argument parser.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        description="Account Book - Personal income and expense records with server sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m accountbook.main cli list-records
  python -m accountbook.main cli new-record --type expense --amount 20 --category food
  python -m accountbook.main cli sync login alice --server http://localhost:3001
  python -m accountbook.main cli sync now
  python -m accountbook.main web --port 3001     Start sync server on port 3001
""",
    )

    parser.add_argument(
        "-d", "--config-dir",
        type=Path,
        default=None,
        help="Custom configuration directory (default: ~/.config/accountbook/)"
    )

    # Create subparsers for each interface
    subparsers = parser.add_subparsers(dest="interface", help="Interface to use")

    from accountbook.cli import add_cli_subparser
    add_cli_subparser(subparsers)

    from accountbook.web import add_web_subparser
    add_web_subparser(subparsers)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for Account Book.

    Parses arguments and dispatches to the appropriate interface.

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.interface == "cli":
        from accountbook.cli import run as run_cli
        return run_cli(args.config_dir, args)
    elif args.interface == "web":
        from accountbook.web import run as run_web
        return run_web(args.config_dir, args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
