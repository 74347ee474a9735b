#!/usr/bin/env python3
"""Sync server entry point for Account Book.

Endpoints:
    POST /api/register           Create an account
    POST /api/login              Exchange username/password for a token
    POST /api/sync/upload        Push changed records (auth)
    POST /api/sync/download      Pull records above a version (auth)
    GET  /api/status             Server status

All endpoints answer with {"code": 0 | -1, "msg": "...", "data": ...}.
Authenticated endpoints expect "Authorization: Bearer <token>".
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional

from flask import Flask

from accountbook.core.config import Config
from accountbook.core.database import Database
from accountbook.core.sync import create_sync_server

logger = logging.getLogger(__name__)


def create_app(config_dir: Optional[Path] = None) -> Flask:
    """Create and configure the sync server application.

    Args:
        config_dir: Custom configuration directory (default: None)

    Returns:
        Configured Flask application
    """
    config = Config(config_dir=config_dir)
    db_path = config.get_database_file()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    db = Database(db_path)

    logger.info(f"Sync server initialized with database: {db_path}")
    return create_sync_server(db, config)


def add_web_subparser(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    """Add web subparser and its arguments.

    Args:
        subparsers: Parent subparsers object to add web parser to
    """
    web_parser = subparsers.add_parser(
        "web",
        help="Start the sync server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    web_parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind to (default: from config, 127.0.0.1)"
    )

    web_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to bind to (default: from config, 3001)"
    )

    web_parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode"
    )


def run(config_dir: Optional[Path], args: argparse.Namespace) -> int:
    """Run the sync server with given arguments.

    Args:
        config_dir: Custom configuration directory or None for default
        args: Parsed command-line arguments (should have host, port, debug attributes)

    Returns:
        Exit code (0 for success)
    """
    logger.info("Starting Account Book sync server")
    if config_dir:
        logger.info(f"Using custom config directory: {config_dir}")

    config = Config(config_dir=config_dir)
    app = create_app(config_dir=config_dir)

    app.run(
        host=args.host or config.get_server_host(),
        port=args.port or config.get_server_port(),
        debug=args.debug,
        threaded=True,
    )

    return 0
