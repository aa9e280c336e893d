#!/usr/bin/env python3
"""CLI for the users API.

Usage:
    python -m cli <command>

Commands:
    serve      Run the HTTP server
    init-db    Create database tables for the current models
"""

import argparse
import asyncio
import sys

import uvicorn

from core.config import get_settings
from core.database import create_engine, dispose_engine, init_db
from core.logger import configure_logging, get_logger, shutdown_logging

logger = get_logger(__name__)


def cmd_serve(host: str | None, port: int | None) -> int:
    """Run the API under uvicorn until interrupted."""
    settings = get_settings()
    host = host or settings.host
    port = port or settings.port

    logger.info("server.starting", host=host, port=port)
    uvicorn.run(
        "main:create_app",
        factory=True,
        host=host,
        port=port,
        log_config=None,  # keep the structlog handlers installed at startup
    )
    logger.info("server.stopped")
    return 0


async def _init_db() -> None:
    engine = create_engine(get_settings())
    try:
        await init_db(engine, create_schema=True)
    finally:
        await dispose_engine(engine)


def cmd_init_db() -> int:
    """Create database tables."""
    logger.info("db.init.starting")
    asyncio.run(_init_db())
    logger.info("db.init.complete")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Users API CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP server")
    serve_parser.add_argument("--host", default=None, help="Override HOST")
    serve_parser.add_argument("--port", type=int, default=None, help="Override PORT")

    subparsers.add_parser("init-db", help="Create database tables")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 1

    settings = get_settings()
    configure_logging(settings.log_level, json_output=settings.log_format == "json")
    try:
        if args.command == "serve":
            return cmd_serve(args.host, args.port)
        return cmd_init_db()
    finally:
        shutdown_logging()


if __name__ == "__main__":
    sys.exit(main())
