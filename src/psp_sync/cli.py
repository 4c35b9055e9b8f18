#!/usr/bin/env python3
"""Command-line interface for running PSP syncs.

Usage:
    python -m psp_sync.cli run --provider stripe --account acct_1 --page-size 100
    python -m psp_sync.cli run --provider increase --max-steps 50
    python -m psp_sync.cli run --provider increase_pending --account acct_1
    python -m psp_sync.cli status --provider stripe --account acct_1
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from .connectors import PAGE_SOURCES, get_page_source
from .database import Base, create_async_engine, get_async_session_factory, get_database_url
from .services import DEFAULT_PAGE_SIZE, SyncService, default_max_steps
from .timeline import PageSource, PageSourceError, TimelineError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_RETRYABLE = 2
EXIT_FATAL = 3


async def run_sync_async(
    source: PageSource,
    account_id: str,
    page_size: int,
    max_steps: Optional[int] = None,
    database_url: Optional[str] = None,
) -> int:
    """Run a sync and print its summary as JSON.

    Returns:
        Exit code.
    """
    engine = create_async_engine(database_url=database_url or get_database_url())
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = get_async_session_factory(engine)

    try:
        async with session_factory() as session:
            service = SyncService(session, source, account_id=account_id)
            try:
                summary = await service.run(page_size=page_size, max_steps=max_steps)
            except PageSourceError as e:
                logger.error(f"Sync failed: {e}")
                return EXIT_RETRYABLE if e.retryable else EXIT_FATAL
            except TimelineError as e:
                logger.error(f"Sync failed and needs attention: {e}")
                return EXIT_FATAL

            print(json.dumps(summary.to_dict(), indent=2))
            if summary.has_more:
                logger.info("More data is pending; run the sync again to continue")
            return EXIT_OK
    finally:
        await engine.dispose()


async def show_status_async(
    source: PageSource,
    account_id: str,
    database_url: Optional[str] = None,
) -> int:
    """Print the progress of a lineage as JSON."""
    engine = create_async_engine(database_url=database_url or get_database_url())
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = get_async_session_factory(engine)

    try:
        async with session_factory() as session:
            progress = await SyncService(session, source, account_id=account_id).get_progress()
            if progress is None:
                logger.error(f"No sync state for {source.name}/{account_id}")
                return EXIT_USAGE
            print(json.dumps(progress, indent=2))
            return EXIT_OK
    finally:
        await engine.dispose()


def positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="psp-sync",
        description="Incremental, resumable syncs of PSP payment listings.",
    )
    parser.add_argument("--database-url", help="Database URL (default: DATABASE_URL env var)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    for name, help_text in (("run", "Run sync steps"), ("status", "Show sync progress")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument(
            "--provider", "-p",
            required=True,
            choices=sorted(PAGE_SOURCES),
            help="PSP provider",
        )
        sub.add_argument("--account", "-a", default="default", help="Account ID (default: default)")
        if name == "run":
            sub.add_argument(
                "--page-size", "-n",
                type=positive_int,
                default=DEFAULT_PAGE_SIZE,
                help=f"Records per step (default: {DEFAULT_PAGE_SIZE})",
            )
            sub.add_argument(
                "--max-steps",
                type=positive_int,
                default=None,
                help="Stop after this many steps (default: SYNC_MAX_STEPS or unlimited)",
            )

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Optional list of command-line arguments (for testing).

    Returns:
        Exit code.
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    logging.basicConfig(
        level=logging.DEBUG if parsed_args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if not parsed_args.command:
        parser.print_help()
        return EXIT_USAGE

    try:
        source = get_page_source(parsed_args.provider)
    except ValueError as e:
        logger.error(str(e))
        return EXIT_USAGE

    if parsed_args.command == "run":
        max_steps = parsed_args.max_steps if parsed_args.max_steps is not None else default_max_steps()
        return asyncio.run(run_sync_async(
            source=source,
            account_id=parsed_args.account,
            page_size=parsed_args.page_size,
            max_steps=max_steps,
            database_url=parsed_args.database_url,
        ))

    return asyncio.run(show_status_async(
        source=source,
        account_id=parsed_args.account,
        database_url=parsed_args.database_url,
    ))


if __name__ == "__main__":
    sys.exit(main())
