"""Command-line interface of the indexer."""

import argparse
import asyncio
import sys

from rich.console import Console

from blockwatch.data.store import IndexerStore
from blockwatch.errors import BlockProcessingFailed
from blockwatch.helpers.config import load_config
from blockwatch.helpers.db import Base, Database
from blockwatch.helpers.logging import LOG_LEVELS, get_logger, set_log_level
from blockwatch.helpers.metrics import start_metrics_server
from blockwatch.indexing.fill import fill_blocks
from blockwatch.indexing.reset import reset_state
from blockwatch.jobs.queue import JobQueue
from blockwatch.live import LiveIndexer, main as live_main

# Registers every table on Base.metadata
import blockwatch.data.blocks.db  # noqa: F401
import blockwatch.data.events.db  # noqa: F401
import blockwatch.indexer.erc20  # noqa: F401
import blockwatch.jobs.db  # noqa: F401


logger = get_logger(__name__)


async def init_db() -> int:
    database = Database()
    try:
        await database.create_tables()
        logger.info("Created %d table(s)", len(Base.metadata.tables))
    finally:
        await database.close()
    return 0


async def fill(start_block: int, end_block: int, block_timeout: float | None = None) -> int:
    live = LiveIndexer()
    try:
        await live.start_workers()
        await live.watcher.init_complete_handlers()
        await fill_blocks(
            live.database,
            live.store,
            live.watcher,
            start_block=start_block,
            end_block=end_block,
            console=Console(),
            block_timeout=block_timeout,
        )
    finally:
        await live.cleanup()
    return 0


async def reset(block_number: int) -> int:
    config = load_config()
    database = Database()
    try:
        await reset_state(
            database, IndexerStore(), JobQueue(database, config.job_queue), block_number
        )
    finally:
        await database.close()
    return 0


async def watch_contract(address: str, kind: str, starting_block: int) -> int:
    live = LiveIndexer()
    try:
        contract = await live.indexer.watch_contract(address, kind, starting_block)
        logger.info(
            "Watching %s contract %s from block %d",
            contract.kind,
            contract.address,
            contract.starting_block,
        )
    finally:
        await live.cleanup()
    return 0


async def clean_jobs() -> int:
    config = load_config()
    database = Database()
    try:
        await JobQueue(database, config.job_queue).delete_all_jobs()
    finally:
        await database.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="blockwatch",
        description="Reorg-aware blockchain event indexer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create tables
  blockwatch init-db

  # Follow the chain
  blockwatch live

  # Follow the chain with Prometheus metrics on :9000
  blockwatch --metrics-port 9000 live

  # Index a historical range
  blockwatch fill --start-block 100 --end-block 200

  # Rewind to a block
  blockwatch reset-state --block-number 150

  # Watch an ERC-20 token
  blockwatch watch-contract --address 0xA0b8...eB48 --kind erc20 --starting-block 100
        """,
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=list(LOG_LEVELS),
        help="Override LOG_LEVEL for this run",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        help="Serve Prometheus metrics on this port",
    )
    parser.add_argument(
        "--metrics-host",
        default="127.0.0.1",
        help="Address of the metrics endpoint (default: 127.0.0.1)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create database tables")
    subparsers.add_parser("live", help="Index blocks as the chain grows")

    fill_parser = subparsers.add_parser("fill", help="Index a range of blocks")
    fill_parser.add_argument("--start-block", type=int, required=True)
    fill_parser.add_argument("--end-block", type=int, required=True)
    fill_parser.add_argument(
        "--block-timeout",
        type=float,
        help="Abort when no block progresses for this many seconds",
    )

    reset_parser = subparsers.add_parser("reset-state", help="Rewind indexed state")
    reset_parser.add_argument("--block-number", type=int, required=True)

    watch_parser = subparsers.add_parser("watch-contract", help="Watch a contract")
    watch_parser.add_argument("--address", required=True)
    watch_parser.add_argument("--kind", required=True)
    watch_parser.add_argument("--starting-block", type=int, default=0)

    subparsers.add_parser("clean-jobs", help="Delete every queued job")

    return parser


def cli(argv: list[str] | None = None) -> None:
    """Command-line interface entry point."""
    args = build_parser().parse_args(argv)
    if args.log_level:
        set_log_level(args.log_level)
    if args.metrics_port is not None:
        start_metrics_server(args.metrics_host, args.metrics_port)

    if args.command == "live":
        asyncio.run(live_main())
        return

    if args.command == "init-db":
        coro = init_db()
    elif args.command == "fill":
        coro = fill(args.start_block, args.end_block, args.block_timeout)
    elif args.command == "reset-state":
        coro = reset(args.block_number)
    elif args.command == "watch-contract":
        coro = watch_contract(args.address, args.kind, args.starting_block)
    else:
        coro = clean_jobs()

    try:
        exit_code = asyncio.run(coro)
    except (ValueError, BlockProcessingFailed) as e:
        logger.error("%s", e)
        exit_code = 1
    sys.exit(exit_code)


if __name__ == "__main__":
    cli()
