"""Indexing of a historical block range."""

import asyncio

from rich.console import Console

from blockwatch.data.store import IndexerStore
from blockwatch.errors import BlockProcessingFailed
from blockwatch.helpers.db import Database
from blockwatch.helpers.logging import get_logger
from blockwatch.helpers.progress import add_block_task, create_block_progress
from blockwatch.indexing.watcher import EventWatcher


logger = get_logger(__name__)


async def fill_blocks(
    database: Database,
    store: IndexerStore,
    watcher: EventWatcher,
    *,
    start_block: int,
    end_block: int,
    console: Console | None = None,
    block_timeout: float | None = None,
) -> int:
    """Index ``start_block`` through ``end_block``, one height after another.

    Resumes after the latest indexed block when one exists. Job workers must
    be running for the queues to drain.

    Args:
        database: Database handle
        store: Indexer store
        watcher: Watcher with completion handlers registered
        start_block: First block to index
        end_block: Last block to index, inclusive
        console: Rich console for the progress bar
        block_timeout: Seconds to wait for any block progress before giving
            up, unbounded when None

    Returns:
        Number of heights indexed

    Raises:
        ValueError: If the range is empty or leaves a gap after indexed blocks
        BlockProcessingFailed: If a block of the range fails permanently or
            makes no progress within ``block_timeout``
    """
    if start_block > end_block:
        msg = f"end_block {end_block} should not be below start_block {start_block}"
        raise ValueError(msg)

    async with database.session() as session:
        sync_status = await store.get_sync_status(session)

    if sync_status is not None and sync_status.latest_indexed_block_number >= 0:
        latest_indexed = sync_status.latest_indexed_block_number
        if start_block > latest_indexed + 1:
            msg = (
                f"Missing blocks between start_block {start_block} and "
                f"latest indexed block {latest_indexed}"
            )
            raise ValueError(msg)
        start_block = latest_indexed + 1

    if start_block > end_block:
        logger.info("Blocks up to %d are already indexed", end_block)
        return 0

    watcher.follow_chain = False
    total = end_block - start_block + 1
    progress = create_block_progress(console)

    with progress:
        task_id = add_block_task(progress, start_block=start_block, end_block=end_block)
        async with watcher.subscribe_block_progress() as events:
            next_number = start_block
            await watcher.fetch_blocks_by_number_and_process(next_number)

            while True:
                try:
                    event = await asyncio.wait_for(events.get(), timeout=block_timeout)
                except TimeoutError as e:
                    msg = f"Block {next_number} made no progress within {block_timeout}s"
                    raise BlockProcessingFailed(msg) from e

                if event.block_number < next_number:
                    continue
                if event.error is not None:
                    msg = (
                        f"Block {event.block_number} {event.block_hash} failed: "
                        f"{event.error}"
                    )
                    raise BlockProcessingFailed(msg)
                if not event.is_complete:
                    continue

                progress.update(
                    task_id,
                    completed=event.block_number - start_block + 1,
                    block=event.block_number,
                )
                if event.block_number >= end_block:
                    break

                next_number = event.block_number + 1
                await watcher.fetch_blocks_by_number_and_process(next_number)

    logger.info("Indexed blocks %d to %d", start_block, end_block)
    return total


__all__ = ["fill_blocks"]
