"""Administrative rewind of indexed state."""

from blockwatch.data.blocks.models import SyncStatus
from blockwatch.data.store import IndexerStore
from blockwatch.helpers.db import Database
from blockwatch.helpers.logging import get_logger
from blockwatch.jobs.queue import JobQueue


logger = get_logger(__name__)


async def reset_state(
    database: Database,
    store: IndexerStore,
    job_queue: JobQueue,
    block_number: int,
) -> SyncStatus:
    """Rewind indexing to ``block_number``.

    Deletes every job, then removes blocks, events and versioned entities
    above the height and moves the indexed and canonical cursors down to it,
    all in one transaction.

    Raises:
        ValueError: If there is no sync status, or no complete block at the height
    """
    await job_queue.delete_all_jobs()

    async with database.transaction() as session:
        sync_status = await store.get_sync_status(session)
        if sync_status is None:
            msg = "Missing sync status"
            raise ValueError(msg)

        blocks = await store.get_blocks_at_height(session, block_number)
        if not blocks:
            msg = f"No blocks at block number {block_number}"
            raise ValueError(msg)
        if any(not block.is_complete for block in blocks):
            msg = f"Incomplete block at block number {block_number} with unprocessed events"
            raise ValueError(msg)
        block = blocks[0]

        await store.remove_entities_after(session, block_number)

        if sync_status.latest_indexed_block_number > block.block_number:
            sync_status = await store.update_sync_status_indexed_block(
                session, block.block_hash, block.block_number, force=True
            )
        if sync_status.latest_canonical_block_number > block.block_number:
            sync_status = await store.update_sync_status_canonical_block(
                session, block.block_hash, block.block_number, force=True
            )

    logger.info("Reset state to block %d %s", block.block_number, block.block_hash)
    return sync_status


__all__ = ["reset_state"]
