"""Resolution of forks that fell below the reorg window."""

from sqlalchemy.ext.asyncio import AsyncSession

from blockwatch.data.blocks.models import BlockProgress, SyncStatus
from blockwatch.data.reorg import block_is_ancestor, get_ancestor_at_depth
from blockwatch.data.store import IndexerStore
from blockwatch.errors import PruningError
from blockwatch.helpers.config import IndexerConfig
from blockwatch.helpers.constants import QUEUE_BLOCK_PROCESSING
from blockwatch.helpers.db import Database
from blockwatch.helpers.logging import get_logger
from blockwatch.jobs.models import PruneJob
from blockwatch.jobs.queue import JobQueue


logger = get_logger(__name__)


async def create_pruning_job(
    job_queue: JobQueue, latest_canonical_block_number: int, priority: int = 0
) -> int:
    """Queue pruning of the height right above the canonical cursor."""
    data = PruneJob(
        prune_block_height=latest_canonical_block_number + 1, priority=priority
    )
    return await job_queue.push_job(QUEUE_BLOCK_PROCESSING, data, priority=priority)


class ChainPruner:
    """Marks losing fork siblings as pruned and advances the canonical cursor."""

    def __init__(
        self, config: IndexerConfig, database: Database, store: IndexerStore
    ) -> None:
        self.config = config
        self._db = database
        self._store = store

    async def prune_chain(self, data: PruneJob) -> BlockProgress | None:
        """Resolve ``data.prune_block_height`` to a single canonical block.

        Returns:
            The canonical block, or None if the height was already pruned

        Raises:
            PruningError: If the height cannot be resolved yet
        """
        height = data.prune_block_height
        max_depth = self.config.max_reorg_depth

        async with self._db.transaction() as session:
            sync_status = await self._store.get_sync_status(session)
            if sync_status is None:
                msg = "Sync status is not initialized"
                raise PruningError(msg)

            if sync_status.latest_canonical_block_number >= height:
                logger.debug("Height %d already pruned", height)
                return None

            if sync_status.latest_indexed_block_number < height + max_depth:
                msg = (
                    f"Cannot prune height {height}: latest indexed block "
                    f"{sync_status.latest_indexed_block_number} is within the reorg window"
                )
                raise PruningError(msg)

            blocks = await self._store.get_blocks_at_height(session, height)
            if not blocks:
                msg = f"No unpruned blocks at height {height}"
                raise PruningError(msg)

            if len(blocks) == 1:
                canonical = blocks[0]
            else:
                canonical = await self._resolve_fork(session, height, blocks, sync_status)
                siblings = [b for b in blocks if b.block_hash != canonical.block_hash]
                await self._store.mark_blocks_as_pruned(session, siblings)
                logger.info(
                    "Pruned %d sibling(s) at height %d, kept %s",
                    len(siblings),
                    height,
                    canonical.block_hash,
                )

            await self._store.update_sync_status_canonical_block(
                session, canonical.block_hash, canonical.block_number
            )

        return canonical

    async def _resolve_fork(
        self,
        session: AsyncSession,
        height: int,
        blocks: list[BlockProgress],
        sync_status: SyncStatus,
    ) -> BlockProgress:
        max_depth = self.config.max_reorg_depth
        heads = await self._store.get_blocks_at_height(session, height + max_depth)

        if len(heads) > 1:
            distance = sync_status.latest_indexed_block_number - (height + max_depth)
            heads = [
                head
                for head in heads
                if await block_is_ancestor(
                    session,
                    head.block_hash,
                    sync_status.latest_indexed_block_hash,
                    distance,
                )
            ]

        if len(heads) != 1:
            msg = (
                f"Expected one indexed block at height {height + max_depth}, "
                f"found {len(heads)}"
            )
            raise PruningError(msg)

        ancestor_hash = await get_ancestor_at_depth(session, heads[0].block_hash, max_depth)
        for block in blocks:
            if block.block_hash == ancestor_hash:
                return block

        msg = f"Ancestor {ancestor_hash} of {heads[0].block_hash} is not at height {height}"
        raise PruningError(msg)


__all__ = ["ChainPruner", "create_pruning_job"]
