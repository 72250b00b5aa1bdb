"""Ancestry-checked indexing of single blocks."""

import asyncio
import time
from collections.abc import Sequence

from blockwatch.data.blocks.models import BlockProgress
from blockwatch.data.events.models import Event
from blockwatch.data.store import IndexerStore
from blockwatch.errors import ReorgLagExceeded, TransientDependencyNotReady
from blockwatch.helpers.config import IndexerConfig
from blockwatch.helpers.constants import QUEUE_BLOCK_PROCESSING, QUEUE_EVENT_PROCESSING
from blockwatch.helpers.db import Database
from blockwatch.helpers.logging import get_logger
from blockwatch.helpers.metrics import record_block_duration
from blockwatch.helpers.models import BlockRef
from blockwatch.indexing.hooks import IndexerHooks
from blockwatch.indexing.pruner import create_pruning_job
from blockwatch.jobs.models import IndexBlockJob, ProcessEventsJob
from blockwatch.jobs.queue import JobQueue
from blockwatch.upstream.client import EthClient


logger = get_logger(__name__)


async def push_index_job(job_queue: JobQueue, block: BlockRef, priority: int = 0) -> int:
    """Queue indexing of ``block``."""
    data = IndexBlockJob(
        block_hash=block.block_hash,
        block_number=block.block_number,
        parent_hash=block.parent_hash,
        block_timestamp=block.block_timestamp,
        priority=priority,
    )
    return await job_queue.push_job(QUEUE_BLOCK_PROCESSING, data, priority=priority)


class BlockProcessor:
    """Saves a block once its parent is complete and queues its events.

    A block whose parent is unknown or incomplete queues the parent at a
    higher priority and raises, so its own job is retried after the parent
    catches up.
    """

    def __init__(
        self,
        config: IndexerConfig,
        database: Database,
        store: IndexerStore,
        hooks: IndexerHooks,
        job_queue: JobQueue,
        eth_client: EthClient,
    ) -> None:
        self.config = config
        self._db = database
        self._store = store
        self._hooks = hooks
        self._job_queue = job_queue
        self._eth_client = eth_client
        self._prefetched: dict[str, tuple[int, list[Event]]] = {}
        self._latest_prefetched = -1

    async def prefetch_block_events(self, blocks: Sequence[BlockRef]) -> None:
        """Fetch events of upcoming blocks ahead of their index jobs."""
        results = await asyncio.gather(
            *(self._hooks.fetch_block_events(block) for block in blocks)
        )
        for block, events in zip(blocks, results, strict=True):
            self._prefetched[block.block_hash] = (block.block_number, events)
            self._latest_prefetched = max(self._latest_prefetched, block.block_number)

    async def _prefetch_ahead(self, block_number: int) -> None:
        # Entries of blocks that were never indexed, e.g. on a dropped fork.
        for block_hash, (number, _) in list(self._prefetched.items()):
            if number < block_number:
                del self._prefetched[block_hash]

        half = self.config.prefetch_block_count // 2
        if len(self._prefetched) >= half:
            return

        start = max(self._latest_prefetched, block_number) + 1
        blocks: list[BlockRef] = []
        for number in range(start, start + half):
            found = await self._eth_client.get_blocks(block_number=number)
            if not found:
                break
            blocks.extend(found)
        if blocks:
            await self.prefetch_block_events(blocks)
            logger.debug("Prefetched events of %d block(s) from %d", len(blocks), start)

    async def index_block(self, data: IndexBlockJob) -> BlockProgress:
        """Run one index job.

        Raises:
            ReorgLagExceeded: If a prune job has to catch up first
            TransientDependencyNotReady: If the parent is not complete
        """
        start = time.perf_counter()

        async with self._db.session() as session:
            sync_status = await self._store.get_sync_status(session)
        if sync_status is None:
            async with self._db.transaction() as session:
                sync_status = await self._store.update_sync_status_chain_head(
                    session, data.block_hash, data.block_number
                )

        if sync_status.reorg_lag > self.config.max_reorg_depth:
            await create_pruning_job(
                self._job_queue, sync_status.latest_canonical_block_number, data.priority
            )
            msg = (
                f"Indexed block {sync_status.latest_indexed_block_number} is more than "
                f"{self.config.max_reorg_depth} blocks above canonical block "
                f"{sync_status.latest_canonical_block_number}"
            )
            raise ReorgLagExceeded(msg)

        if self.config.prefetch_block_count:
            await self._prefetch_ahead(data.block_number)

        if data.block_hash != sync_status.latest_canonical_block_hash:
            await self._check_parent(data)

        block = await self._save_block(data)

        async with self._db.transaction() as session:
            await self._hooks.process_block(session, block)

        if block.num_processed_events < block.num_events:
            await self._job_queue.push_job(
                QUEUE_EVENT_PROCESSING,
                ProcessEventsJob(block_hash=block.block_hash),
                priority=data.priority,
            )

        elapsed = time.perf_counter() - start
        if block.is_complete:
            record_block_duration(elapsed)
        logger.info(
            "Indexed block %d %s with %d event(s) in %.3fs",
            block.block_number,
            block.block_hash,
            block.num_events,
            elapsed,
        )
        return block

    async def _check_parent(self, data: IndexBlockJob) -> None:
        async with self._db.session() as session:
            parent = await self._store.get_block_progress(session, data.parent_hash)

        if parent is None:
            blocks = await self._eth_client.get_blocks(block_hash=data.parent_hash)
            if not blocks:
                msg = f"Parent {data.parent_hash} of block {data.block_number} not found upstream"
                raise TransientDependencyNotReady(msg)

            await push_index_job(self._job_queue, blocks[0], data.priority + 1)
            msg = f"Parent {data.parent_hash} of block {data.block_number} not indexed yet"
            raise TransientDependencyNotReady(msg)

        if not parent.is_complete:
            await push_index_job(
                self._job_queue,
                BlockRef(
                    block_hash=parent.block_hash,
                    block_number=parent.block_number,
                    parent_hash=parent.parent_hash,
                    block_timestamp=parent.block_timestamp,
                ),
                data.priority + 1,
            )
            msg = f"Parent {parent.block_hash} of block {data.block_number} not complete yet"
            raise TransientDependencyNotReady(msg)

        async with self._db.transaction() as session:
            await self._store.remove_unknown_events(session, parent.block_hash)

    async def _save_block(self, data: IndexBlockJob) -> BlockProgress:
        async with self._db.session() as session:
            existing = await self._store.get_block_progress(session, data.block_hash)
        if existing is not None:
            return existing

        block_ref = BlockRef(
            block_hash=data.block_hash,
            block_number=data.block_number,
            parent_hash=data.parent_hash,
            block_timestamp=data.block_timestamp,
        )
        prefetched = self._prefetched.pop(data.block_hash, None)
        if prefetched is not None:
            events = prefetched[1]
        else:
            if self.config.job_delay_ms:
                await asyncio.sleep(self.config.job_delay_ms / 1000)
            events = await self._hooks.fetch_block_events(block_ref)

        events = sorted(
            (event.model_copy(update={"block_hash": data.block_hash}) for event in events),
            key=lambda event: event.index,
        )
        block = BlockProgress(
            block_hash=data.block_hash,
            block_number=data.block_number,
            parent_hash=data.parent_hash,
            block_timestamp=data.block_timestamp,
            num_events=len(events),
            is_complete=not events,
        )

        async with self._db.transaction() as session:
            return await self._store.save_block_with_events(session, block, events)


__all__ = ["BlockProcessor", "push_index_job"]
