"""Block watcher: feeds index jobs and reacts to job completions.

New blocks arrive from the newHeads subscription (``blocks_handler``) or from
polling the next height once a block completes. Completion callbacks of both
queues advance the sync status, queue pruning when indexing runs more than
``max_reorg_depth`` blocks ahead of the canonical cursor, and publish block
progress to in-process subscribers.
"""

import asyncio
from collections.abc import AsyncIterator, Coroutine
from contextlib import asynccontextmanager
from typing import Any

from pydantic import ValidationError

from blockwatch.data.blocks.models import BlockProgress, BlockProgressEvent
from blockwatch.data.store import IndexerStore
from blockwatch.errors import PruningError, UpstreamUnavailable
from blockwatch.helpers.config import IndexerConfig
from blockwatch.helpers.constants import QUEUE_BLOCK_PROCESSING, QUEUE_EVENT_PROCESSING
from blockwatch.helpers.db import Database
from blockwatch.helpers.http import backoff_delay
from blockwatch.helpers.logging import get_logger
from blockwatch.helpers.metrics import record_block_complete
from blockwatch.helpers.models import BlockRef
from blockwatch.indexing.block_processor import push_index_job
from blockwatch.indexing.pruner import create_pruning_job
from blockwatch.jobs.models import (
    IndexBlockJob,
    JobCompletion,
    ProcessEventsJob,
    PruneJob,
    block_job_adapter,
    event_job_adapter,
)
from blockwatch.jobs.queue import JobQueue
from blockwatch.upstream.client import EthClient


logger = get_logger(__name__)


class EventWatcher:
    """Drives indexing from upstream blocks and job completions."""

    def __init__(
        self,
        config: IndexerConfig,
        database: Database,
        store: IndexerStore,
        job_queue: JobQueue,
        eth_client: EthClient,
    ) -> None:
        self.config = config
        self._db = database
        self._store = store
        self._job_queue = job_queue
        self._eth_client = eth_client
        self._subscribers: set[asyncio.Queue[BlockProgressEvent]] = set()
        self._tasks: set[asyncio.Task[Any]] = set()
        self._pending_heights: set[int] = set()
        self.follow_chain = True

    async def start(self) -> None:
        """Register completion handlers and resume block processing."""
        await self.init_complete_handlers()
        await self.start_block_processing()

    async def init_complete_handlers(self) -> None:
        await self._job_queue.on_complete(
            QUEUE_BLOCK_PROCESSING, self.block_processing_complete_handler
        )
        await self._job_queue.on_complete(
            QUEUE_EVENT_PROCESSING, self.event_processing_complete_handler
        )

    async def stop(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._pending_heights.clear()

    async def start_block_processing(self) -> None:
        """Queue the block processing should continue from."""
        async with self._db.session() as session:
            sync_status = await self._store.get_sync_status(session)

        if sync_status is None:
            if self.config.start_block is not None:
                block_number = self.config.start_block
            else:
                block_number = (await self._eth_client.get_latest_block()).block_number
            logger.info("No sync status, starting at block %d", block_number)
        elif sync_status.latest_indexed_block_number < 0:
            block_number = sync_status.latest_canonical_block_number
            logger.info("Nothing indexed yet, restarting at block %d", block_number)
        else:
            block_number = sync_status.latest_indexed_block_number + 1
            logger.info("Resuming after indexed block %d", block_number - 1)

        self._spawn(self.fetch_blocks_by_number_and_process(block_number))

    async def blocks_handler(self, block: BlockRef) -> None:
        """Record a new chain head and queue it for indexing."""
        async with self._db.transaction() as session:
            await self._store.update_sync_status_chain_head(
                session, block.block_hash, block.block_number
            )
        await push_index_job(self._job_queue, block)
        logger.info("Queued block %d %s", block.block_number, block.block_hash)

    async def fetch_blocks_by_number_and_process(self, block_number: int) -> list[BlockRef]:
        """Poll upstream until ``block_number`` exists, then queue every block at it."""
        if block_number in self._pending_heights:
            return []
        self._pending_heights.add(block_number)

        try:
            attempt = 0
            while True:
                try:
                    blocks = await self._eth_client.get_blocks(block_number=block_number)
                except UpstreamUnavailable as e:
                    logger.warning("Fetching block %d failed: %s", block_number, e)
                    blocks = []

                if blocks:
                    for block in blocks:
                        await self.blocks_handler(block)
                    return blocks

                delay = backoff_delay(
                    attempt,
                    self.config.upstream.block_delay_seconds,
                    self.config.upstream.block_poll_max_delay,
                )
                logger.debug("Block %d not available, retrying in %.1fs", block_number, delay)
                await asyncio.sleep(delay)
                attempt += 1
        finally:
            self._pending_heights.discard(block_number)

    async def block_processing_complete_handler(self, completion: JobCompletion) -> None:
        if completion.failed:
            self._log_failed(completion)
            failed = self._parse(block_job_adapter, completion)
            if isinstance(failed, IndexBlockJob):
                self._publish_failure(failed.block_hash, failed.block_number, completion)
            return

        data = self._parse(block_job_adapter, completion)
        if isinstance(data, IndexBlockJob):
            await self._handle_indexing_complete(data.block_hash)
        elif isinstance(data, PruneJob):
            await self._handle_pruning_complete(data)

    async def event_processing_complete_handler(self, completion: JobCompletion) -> None:
        if completion.failed:
            self._log_failed(completion)
            failed = self._parse(event_job_adapter, completion)
            if isinstance(failed, ProcessEventsJob):
                async with self._db.session() as session:
                    block = await self._store.get_block_progress(session, failed.block_hash)
                if block is not None:
                    self._publish_failure(block.block_hash, block.block_number, completion)
            return

        data = self._parse(event_job_adapter, completion)
        if not isinstance(data, ProcessEventsJob):
            return

        async with self._db.session() as session:
            block = await self._store.get_block_progress(session, data.block_hash)
        if block is None:
            logger.warning("Completed events job for unknown block %s", data.block_hash)
            return

        if block.is_complete:
            async with self._db.transaction() as session:
                await self._store.remove_unknown_events(session, block.block_hash)
            await self._handle_block_complete(block)
        await self.publish_block_progress(block)

    async def publish_block_progress(self, block: BlockProgress) -> None:
        self._broadcast(BlockProgressEvent.from_block(block))

    @asynccontextmanager
    async def subscribe_block_progress(self) -> AsyncIterator[asyncio.Queue[BlockProgressEvent]]:
        """Receive every block progress snapshot while the context is open.

        Blocks whose index or events job failed permanently arrive with
        ``error`` set.

        Example:
            ```python
            async with watcher.subscribe_block_progress() as progress:
                event = await progress.get()
            ```
        """
        subscriber: asyncio.Queue[BlockProgressEvent] = asyncio.Queue()
        self._subscribers.add(subscriber)
        try:
            yield subscriber
        finally:
            self._subscribers.discard(subscriber)

    def _publish_failure(
        self, block_hash: str, block_number: int, completion: JobCompletion
    ) -> None:
        error = completion.error or completion.state
        self._broadcast(BlockProgressEvent.failed(block_hash, block_number, error))

    def _broadcast(self, event: BlockProgressEvent) -> None:
        for subscriber in self._subscribers:
            subscriber.put_nowait(event)

    async def _handle_indexing_complete(self, block_hash: str) -> None:
        async with self._db.session() as session:
            block = await self._store.get_block_progress(session, block_hash)
        if block is None:
            logger.warning("Completed index job for unknown block %s", block_hash)
            return

        if block.is_complete:
            await self._handle_block_complete(block)
        await self.publish_block_progress(block)

    async def _handle_pruning_complete(self, data: PruneJob) -> None:
        async with self._db.transaction() as session:
            blocks = await self._store.get_blocks_at_height(session, data.prune_block_height)
            if len(blocks) != 1:
                msg = (
                    f"Expected one unpruned block at height {data.prune_block_height}, "
                    f"found {len(blocks)}"
                )
                raise PruningError(msg)

            block = blocks[0]
            await self._store.update_sync_status_canonical_block(
                session, block.block_hash, block.block_number
            )
        logger.info("Canonical block is %d %s", block.block_number, block.block_hash)

    async def _handle_block_complete(self, block: BlockProgress) -> None:
        record_block_complete(block)
        async with self._db.transaction() as session:
            sync_status = await self._store.update_sync_status_indexed_block(
                session, block.block_hash, block.block_number
            )

        if sync_status.reorg_lag > self.config.max_reorg_depth:
            await create_pruning_job(
                self._job_queue, sync_status.latest_canonical_block_number
            )

        if self.follow_chain:
            self._spawn(self.fetch_blocks_by_number_and_process(block.block_number + 1))

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Watcher task failed", exc_info=task.exception())

    @staticmethod
    def _parse(adapter: Any, completion: JobCompletion) -> Any:
        try:
            return adapter.validate_python(completion.request.data)
        except ValidationError:
            logger.exception("Invalid job payload in completion %s", completion.request.id)
            return None

    @staticmethod
    def _log_failed(completion: JobCompletion) -> None:
        logger.error(
            "Job %s on %s %s: %s",
            completion.request.id,
            completion.request.queue,
            completion.state,
            completion.error,
        )


__all__ = ["EventWatcher"]
