"""Queue workers dispatching jobs to the pipeline components."""

from pydantic import ValidationError

from blockwatch.data.store import IndexerStore
from blockwatch.errors import NonRetryableJobError
from blockwatch.helpers.config import IndexerConfig
from blockwatch.helpers.constants import QUEUE_BLOCK_PROCESSING, QUEUE_EVENT_PROCESSING
from blockwatch.helpers.db import Database
from blockwatch.helpers.logging import get_logger
from blockwatch.indexing.block_processor import BlockProcessor
from blockwatch.indexing.event_processor import EventProcessor
from blockwatch.indexing.hooks import IndexerHooks
from blockwatch.indexing.pruner import ChainPruner
from blockwatch.jobs.models import (
    IndexBlockJob,
    Job,
    ProcessEventsJob,
    PruneJob,
    WatchContractJob,
    block_job_adapter,
    event_job_adapter,
)
from blockwatch.jobs.queue import JobQueue
from blockwatch.upstream.client import EthClient


logger = get_logger(__name__)


class JobRunner:
    """Subscribes to both pipeline queues and runs their jobs."""

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
        self._hooks = hooks
        self._job_queue = job_queue
        self.block_processor = BlockProcessor(
            config, database, store, hooks, job_queue, eth_client
        )
        self.event_processor = EventProcessor(config, database, store, hooks)
        self.pruner = ChainPruner(config, database, store)

    async def start(self) -> None:
        await self._job_queue.subscribe(
            QUEUE_BLOCK_PROCESSING,
            self.process_block,
            concurrency=self.config.block_queue_concurrency,
        )
        await self._job_queue.subscribe(
            QUEUE_EVENT_PROCESSING,
            self.process_event,
            concurrency=self.config.event_queue_concurrency,
        )

    async def process_block(self, job: Job) -> None:
        try:
            data = block_job_adapter.validate_python(job.data)
        except ValidationError as e:
            msg = f"Invalid block job {job.id}: {e}"
            raise NonRetryableJobError(msg) from e

        if isinstance(data, IndexBlockJob):
            await self.block_processor.index_block(data)
        elif isinstance(data, PruneJob):
            await self.pruner.prune_chain(data)

        await self._job_queue.mark_complete(job)

    async def process_event(self, job: Job) -> None:
        try:
            data = event_job_adapter.validate_python(job.data)
        except ValidationError as e:
            msg = f"Invalid event job {job.id}: {e}"
            raise NonRetryableJobError(msg) from e

        if isinstance(data, ProcessEventsJob):
            await self.event_processor.process_events(data, job)
        elif isinstance(data, WatchContractJob):
            self._hooks.cache_contract(data.contract)
            logger.info("Watching contract %s (%s)", data.contract.address, data.contract.kind)

        await self._job_queue.mark_complete(job)


__all__ = ["JobRunner"]
