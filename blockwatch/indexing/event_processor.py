"""Ordered application of a block's events to downstream state."""

import time

from sqlalchemy.ext.asyncio import AsyncSession

from blockwatch.data.blocks.models import BlockProgress
from blockwatch.data.events.models import Contract, Event
from blockwatch.data.store import IndexerStore
from blockwatch.errors import (
    EventOrderCorruption,
    OrderingViolation,
    TransientDependencyNotReady,
)
from blockwatch.helpers.config import IndexerConfig
from blockwatch.helpers.constants import UNKNOWN_EVENT_NAME
from blockwatch.helpers.db import Database
from blockwatch.helpers.logging import get_logger
from blockwatch.helpers.metrics import record_block_duration
from blockwatch.helpers.models import RawLog
from blockwatch.helpers.parsers import normalize_address
from blockwatch.indexing.hooks import IndexerHooks
from blockwatch.jobs.models import Job, ProcessEventsJob


logger = get_logger(__name__)


class EventProcessor:
    """Applies events strictly in ascending index and tracks block progress.

    By default every event runs in its own transaction together with the
    progress counter update. With ``lazy_update_block_progress`` (or
    ``subgraph_events_order``) the whole block is applied in one transaction
    and the counters are written once at the end.
    """

    def __init__(
        self,
        config: IndexerConfig,
        database: Database,
        store: IndexerStore,
        hooks: IndexerHooks,
    ) -> None:
        self.config = config
        self._db = database
        self._store = store
        self._hooks = hooks

    async def process_events(self, data: ProcessEventsJob, job: Job) -> BlockProgress:
        """Apply every pending event of ``data.block_hash``.

        Raises:
            TransientDependencyNotReady: If the block is not saved
            OrderingViolation: If an event is missing or out of sequence
            EventOrderCorruption: If the violation persisted across retries
        """
        start = time.perf_counter()
        async with self._db.session() as session:
            block = await self._store.get_block_progress(session, data.block_hash)

        if block is None:
            msg = f"Block {data.block_hash} is not saved yet"
            raise TransientDependencyNotReady(msg)

        if block.is_complete:
            logger.debug("Block %s already complete", block.block_hash)
            return block

        if self.config.lazy_update_block_progress or self.config.subgraph_events_order:
            block = await self._process_in_one_transaction(block.block_hash, job)
        else:
            block = await self._process_per_event(block, job)

        elapsed = time.perf_counter() - start
        if block.is_complete:
            record_block_duration(elapsed)
        logger.info(
            "Processed %d event(s) of block %d %s in %.3fs",
            block.num_processed_events,
            block.block_number,
            block.block_hash,
            elapsed,
        )
        return block

    async def _process_per_event(self, block: BlockProgress, job: Job) -> BlockProgress:
        batch: list[Event] = []
        while not block.is_complete:
            if not batch:
                async with self._db.session() as session:
                    batch = await self._load_batch(session, block)
                if not batch:
                    raise self._ordering_violation(
                        f"Missing events for block {block.block_hash} after index "
                        f"{block.last_processed_event_index}",
                        job,
                    )

            event = batch[0]
            self.check_event_order(block, event, job)
            async with self._db.transaction() as session:
                await self._apply(session, block, event)
                block = await self._store.update_block_progress(session, block, event.index)
            batch.pop(0)

        return block

    async def _process_in_one_transaction(self, block_hash: str, job: Job) -> BlockProgress:
        async with self._db.transaction() as session:
            block = await self._store.lock_block_progress(session, block_hash)
            if block is None:
                msg = f"Block {block_hash} is not saved yet"
                raise TransientDependencyNotReady(msg)

            watched_at_start = self._hooks.watched_addresses()
            deferred: list[Event] = []
            while not block.is_complete:
                batch = await self._load_batch(session, block)
                if not batch:
                    raise self._ordering_violation(
                        f"Missing events for block {block.block_hash} after index "
                        f"{block.last_processed_event_index}",
                        job,
                    )

                for event in batch:
                    self.check_event_order(block, event, job)
                    if self._is_deferred(watched_at_start, event):
                        deferred.append(event)
                    else:
                        await self._apply(session, block, event)
                    block = self._advance(block, event)

            # Contracts watched during this block see their events after the rest
            for event in deferred:
                await self._apply(session, block, event)

            return await self._store.save_block_progress(session, block)

    async def _load_batch(self, session: AsyncSession, block: BlockProgress) -> list[Event]:
        return await self._store.get_block_events(
            session,
            block.block_hash,
            from_index=block.last_processed_event_index + 1,
            limit=self.config.events_in_batch,
        )

    async def _apply(self, session: AsyncSession, block: BlockProgress, event: Event) -> None:
        contract = self._watched_contract(block, event)
        if contract is None:
            return

        if not event.is_decoded:
            raw_log = RawLog.model_validate_json(event.extra_info)
            decoded = self._hooks.parse_event_name_and_args(contract.kind, raw_log)
            if decoded.name == UNKNOWN_EVENT_NAME:
                return
            event = event.resolve(decoded)
            await self._store.save_event(session, event)

        await self._hooks.process_event(session, event)

    def _watched_contract(self, block: BlockProgress, event: Event) -> Contract | None:
        contract = self._hooks.is_watched_contract(event.contract)
        if contract is None or block.block_number < contract.starting_block:
            return None
        return contract

    def _is_deferred(self, watched_at_start: set[str], event: Event) -> bool:
        if not self.config.subgraph_events_order:
            return False
        return normalize_address(event.contract) not in watched_at_start

    def check_event_order(self, block: BlockProgress, event: Event, job: Job) -> None:
        if event.index == 0 or event.index - 1 == block.last_processed_event_index:
            return
        raise self._ordering_violation(
            f"Event {event.index} of block {block.block_hash} out of order, "
            f"last processed {block.last_processed_event_index}",
            job,
        )

    def _ordering_violation(self, msg: str, job: Job) -> OrderingViolation:
        if job.retry_count >= self.config.ordering_alert_after:
            logger.critical("%s (job %s, retry %d)", msg, job.id, job.retry_count)
            return EventOrderCorruption(msg)
        return OrderingViolation(msg)

    @staticmethod
    def _advance(block: BlockProgress, event: Event) -> BlockProgress:
        num_processed_events = block.num_processed_events + 1
        return block.model_copy(
            update={
                "num_processed_events": num_processed_events,
                "last_processed_event_index": event.index,
                "is_complete": num_processed_events >= block.num_events,
            }
        )


__all__ = ["EventProcessor"]
