"""Indexer hooks backed by eth_getLogs and a decoder registry."""

import json

from sqlalchemy.ext.asyncio import AsyncSession

from blockwatch.data.events.models import Contract, DecodedEvent, Event
from blockwatch.data.store import IndexerStore
from blockwatch.helpers.config import IndexerConfig
from blockwatch.helpers.constants import QUEUE_EVENT_PROCESSING
from blockwatch.helpers.db import Database
from blockwatch.helpers.logging import get_logger
from blockwatch.helpers.models import BlockRef, RawLog
from blockwatch.helpers.parsers import normalize_address, parse_hex_int
from blockwatch.indexer.decoders import DecoderRegistry
from blockwatch.indexing.hooks import IndexerHooks
from blockwatch.jobs.models import WatchContractJob
from blockwatch.jobs.queue import JobQueue
from blockwatch.upstream.client import EthClient


logger = get_logger(__name__)


class BaseIndexer(IndexerHooks):
    """Fetches block logs, tracks watched contracts and decodes their events.

    Subclasses implement ``process_event`` for their contract kinds.
    """

    def __init__(
        self,
        config: IndexerConfig,
        database: Database,
        store: IndexerStore,
        eth_client: EthClient,
        job_queue: JobQueue,
        decoders: DecoderRegistry,
    ) -> None:
        self.config = config
        self._db = database
        self._store = store
        self._eth_client = eth_client
        self._job_queue = job_queue
        self._decoders = decoders
        self._watched_contracts: dict[str, Contract] = {}

    async def init(self) -> None:
        """Load watched contracts into the cache."""
        async with self._db.session() as session:
            contracts = await self._store.get_contracts(session)
        for contract in contracts:
            self.cache_contract(contract)
        logger.info("Loaded %d watched contract(s)", len(contracts))

    async def watch_contract(self, address: str, kind: str, starting_block: int) -> Contract:
        """Persist a watched contract and announce it to every worker.

        Raises:
            ValueError: If no decoder knows ``kind``
        """
        if kind not in self._decoders.kinds():
            msg = f"Unknown contract kind: {kind}"
            raise ValueError(msg)

        async with self._db.transaction() as session:
            contract = await self._store.save_contract(session, address, kind, starting_block)

        self.cache_contract(contract)
        await self._job_queue.push_job(
            QUEUE_EVENT_PROCESSING, WatchContractJob(contract=contract)
        )
        return contract

    def is_watched_contract(self, address: str) -> Contract | None:
        return self._watched_contracts.get(normalize_address(address))

    def watched_addresses(self) -> set[str]:
        return set(self._watched_contracts)

    def cache_contract(self, contract: Contract) -> None:
        self._watched_contracts[normalize_address(contract.address)] = contract

    def parse_event_name_and_args(self, kind: str, raw_log: RawLog) -> DecodedEvent:
        return self._decoders.decode(kind, raw_log)

    async def fetch_block_events(self, block: BlockRef) -> list[Event]:
        logs = await self._eth_client.get_logs(block.block_hash)
        return [self._to_event(block, log) for log in logs if not log.removed]

    async def process_event(self, session: AsyncSession, event: Event) -> None:
        logger.debug("Event %s %d ignored", event.event_name, event.index)

    def _to_event(self, block: BlockRef, log: RawLog) -> Event:
        event = Event(
            block_hash=block.block_hash,
            index=parse_hex_int(log.log_index),
            tx_hash=log.transaction_hash,
            contract=normalize_address(log.address),
            extra_info=log.model_dump_json(by_alias=True),
            proof=json.dumps(
                {
                    "blockHash": log.block_hash,
                    "transactionHash": log.transaction_hash,
                    "logIndex": log.log_index,
                }
            ),
        )

        contract = self.is_watched_contract(log.address)
        if contract is not None and block.block_number >= contract.starting_block:
            decoded = self.parse_event_name_and_args(contract.kind, log)
            if decoded.name != event.event_name:
                event = event.resolve(decoded)
        return event


__all__ = ["BaseIndexer"]
