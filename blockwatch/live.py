"""Live indexing process.

Wires the database, job queue, upstream client, ERC-20 indexer, job runner
and block watcher together, then follows the chain until SIGINT/SIGTERM.

Processing flow:
1. newHeads subscription or next-height polling → index job
2. Block processor resolves ancestry and saves the block with its events
3. Event processor applies events in order and completes the block
4. Completion handlers advance the sync status and queue pruning

Usage:
    python -m blockwatch.live
"""

import asyncio
import signal
import sys

from blockwatch.data.store import IndexerStore
from blockwatch.helpers.config import IndexerConfig, get_eth_rpc_url, load_config
from blockwatch.helpers.db import Database
from blockwatch.helpers.logging import get_logger
from blockwatch.indexer.erc20 import Erc20Indexer
from blockwatch.indexing.runner import JobRunner
from blockwatch.indexing.watcher import EventWatcher
from blockwatch.jobs.queue import JobQueue
from blockwatch.upstream.client import EthClient
from blockwatch.upstream.subscription import NewHeadsSubscription


logger = get_logger(__name__)


class LiveIndexer:
    """Owns every long-lived component of an indexing process."""

    def __init__(
        self,
        config: IndexerConfig | None = None,
        database: Database | None = None,
        eth_client: EthClient | None = None,
    ) -> None:
        """Build the components.

        Raises:
            ValueError: If ETH_RPC_URL or the database settings are missing
        """
        self.config = config or load_config()
        self.database = database or Database()
        self.store = IndexerStore()
        self.job_queue = JobQueue(self.database, self.config.job_queue)
        self.eth_client = eth_client or EthClient(
            get_eth_rpc_url(self.config.upstream.rpc_url)
        )
        self.indexer = Erc20Indexer(
            self.config, self.database, self.store, self.eth_client, self.job_queue
        )
        self.runner = JobRunner(
            self.config,
            self.database,
            self.store,
            self.indexer,
            self.job_queue,
            self.eth_client,
        )
        self.watcher = EventWatcher(
            self.config, self.database, self.store, self.job_queue, self.eth_client
        )
        self.subscription: NewHeadsSubscription | None = None
        if self.config.upstream.ws_url:
            self.subscription = NewHeadsSubscription(
                self.config.upstream.ws_url, self.watcher.blocks_handler
            )
        self._shutdown_event = asyncio.Event()

    async def start_workers(self) -> None:
        """Start the queue and its workers without following the chain."""
        await self.job_queue.start()
        await self.indexer.init()
        await self.runner.start()

    def shutdown(self) -> None:
        """Gracefully shutdown the indexer."""
        logger.info("Shutdown signal received, stopping...")
        if self.subscription is not None:
            self.subscription.shutdown()
        self._shutdown_event.set()

    async def cleanup(self) -> None:
        """Clean up resources."""
        await self.watcher.stop()
        await self.job_queue.stop()
        await self.eth_client.close()
        await self.database.close()

    async def run(self) -> None:
        """Index live blocks until shutdown."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.shutdown)

        subscription_task = None
        try:
            await self.start_workers()
            await self.watcher.start()
            if self.subscription is not None:
                subscription_task = asyncio.create_task(self.subscription.run())

            await self._shutdown_event.wait()
        finally:
            if subscription_task is not None:
                subscription_task.cancel()
                await asyncio.gather(subscription_task, return_exceptions=True)
            await self.cleanup()

        logger.info("Live indexer stopped")


async def main() -> None:
    """Main entry point."""
    try:
        indexer = LiveIndexer()
        await indexer.run()
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, exiting...")
    except Exception:
        logger.exception("Fatal error")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
