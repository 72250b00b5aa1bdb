"""Interface between the pipeline and a downstream indexer."""

from abc import ABC, abstractmethod

from sqlalchemy.ext.asyncio import AsyncSession

from blockwatch.data.blocks.models import BlockProgress
from blockwatch.data.events.models import Contract, DecodedEvent, Event
from blockwatch.helpers.models import BlockRef, RawLog


class IndexerHooks(ABC):
    """Callbacks the pipeline invokes while indexing blocks."""

    @abstractmethod
    async def fetch_block_events(self, block: BlockRef) -> list[Event]:
        """Fetch every event of a block, decoded for watched contracts."""

    @abstractmethod
    async def process_event(self, session: AsyncSession, event: Event) -> None:
        """Apply a decoded event of a watched contract to derived state."""

    async def process_block(self, session: AsyncSession, block: BlockProgress) -> None:
        """Apply block level changes; the default does nothing."""
        return

    @abstractmethod
    def is_watched_contract(self, address: str) -> Contract | None:
        """Watched contract at ``address``, if any."""

    @abstractmethod
    def watched_addresses(self) -> set[str]:
        """Lower-cased addresses of every watched contract."""

    @abstractmethod
    def parse_event_name_and_args(self, kind: str, raw_log: RawLog) -> DecodedEvent:
        """Decode a raw log with the decoder of a contract kind."""

    @abstractmethod
    def cache_contract(self, contract: Contract) -> None:
        """Add a contract to the in-memory watched set."""


__all__ = ["IndexerHooks"]
