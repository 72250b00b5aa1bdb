"""ERC-20 balance indexer built on versioned, reorg-aware entities."""

from decimal import Decimal

from sqlalchemy import Numeric, String
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from blockwatch.data.events.models import Event
from blockwatch.data.reorg import get_latest_entities, get_prev_entity_version
from blockwatch.data.store import IndexerStore
from blockwatch.helpers.config import IndexerConfig
from blockwatch.helpers.db import Base, Database, upsert_models
from blockwatch.helpers.db_mixins import BlockRefMixin
from blockwatch.helpers.logging import get_logger
from blockwatch.helpers.parsers import normalize_address
from blockwatch.indexer.base import BaseIndexer
from blockwatch.indexer.decoders import erc20_decoders
from blockwatch.jobs.queue import JobQueue
from blockwatch.upstream.client import EthClient


logger = get_logger(__name__)

ERC20_KIND = "erc20"
ZERO_ADDRESS = "0x" + "0" * 40


class Erc20BalanceDB(BlockRefMixin, Base):
    """Token balance of a holder as of the block that changed it."""

    __tablename__ = "erc20_balance"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    token: Mapped[str] = mapped_column(String(42), index=True)
    holder: Mapped[str] = mapped_column(String(42), index=True)
    balance: Mapped[Decimal] = mapped_column(Numeric(78, 0))


def balance_id(token: str, holder: str) -> str:
    return f"{normalize_address(token)}-{normalize_address(holder)}"


class Erc20Indexer(BaseIndexer):
    """Keeps per-block balance versions from Transfer events."""

    def __init__(
        self,
        config: IndexerConfig,
        database: Database,
        store: IndexerStore,
        eth_client: EthClient,
        job_queue: JobQueue,
    ) -> None:
        super().__init__(
            config, database, store, eth_client, job_queue, erc20_decoders(ERC20_KIND)
        )

    async def process_event(self, session: AsyncSession, event: Event) -> None:
        if event.event_name != "Transfer" or event.event_info is None:
            return

        block = await self._store.get_block_progress(session, event.block_hash)
        if block is None:
            msg = f"Block {event.block_hash} of event {event.index} not found"
            raise ValueError(msg)

        value = int(event.event_info["value"])
        for holder, delta in (
            (event.event_info["from"], -value),
            (event.event_info["to"], value),
        ):
            if holder == ZERO_ADDRESS:
                continue
            await self._apply_balance_change(
                session, event.contract, holder, delta, block.block_hash, block.block_number
            )

    async def get_balance(self, token: str, holder: str, block_hash: str) -> int:
        """Balance of ``holder`` as seen on the branch of ``block_hash``."""
        async with self._db.session() as session:
            entity = await get_prev_entity_version(
                session,
                Erc20BalanceDB,
                block_hash,
                balance_id(token, holder),
                self.config.max_reorg_depth,
            )
        return int(entity.balance) if entity is not None else 0

    async def get_balances(self, token: str, block_hash: str) -> dict[str, int]:
        """Every holder balance of ``token`` as seen on the branch of ``block_hash``."""
        async with self._db.session() as session:
            entities = await get_latest_entities(
                session,
                Erc20BalanceDB,
                block_hash,
                self.config.max_reorg_depth,
                where=[Erc20BalanceDB.token == normalize_address(token)],
            )
        return {entity.holder: int(entity.balance) for entity in entities}

    async def _apply_balance_change(
        self,
        session: AsyncSession,
        token: str,
        holder: str,
        delta: int,
        block_hash: str,
        block_number: int,
    ) -> None:
        entity_id = balance_id(token, holder)
        previous = await get_prev_entity_version(
            session, Erc20BalanceDB, block_hash, entity_id, self.config.max_reorg_depth
        )
        balance = (int(previous.balance) if previous is not None else 0) + delta

        await upsert_models(
            session,
            Erc20BalanceDB,
            [
                {
                    "id": entity_id,
                    "token": normalize_address(token),
                    "holder": normalize_address(holder),
                    "balance": Decimal(balance),
                    "block_hash": block_hash,
                    "block_number": block_number,
                }
            ],
        )
        logger.debug("Balance %s at %d is %d", entity_id, block_number, balance)


__all__ = ["ERC20_KIND", "Erc20BalanceDB", "Erc20Indexer", "balance_id"]
