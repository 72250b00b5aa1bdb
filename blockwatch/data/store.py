"""Persistence operations of the indexing pipeline.

Every method takes the session to run in, so callers decide which operations
share a transaction.
"""

import json
from collections.abc import Sequence
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from blockwatch.data.blocks.db import SYNC_STATUS_ID, BlockProgressDB, SyncStatusDB
from blockwatch.data.blocks.models import BlockProgress, SyncStatus
from blockwatch.data.events.db import ContractDB, EventDB
from blockwatch.data.events.models import Contract, Event
from blockwatch.errors import OrderingViolation
from blockwatch.helpers.constants import INSERT_EVENTS_BATCH, UNKNOWN_EVENT_NAME
from blockwatch.helpers.db import Base, insert_ignore, upsert_models
from blockwatch.helpers.db_mixins import BlockRefMixin
from blockwatch.helpers.logging import get_logger
from blockwatch.helpers.parsers import normalize_address


logger = get_logger(__name__)


class IndexerStore:
    """Reads and writes block progress, events, contracts and sync status."""

    # Sync status

    async def get_sync_status(self, session: AsyncSession) -> SyncStatus | None:
        row = await session.get(SyncStatusDB, SYNC_STATUS_ID)
        return SyncStatus.model_validate(row) if row is not None else None

    async def update_sync_status_chain_head(
        self,
        session: AsyncSession,
        block_hash: str,
        block_number: int,
        *,
        force: bool = False,
    ) -> SyncStatus:
        """Advance the chain head, creating the sync status on first use.

        A new sync status starts with the chain head and canonical cursor on
        this block and nothing indexed.
        """
        await insert_ignore(
            session,
            SyncStatusDB,
            [
                {
                    "id": SYNC_STATUS_ID,
                    "chain_head_block_hash": block_hash,
                    "chain_head_block_number": block_number,
                    "latest_canonical_block_hash": block_hash,
                    "latest_canonical_block_number": block_number,
                    "latest_indexed_block_hash": "",
                    "latest_indexed_block_number": -1,
                }
            ],
        )
        return await self._advance(
            session, "chain_head", block_hash, block_number, force=force
        )

    async def update_sync_status_indexed_block(
        self,
        session: AsyncSession,
        block_hash: str,
        block_number: int,
        *,
        force: bool = False,
    ) -> SyncStatus:
        return await self._advance(
            session, "latest_indexed", block_hash, block_number, force=force
        )

    async def update_sync_status_canonical_block(
        self,
        session: AsyncSession,
        block_hash: str,
        block_number: int,
        *,
        force: bool = False,
    ) -> SyncStatus:
        return await self._advance(
            session, "latest_canonical", block_hash, block_number, force=force
        )

    async def _advance(
        self,
        session: AsyncSession,
        cursor: str,
        block_hash: str,
        block_number: int,
        *,
        force: bool,
    ) -> SyncStatus:
        hash_column = getattr(SyncStatusDB, f"{cursor}_block_hash")
        number_column = getattr(SyncStatusDB, f"{cursor}_block_number")

        stmt = update(SyncStatusDB).where(SyncStatusDB.id == SYNC_STATUS_ID)
        if not force:
            stmt = stmt.where(number_column <= block_number)
        await session.execute(
            stmt.values({hash_column: block_hash, number_column: block_number})
            .execution_options(synchronize_session=False)
        )

        row = (
            await session.execute(
                select(SyncStatusDB)
                .where(SyncStatusDB.id == SYNC_STATUS_ID)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if row is None:
            msg = "Sync status is not initialized"
            raise ValueError(msg)
        return SyncStatus.model_validate(row)

    # Block progress

    async def get_block_progress(
        self, session: AsyncSession, block_hash: str
    ) -> BlockProgress | None:
        row = await session.get(BlockProgressDB, block_hash, populate_existing=True)
        return BlockProgress.model_validate(row) if row is not None else None

    async def lock_block_progress(
        self, session: AsyncSession, block_hash: str
    ) -> BlockProgress | None:
        """Read a block holding a row lock until the transaction ends."""
        row = (
            await session.execute(
                select(BlockProgressDB)
                .where(BlockProgressDB.block_hash == block_hash)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        return BlockProgress.model_validate(row) if row is not None else None

    async def get_block_progress_entities(
        self, session: AsyncSession, block_hashes: Sequence[str]
    ) -> list[BlockProgress]:
        if not block_hashes:
            return []
        rows = (
            await session.execute(
                select(BlockProgressDB)
                .where(BlockProgressDB.block_hash.in_(list(block_hashes)))
                .order_by(BlockProgressDB.block_number)
            )
        ).scalars().all()
        return [BlockProgress.model_validate(row) for row in rows]

    async def get_blocks_at_height(
        self,
        session: AsyncSession,
        height: int,
        *,
        is_pruned: bool | None = False,
    ) -> list[BlockProgress]:
        """Blocks recorded at ``height``; ``is_pruned=None`` returns all of them."""
        stmt = select(BlockProgressDB).where(BlockProgressDB.block_number == height)
        if is_pruned is not None:
            stmt = stmt.where(BlockProgressDB.is_pruned == is_pruned)
        rows = (
            await session.execute(
                stmt.order_by(BlockProgressDB.block_hash).execution_options(
                    populate_existing=True
                )
            )
        ).scalars().all()
        return [BlockProgress.model_validate(row) for row in rows]

    async def mark_blocks_as_pruned(
        self, session: AsyncSession, blocks: Sequence[BlockProgress]
    ) -> None:
        if not blocks:
            return
        await session.execute(
            update(BlockProgressDB)
            .where(BlockProgressDB.block_hash.in_([block.block_hash for block in blocks]))
            .values(is_pruned=True)
            .execution_options(synchronize_session=False)
        )

    async def save_block_with_events(
        self,
        session: AsyncSession,
        block: BlockProgress,
        events: Sequence[Event],
    ) -> BlockProgress:
        """Persist a block and its events once.

        Replays find the existing row and return it unchanged; events are
        inserted ignoring ``(block_hash, index)`` conflicts.
        """
        existing = await self.get_block_progress(session, block.block_hash)
        if existing is not None:
            return existing

        await insert_ignore(
            session,
            BlockProgressDB,
            [block.model_dump()],
            index_elements=["block_hash"],
        )

        rows = [event.to_row() for event in events]
        for start in range(0, len(rows), INSERT_EVENTS_BATCH):
            await insert_ignore(
                session,
                EventDB,
                rows[start : start + INSERT_EVENTS_BATCH],
                index_elements=["block_hash", "index"],
            )

        saved = await self.get_block_progress(session, block.block_hash)
        if saved is None:
            msg = f"Block {block.block_hash} was not saved"
            raise ValueError(msg)
        return saved

    async def update_block_progress(
        self,
        session: AsyncSession,
        block: BlockProgress,
        last_processed_event_index: int,
    ) -> BlockProgress:
        """Count one more processed event for ``block``.

        Raises:
            OrderingViolation: If the index does not move forward
        """
        current = await self.get_block_progress(session, block.block_hash)
        if current is None:
            msg = f"Block {block.block_hash} not found"
            raise ValueError(msg)

        if current.is_complete:
            return current

        if last_processed_event_index <= current.last_processed_event_index:
            msg = (
                f"Event index {last_processed_event_index} already processed for block "
                f"{block.block_hash} (last {current.last_processed_event_index})"
            )
            raise OrderingViolation(msg)

        num_processed_events = current.num_processed_events + 1
        result = await session.execute(
            update(BlockProgressDB)
            .where(
                BlockProgressDB.block_hash == block.block_hash,
                BlockProgressDB.last_processed_event_index
                == current.last_processed_event_index,
            )
            .values(
                num_processed_events=num_processed_events,
                last_processed_event_index=last_processed_event_index,
                is_complete=num_processed_events >= current.num_events,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            msg = f"Block {block.block_hash} progress changed concurrently"
            raise OrderingViolation(msg)

        return current.model_copy(
            update={
                "num_processed_events": num_processed_events,
                "last_processed_event_index": last_processed_event_index,
                "is_complete": num_processed_events >= current.num_events,
            }
        )

    async def save_block_progress(
        self, session: AsyncSession, block: BlockProgress
    ) -> BlockProgress:
        """Write the counters of ``block``; counters never move backwards."""
        await session.execute(
            update(BlockProgressDB)
            .where(
                BlockProgressDB.block_hash == block.block_hash,
                BlockProgressDB.last_processed_event_index
                <= block.last_processed_event_index,
            )
            .values(
                num_processed_events=block.num_processed_events,
                last_processed_event_index=block.last_processed_event_index,
                is_complete=block.is_complete,
            )
            .execution_options(synchronize_session=False)
        )
        saved = await self.get_block_progress(session, block.block_hash)
        if saved is None:
            msg = f"Block {block.block_hash} not found"
            raise ValueError(msg)
        return saved

    # Events

    async def get_block_events(
        self,
        session: AsyncSession,
        block_hash: str,
        *,
        from_index: int = 0,
        limit: int | None = None,
    ) -> list[Event]:
        stmt = (
            select(EventDB)
            .where(EventDB.block_hash == block_hash, EventDB.index >= from_index)
            .order_by(EventDB.index)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        rows = (await session.execute(stmt)).scalars().all()
        return [Event.from_row(row) for row in rows]

    async def save_event(self, session: AsyncSession, event: Event) -> None:
        """Persist the decoded name and arguments of an existing event."""
        row = event.to_row()
        await session.execute(
            update(EventDB)
            .where(EventDB.block_hash == event.block_hash, EventDB.index == event.index)
            .values(event_name=row["event_name"], event_info=row["event_info"])
            .execution_options(synchronize_session=False)
        )

    async def remove_unknown_events(self, session: AsyncSession, block_hash: str) -> int:
        result = await session.execute(
            delete(EventDB)
            .where(
                EventDB.block_hash == block_hash,
                EventDB.event_name == UNKNOWN_EVENT_NAME,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def get_events_in_range(
        self, session: AsyncSession, from_block: int, to_block: int
    ) -> list[Event]:
        """Decoded events of non-pruned blocks between two heights, inclusive."""
        rows = (
            await session.execute(
                select(EventDB)
                .join(BlockProgressDB, BlockProgressDB.block_hash == EventDB.block_hash)
                .where(
                    BlockProgressDB.block_number.between(from_block, to_block),
                    BlockProgressDB.is_pruned.is_(False),
                    EventDB.event_name != UNKNOWN_EVENT_NAME,
                )
                .order_by(BlockProgressDB.block_number, EventDB.index)
            )
        ).scalars().all()
        return [Event.from_row(row) for row in rows]

    async def get_processed_block_count_for_range(
        self, session: AsyncSession, from_block: int, to_block: int
    ) -> tuple[int, int]:
        """Return ``(expected, actual)`` complete non-pruned blocks in a range."""
        actual = (
            await session.execute(
                select(func.count(func.distinct(BlockProgressDB.block_number))).where(
                    BlockProgressDB.block_number.between(from_block, to_block),
                    BlockProgressDB.is_pruned.is_(False),
                    BlockProgressDB.is_complete.is_(True),
                )
            )
        ).scalar_one()
        return to_block - from_block + 1, actual

    # Contracts

    async def get_contracts(self, session: AsyncSession) -> list[Contract]:
        rows = (await session.execute(select(ContractDB))).scalars().all()
        return [Contract.model_validate(row) for row in rows]

    async def save_contract(
        self,
        session: AsyncSession,
        address: str,
        kind: str,
        starting_block: int,
    ) -> Contract:
        contract = Contract(
            address=normalize_address(address), kind=kind, starting_block=starting_block
        )
        await upsert_models(session, ContractDB, [contract])
        return contract

    # Administrative rewind

    async def remove_entities_after(
        self, session: AsyncSession, block_number: int
    ) -> dict[str, int]:
        """Delete blocks, events and versioned entities above ``block_number``.

        Returns:
            Number of deleted rows per table
        """
        deleted: dict[str, int] = {}

        for mapper in Base.registry.mappers:
            entity_cls: Any = mapper.class_
            if not issubclass(entity_cls, BlockRefMixin):
                continue
            result = await session.execute(
                delete(entity_cls)
                .where(entity_cls.block_number > block_number)
                .execution_options(synchronize_session=False)
            )
            deleted[entity_cls.__tablename__] = result.rowcount or 0

        later_blocks = select(BlockProgressDB.block_hash).where(
            BlockProgressDB.block_number > block_number
        )
        result = await session.execute(
            delete(EventDB)
            .where(EventDB.block_hash.in_(later_blocks))
            .execution_options(synchronize_session=False)
        )
        deleted[EventDB.__tablename__] = result.rowcount or 0

        result = await session.execute(
            delete(BlockProgressDB)
            .where(BlockProgressDB.block_number > block_number)
            .execution_options(synchronize_session=False)
        )
        deleted[BlockProgressDB.__tablename__] = result.rowcount or 0

        logger.info("Removed entities after block %d: %s", block_number, json.dumps(deleted))
        return deleted


__all__ = ["IndexerStore"]
