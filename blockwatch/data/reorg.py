"""Reorg-aware ancestor queries over ``block_progress``.

Blocks within ``max_depth`` of a given block form its frothy region: a fork
may still replace them, so entity versions written there are only visible
along the branch of the block being read. Below the region, the latest
version in a non-pruned block wins.

All walks follow ``parent_hash`` one primary-key lookup per hop and stop
early where tracked history ends.
"""

from collections.abc import AsyncIterator, Sequence
from typing import Any

from pydantic import BaseModel
from sqlalchemy import and_, func, or_, select
from sqlalchemy.engine import Row
from sqlalchemy.ext.asyncio import AsyncSession

from blockwatch.data.blocks.db import BlockProgressDB


class FrothyRegion(BaseModel):
    """Branch hashes within the reorg window and the height below it."""

    block_hashes: list[str]
    canonical_block_number: int


async def walk_ancestors(
    session: AsyncSession, block_hash: str, steps: int
) -> AsyncIterator[Row[Any]]:
    """Yield up to ``steps`` blocks, starting with ``block_hash`` and going to parents."""
    current = block_hash
    for _ in range(steps):
        row = (
            await session.execute(
                select(
                    BlockProgressDB.block_hash,
                    BlockProgressDB.block_number,
                    BlockProgressDB.parent_hash,
                ).where(BlockProgressDB.block_hash == current)
            )
        ).one_or_none()
        if row is None:
            return
        yield row
        current = row.parent_hash


async def get_ancestor_at_depth(
    session: AsyncSession, block_hash: str, depth: int
) -> str:
    """Hash of the block ``depth`` parents above ``block_hash``.

    When fewer ancestors are recorded, the oldest recorded one is returned.

    Raises:
        ValueError: If depth is negative or ``block_hash`` is unknown
    """
    if depth < 0:
        msg = f"Depth must not be negative: {depth}"
        raise ValueError(msg)

    oldest = None
    async for row in walk_ancestors(session, block_hash, depth + 1):
        oldest = row

    if oldest is None:
        msg = f"Block {block_hash} not found"
        raise ValueError(msg)
    return oldest.block_hash


async def get_frothy_region(
    session: AsyncSession, block_hash: str, max_depth: int
) -> FrothyRegion:
    """Hashes of the ``max_depth`` newest blocks of the branch ending at ``block_hash``.

    Raises:
        ValueError: If ``block_hash`` is unknown
    """
    hashes: list[str] = []
    oldest_number = None
    async for row in walk_ancestors(session, block_hash, max_depth):
        hashes.append(row.block_hash)
        oldest_number = row.block_number

    if oldest_number is None:
        msg = f"Block {block_hash} not found"
        raise ValueError(msg)
    return FrothyRegion(block_hashes=hashes, canonical_block_number=oldest_number - 1)


async def block_is_ancestor(
    session: AsyncSession, ancestor_hash: str, block_hash: str, max_depth: int
) -> bool:
    """Whether ``ancestor_hash`` is on the branch of ``block_hash`` within ``max_depth``."""
    async for row in walk_ancestors(session, block_hash, max_depth + 1):
        if row.block_hash == ancestor_hash:
            return True
    return False


async def get_latest_pruned_entity[EntityType](
    session: AsyncSession,
    entity_cls: type[EntityType],
    entity_id: str,
    canonical_block_number: int,
) -> EntityType | None:
    """Latest version of an entity in a non-pruned block at or below a height."""
    entity: Any = entity_cls
    stmt = (
        select(entity_cls)
        .join(BlockProgressDB, BlockProgressDB.block_hash == entity.block_hash)
        .where(
            BlockProgressDB.is_pruned.is_(False),
            entity.id == entity_id,
            entity.block_number <= canonical_block_number,
        )
        .order_by(entity.block_number.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def get_prev_entity_version[EntityType](
    session: AsyncSession,
    entity_cls: type[EntityType],
    block_hash: str,
    entity_id: str,
    max_depth: int,
) -> EntityType | None:
    """Version of an entity visible at ``block_hash``.

    Walks the branch from ``block_hash`` (inclusive) for at most ``max_depth``
    blocks looking for a write; falls back to the latest version below the
    oldest block visited.
    """
    entity: Any = entity_cls
    oldest_number = None
    async for row in walk_ancestors(session, block_hash, max_depth):
        found = (
            await session.execute(
                select(entity_cls)
                .where(entity.id == entity_id, entity.block_hash == row.block_hash)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if found is not None:
            return found
        oldest_number = row.block_number

    if oldest_number is None:
        return None
    return await get_latest_pruned_entity(
        session, entity_cls, entity_id, oldest_number - 1
    )


async def get_latest_entities[EntityType](
    session: AsyncSession,
    entity_cls: type[EntityType],
    block_hash: str,
    max_depth: int,
    *,
    where: Sequence[Any] = (),
    block_number: int | None = None,
) -> list[EntityType]:
    """Latest version of every entity visible at ``block_hash``.

    Args:
        session: Session to read in
        entity_cls: Versioned entity model using ``BlockRefMixin``
        block_hash: Block the read is made at
        max_depth: Reorg window size
        where: Extra filters on the entity model
        block_number: Ignore versions written above this height
    """
    entity: Any = entity_cls
    region = await get_frothy_region(session, block_hash, max_depth)
    if block_number is not None:
        where = [*where, entity.block_number <= block_number]

    visible = and_(
        BlockProgressDB.is_pruned.is_(False),
        or_(
            entity.block_hash.in_(region.block_hashes),
            entity.block_number <= region.canonical_block_number,
        ),
        *where,
    )

    latest = (
        select(entity.id, func.max(entity.block_number).label("block_number"))
        .join(BlockProgressDB, BlockProgressDB.block_hash == entity.block_hash)
        .where(visible)
        .group_by(entity.id)
        .subquery()
    )

    stmt = (
        select(entity_cls)
        .join(BlockProgressDB, BlockProgressDB.block_hash == entity.block_hash)
        .join(
            latest,
            and_(
                entity.id == latest.c.id,
                entity.block_number == latest.c.block_number,
            ),
        )
        .where(visible)
        .order_by(entity.id)
        .execution_options(populate_existing=True)
    )
    return list((await session.execute(stmt)).scalars().all())


__all__ = [
    "FrothyRegion",
    "block_is_ancestor",
    "get_ancestor_at_depth",
    "get_frothy_region",
    "get_latest_entities",
    "get_latest_pruned_entity",
    "get_prev_entity_version",
    "walk_ancestors",
]
