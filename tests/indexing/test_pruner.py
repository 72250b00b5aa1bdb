"""Tests for fork resolution below the reorg window."""

from typing import Any

import pytest

from blockwatch.data.store import IndexerStore
from blockwatch.errors import PruningError
from blockwatch.helpers.config import IndexerConfig
from blockwatch.helpers.constants import QUEUE_BLOCK_PROCESSING
from blockwatch.helpers.db import Database
from blockwatch.indexing.pruner import ChainPruner, create_pruning_job
from blockwatch.jobs.models import PruneJob
from blockwatch.jobs.queue import JobQueue


@pytest.fixture
def pruner(config: IndexerConfig, database: Database, store: IndexerStore) -> ChainPruner:
    return ChainPruner(config, database, store)


class TestCreatePruningJob:
    """Tests for create_pruning_job."""

    @pytest.mark.asyncio
    async def test_targets_height_above_canonical(self, job_queue: JobQueue) -> None:
        """Test that the job prunes the height right above the canonical cursor."""
        await create_pruning_job(job_queue, 9, priority=2)

        job = await job_queue.fetch_next(QUEUE_BLOCK_PROCESSING)

        assert job is not None
        assert job.priority == 2
        assert PruneJob.model_validate(job.data).prune_block_height == 10


class TestPruneChain:
    """Tests for ChainPruner.prune_chain."""

    @pytest.mark.asyncio
    async def test_linear_chain(
        self, pruner: ChainPruner, chain: Any, database: Database, store: IndexerStore
    ) -> None:
        """Test that a lone block at the height becomes canonical."""
        blocks = await chain.save(0, 20)
        await chain.set_sync_status(indexed=blocks[20], canonical=blocks[3])

        canonical = await pruner.prune_chain(PruneJob(prune_block_height=4))

        assert canonical is not None
        assert canonical.block_hash == chain.hash(4)
        async with database.session() as session:
            status = await store.get_sync_status(session)
        assert status is not None
        assert status.latest_canonical_block_hash == chain.hash(4)
        assert status.latest_canonical_block_number == 4

    @pytest.mark.asyncio
    async def test_fork_keeps_ancestor_of_head(
        self, pruner: ChainPruner, chain: Any, database: Database, store: IndexerStore
    ) -> None:
        """Test that the sibling not on the indexed branch is pruned."""
        main = await chain.save(0, 26)
        await chain.save(10, 20, branch="b", parent_branch="a")
        await chain.set_sync_status(indexed=main[26], canonical=main[9])

        canonical = await pruner.prune_chain(PruneJob(prune_block_height=10))

        assert canonical is not None
        assert canonical.block_hash == chain.hash(10)
        async with database.session() as session:
            unpruned = await store.get_blocks_at_height(session, 10)
            pruned = await store.get_blocks_at_height(session, 10, is_pruned=True)
            later = await store.get_blocks_at_height(session, 11)
        assert [b.block_hash for b in unpruned] == [chain.hash(10)]
        assert [b.block_hash for b in pruned] == [chain.hash(10, "b")]
        assert len(later) == 2

    @pytest.mark.asyncio
    async def test_competing_heads_resolved_by_latest_indexed(
        self, pruner: ChainPruner, chain: Any, database: Database, store: IndexerStore
    ) -> None:
        """Test that two blocks at the head height are narrowed by the indexed branch."""
        main = await chain.save(0, 26)
        await chain.save(10, 26, branch="b", parent_branch="a")
        await chain.set_sync_status(indexed=main[26], canonical=main[9])

        canonical = await pruner.prune_chain(PruneJob(prune_block_height=10))

        assert canonical is not None
        assert canonical.block_hash == chain.hash(10)

    @pytest.mark.asyncio
    async def test_consecutive_heights(self, pruner: ChainPruner, chain: Any) -> None:
        """Test pruning successive heights of a fork."""
        main = await chain.save(0, 28)
        await chain.save(10, 14, branch="b", parent_branch="a")
        await chain.set_sync_status(indexed=main[28], canonical=main[9])

        first = await pruner.prune_chain(PruneJob(prune_block_height=10))
        second = await pruner.prune_chain(PruneJob(prune_block_height=11))

        assert first is not None and first.block_hash == chain.hash(10)
        assert second is not None and second.block_hash == chain.hash(11)

    @pytest.mark.asyncio
    async def test_already_pruned_height(self, pruner: ChainPruner, chain: Any) -> None:
        """Test that a height at or below the canonical cursor is skipped."""
        blocks = await chain.save(0, 20)
        await chain.set_sync_status(indexed=blocks[20], canonical=blocks[4])

        assert await pruner.prune_chain(PruneJob(prune_block_height=4)) is None

    @pytest.mark.asyncio
    async def test_height_inside_window_raises(self, pruner: ChainPruner, chain: Any) -> None:
        """Test that heights within max_reorg_depth of the indexed block are refused."""
        blocks = await chain.save(0, 19)
        await chain.set_sync_status(indexed=blocks[19], canonical=blocks[3])

        with pytest.raises(PruningError, match="within the reorg window"):
            await pruner.prune_chain(PruneJob(prune_block_height=4))

    @pytest.mark.asyncio
    async def test_missing_sync_status_raises(self, pruner: ChainPruner) -> None:
        """Test that pruning needs a sync status."""
        with pytest.raises(PruningError, match="Sync status is not initialized"):
            await pruner.prune_chain(PruneJob(prune_block_height=4))

    @pytest.mark.asyncio
    async def test_unrelated_head_raises(
        self, pruner: ChainPruner, chain: Any, database: Database, store: IndexerStore
    ) -> None:
        """Test that a head not descending from either sibling cannot resolve the fork."""
        main = await chain.save(0, 20)
        await chain.save(10, 12, branch="b", parent_branch="a")
        (orphan,) = await chain.save(26, 26, branch="c")
        await chain.set_sync_status(indexed=main[20], canonical=main[9])
        async with database.transaction() as session:
            await store.update_sync_status_indexed_block(
                session, orphan.block_hash, orphan.block_number
            )

        with pytest.raises(PruningError, match="is not at height 10"):
            await pruner.prune_chain(PruneJob(prune_block_height=10))
