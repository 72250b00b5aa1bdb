"""Pydantic models for block progress and sync status."""

from pydantic import BaseModel, ConfigDict


class BlockProgress(BaseModel):
    """Indexing progress of a block."""

    block_hash: str
    block_number: int
    parent_hash: str
    block_timestamp: int
    num_events: int
    num_processed_events: int = 0
    last_processed_event_index: int = -1
    is_complete: bool = False
    is_pruned: bool = False

    model_config = ConfigDict(from_attributes=True)


class SyncStatus(BaseModel):
    """Chain head, latest indexed and latest canonical cursors."""

    chain_head_block_hash: str
    chain_head_block_number: int
    latest_indexed_block_hash: str
    latest_indexed_block_number: int
    latest_canonical_block_hash: str
    latest_canonical_block_number: int

    model_config = ConfigDict(from_attributes=True)

    @property
    def reorg_lag(self) -> int:
        """Blocks indexed beyond the canonical cursor."""
        return self.latest_indexed_block_number - self.latest_canonical_block_number


class BlockProgressEvent(BaseModel):
    """Snapshot published whenever a block's progress changes.

    ``error`` is set when the block or its events job failed permanently.
    """

    block_hash: str
    block_number: int
    num_events: int
    num_processed_events: int
    is_complete: bool
    error: str | None = None

    @classmethod
    def from_block(cls, block: BlockProgress) -> "BlockProgressEvent":
        return cls(
            block_hash=block.block_hash,
            block_number=block.block_number,
            num_events=block.num_events,
            num_processed_events=block.num_processed_events,
            is_complete=block.is_complete,
        )

    @classmethod
    def failed(cls, block_hash: str, block_number: int, error: str) -> "BlockProgressEvent":
        return cls(
            block_hash=block_hash,
            block_number=block_number,
            num_events=0,
            num_processed_events=0,
            is_complete=False,
            error=error,
        )
