"""Database models for block progress and sync status."""

from sqlalchemy import BigInteger, Boolean, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from blockwatch.helpers.db import Base


SYNC_STATUS_ID = 1


class BlockProgressDB(Base):
    """Indexing progress of one block hash, canonical or not."""

    __tablename__ = "block_progress"
    __table_args__ = (Index("ix_block_progress_number_pruned", "block_number", "is_pruned"),)

    block_hash: Mapped[str] = mapped_column(String(66), primary_key=True)
    block_number: Mapped[int] = mapped_column(BigInteger, index=True)
    parent_hash: Mapped[str] = mapped_column(String(66), index=True)
    block_timestamp: Mapped[int] = mapped_column(BigInteger)
    num_events: Mapped[int] = mapped_column(Integer)
    num_processed_events: Mapped[int] = mapped_column(Integer, default=0)
    last_processed_event_index: Mapped[int] = mapped_column(Integer, default=-1)
    is_complete: Mapped[bool] = mapped_column(Boolean, default=False)
    is_pruned: Mapped[bool] = mapped_column(Boolean, default=False)


class SyncStatusDB(Base):
    """Single-row cursor of chain head, indexed and canonical blocks."""

    __tablename__ = "sync_status"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=SYNC_STATUS_ID)
    chain_head_block_hash: Mapped[str] = mapped_column(String(66))
    chain_head_block_number: Mapped[int] = mapped_column(BigInteger)
    latest_indexed_block_hash: Mapped[str] = mapped_column(String(66))
    latest_indexed_block_number: Mapped[int] = mapped_column(BigInteger)
    latest_canonical_block_hash: Mapped[str] = mapped_column(String(66))
    latest_canonical_block_number: Mapped[int] = mapped_column(BigInteger)
