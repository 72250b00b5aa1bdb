"""Database models for events and watched contracts."""

from sqlalchemy import BigInteger, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from blockwatch.helpers.db import Base, BigIntPK


class EventDB(Base):
    """Log emitted in a block, decoded once its contract is watched."""

    __tablename__ = "event"
    __table_args__ = (UniqueConstraint("block_hash", "index", name="uq_event_block_index"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    block_hash: Mapped[str] = mapped_column(
        String(66),
        ForeignKey("block_progress.block_hash", ondelete="CASCADE"),
        index=True,
    )
    index: Mapped[int] = mapped_column(Integer)
    tx_hash: Mapped[str] = mapped_column(String(66))
    contract: Mapped[str] = mapped_column(String(42), index=True)
    event_name: Mapped[str] = mapped_column(String(256), index=True)
    event_info: Mapped[str | None] = mapped_column(Text, nullable=True)
    extra_info: Mapped[str] = mapped_column(Text)
    proof: Mapped[str] = mapped_column(Text)


class ContractDB(Base):
    """Contract whose events are decoded and handed to the indexer."""

    __tablename__ = "contract"

    address: Mapped[str] = mapped_column(String(42), primary_key=True)
    kind: Mapped[str] = mapped_column(String(64))
    starting_block: Mapped[int] = mapped_column(BigInteger)
