"""Reusable SQLAlchemy column mixins."""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column


class BlockRefMixin:
    """Columns tying a versioned entity row to the block that wrote it.

    Tables using this mixin are append-only: every write in a new block adds a
    row, and the primary key is ``(id, block_hash)``. Reads resolve the right
    version through ``blockwatch.data.reorg``.
    """

    block_hash: Mapped[str] = mapped_column(
        String(66),
        primary_key=True,
        index=True,
        doc="Hash of the block that wrote this version",
    )
    block_number: Mapped[int] = mapped_column(
        BigInteger,
        index=True,
        nullable=False,
        doc="Number of the block that wrote this version",
    )
