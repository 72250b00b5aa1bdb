"""Common Pydantic models for data structures used across the indexer."""

from pydantic import BaseModel, ConfigDict, Field

from blockwatch.helpers.parsers import parse_hex_int


class BlockRef(BaseModel):
    """Minimal block identity used by the watcher and the block processor."""

    block_hash: str
    block_number: int
    parent_hash: str
    block_timestamp: int = 0

    model_config = ConfigDict(frozen=True)


class BlockHeader(BaseModel):
    """Block header received from newHeads or returned by eth_getBlockBy*."""

    number: str = Field(..., description="Block number as hex string")
    hash: str = Field(..., description="Block hash")
    parent_hash: str = Field(..., description="Parent block hash", alias="parentHash")
    timestamp: str = Field(..., description="Block timestamp as hex string")
    miner: str | None = Field(default=None, description="Miner/validator address")

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_block_ref(self) -> BlockRef:
        return BlockRef(
            block_hash=self.hash,
            block_number=parse_hex_int(self.number),
            parent_hash=self.parent_hash,
            block_timestamp=parse_hex_int(self.timestamp),
        )


class RawLog(BaseModel):
    """Log entry as returned by eth_getLogs."""

    address: str
    topics: list[str] = Field(default_factory=list)
    data: str = "0x"
    block_hash: str = Field(..., alias="blockHash")
    block_number: str = Field(..., alias="blockNumber")
    transaction_hash: str = Field(..., alias="transactionHash")
    transaction_index: str = Field(default="0x0", alias="transactionIndex")
    log_index: str = Field(..., alias="logIndex")
    removed: bool = False

    model_config = ConfigDict(extra="allow", populate_by_name=True)


__all__ = [
    "BlockHeader",
    "BlockRef",
    "RawLog",
]
