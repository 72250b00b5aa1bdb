"""Pydantic models for events and watched contracts."""

import json
from typing import Any

from pydantic import BaseModel, ConfigDict

from blockwatch.helpers.constants import UNKNOWN_EVENT_NAME


class DecodedEvent(BaseModel):
    """Event name and arguments decoded from a raw log."""

    name: str
    info: dict[str, Any]


class Event(BaseModel):
    """Event of a block.

    ``event_info`` stays ``None`` while ``event_name`` holds the unknown
    sentinel; ``extra_info`` and ``proof`` are opaque serialized payloads.
    """

    id: int | None = None
    block_hash: str
    index: int
    tx_hash: str
    contract: str
    event_name: str = UNKNOWN_EVENT_NAME
    event_info: dict[str, Any] | None = None
    extra_info: str = "{}"
    proof: str = "{}"

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_decoded(self) -> bool:
        return self.event_name != UNKNOWN_EVENT_NAME

    @property
    def raw_log(self) -> dict[str, Any]:
        return json.loads(self.extra_info)

    def resolve(self, decoded: DecodedEvent) -> "Event":
        """Return a copy carrying the decoded name and arguments.

        Raises:
            ValueError: If the event was already decoded
        """
        if self.is_decoded:
            msg = f"Event {self.block_hash}:{self.index} is already decoded"
            raise ValueError(msg)
        return self.model_copy(
            update={"event_name": decoded.name, "event_info": decoded.info}
        )

    @classmethod
    def from_row(cls, row: Any) -> "Event":
        return cls(
            id=row.id,
            block_hash=row.block_hash,
            index=row.index,
            tx_hash=row.tx_hash,
            contract=row.contract,
            event_name=row.event_name,
            event_info=json.loads(row.event_info) if row.event_info else None,
            extra_info=row.extra_info,
            proof=row.proof,
        )

    def to_row(self) -> dict[str, Any]:
        return {
            "block_hash": self.block_hash,
            "index": self.index,
            "tx_hash": self.tx_hash,
            "contract": self.contract,
            "event_name": self.event_name,
            "event_info": json.dumps(self.event_info) if self.event_info is not None else None,
            "extra_info": self.extra_info,
            "proof": self.proof,
        }


class Contract(BaseModel):
    """Watched contract."""

    address: str
    kind: str
    starting_block: int

    model_config = ConfigDict(from_attributes=True)
