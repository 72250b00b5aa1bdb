"""Decoders turning raw logs into named events, keyed by contract kind and topic."""

from collections.abc import Callable

from blockwatch.data.events.models import DecodedEvent
from blockwatch.helpers.constants import UNKNOWN_EVENT_NAME
from blockwatch.helpers.models import RawLog
from blockwatch.helpers.parsers import parse_hex_int, topic_to_address


EventDecoder = Callable[[RawLog], DecodedEvent]

TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
"""keccak256("Transfer(address,address,uint256)")"""

APPROVAL_TOPIC = "0x8c5be1e5ebec7d5bd14f71427d1e84f3dd0314c0f7b2291e5b200ac8c7c3b925"
"""keccak256("Approval(address,address,uint256)")"""


class DecoderRegistry:
    """Maps ``(kind, topic0)`` to a decoder."""

    def __init__(self) -> None:
        self._decoders: dict[str, dict[str, EventDecoder]] = {}

    def register(self, kind: str, topic: str, decoder: EventDecoder) -> None:
        self._decoders.setdefault(kind, {})[topic.lower()] = decoder

    def kinds(self) -> list[str]:
        return sorted(self._decoders)

    def decode(self, kind: str, raw_log: RawLog) -> DecodedEvent:
        """Decode ``raw_log``; logs without a decoder keep the unknown name."""
        if not raw_log.topics:
            return DecodedEvent(name=UNKNOWN_EVENT_NAME, info={})

        decoder = self._decoders.get(kind, {}).get(raw_log.topics[0].lower())
        if decoder is None:
            return DecodedEvent(name=UNKNOWN_EVENT_NAME, info={})
        return decoder(raw_log)


def _decode_value_event(name: str, first: str, second: str) -> EventDecoder:
    def decode(raw_log: RawLog) -> DecodedEvent:
        if len(raw_log.topics) < 3:
            msg = f"{name} log needs 3 topics, got {len(raw_log.topics)}"
            raise ValueError(msg)
        return DecodedEvent(
            name=name,
            info={
                first: topic_to_address(raw_log.topics[1]),
                second: topic_to_address(raw_log.topics[2]),
                "value": parse_hex_int(raw_log.data if raw_log.data != "0x" else None),
            },
        )

    return decode


decode_transfer = _decode_value_event("Transfer", "from", "to")
decode_approval = _decode_value_event("Approval", "owner", "spender")


def erc20_decoders(kind: str = "erc20") -> DecoderRegistry:
    registry = DecoderRegistry()
    registry.register(kind, TRANSFER_TOPIC, decode_transfer)
    registry.register(kind, APPROVAL_TOPIC, decode_approval)
    return registry


__all__ = [
    "APPROVAL_TOPIC",
    "TRANSFER_TOPIC",
    "DecoderRegistry",
    "EventDecoder",
    "decode_approval",
    "decode_transfer",
    "erc20_decoders",
]
