"""Tests for the newHeads subscription stream."""

import json
from typing import Any

import pytest

from blockwatch.helpers.models import BlockRef
from blockwatch.upstream.subscription import NewHeadsSubscription


class FakeWebSocket:
    """Async iterator over canned websocket messages."""

    def __init__(self, messages: list[dict[str, Any]]) -> None:
        self._messages = [json.dumps(message) for message in messages]

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> str:
        if not self._messages:
            raise StopAsyncIteration
        return self._messages.pop(0)


def notification(header: dict[str, Any]) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "method": "eth_subscription",
        "params": {"subscription": "0xsub", "result": header},
    }


def header(number: int) -> dict[str, Any]:
    return {
        "number": hex(number),
        "hash": f"0xhead{number}",
        "parentHash": f"0xhead{number - 1}",
        "timestamp": hex(1_700_000_000 + number),
    }


class TestStreamBlocks:
    """Tests for NewHeadsSubscription._stream_blocks."""

    @pytest.mark.asyncio
    async def test_forwards_headers(self) -> None:
        """Test that every valid header reaches the callback as a block reference."""
        received: list[BlockRef] = []

        async def on_block(block: BlockRef) -> None:
            received.append(block)

        subscription = NewHeadsSubscription("wss://node.test", on_block)
        websocket = FakeWebSocket(
            [
                notification(header(10)),
                {"jsonrpc": "2.0", "id": 1, "result": "0xsub"},
                notification({"number": "0xb"}),
                notification(header(11)),
            ]
        )

        await subscription._stream_blocks(websocket)  # type: ignore[arg-type]

        assert [(b.block_number, b.parent_hash) for b in received] == [
            (10, "0xhead9"),
            (11, "0xhead10"),
        ]
        assert subscription.blocks_received == 2

    @pytest.mark.asyncio
    async def test_stops_after_shutdown(self) -> None:
        """Test that no header is forwarded once shutdown was requested."""
        received: list[BlockRef] = []

        async def on_block(block: BlockRef) -> None:
            received.append(block)
            subscription.shutdown()

        subscription = NewHeadsSubscription("wss://node.test", on_block)
        websocket = FakeWebSocket([notification(header(1)), notification(header(2))])

        await subscription._stream_blocks(websocket)  # type: ignore[arg-type]

        assert [b.block_number for b in received] == [1]
