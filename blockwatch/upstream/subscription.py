"""newHeads websocket subscription feeding the block watcher."""

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError
from websockets.asyncio.client import ClientConnection, connect

from blockwatch.helpers.constants import WS_PING_INTERVAL, WS_PING_TIMEOUT
from blockwatch.helpers.logging import get_logger
from blockwatch.helpers.models import BlockHeader, BlockRef
from blockwatch.helpers.rpc_models import EthSubscribeRequest


logger = get_logger(__name__)

BlockCallback = Callable[[BlockRef], Awaitable[Any]]


class NewHeadsSubscription:
    """Subscribes to newHeads and forwards every header, reconnecting on errors."""

    def __init__(
        self,
        ws_url: str,
        on_block: BlockCallback,
        *,
        max_retry_delay: float = 60.0,
    ) -> None:
        self.ws_url = ws_url
        self.on_block = on_block
        self.max_retry_delay = max_retry_delay
        self.should_shutdown = False
        self.reconnect_count = 0
        self.blocks_received = 0

    async def run(self) -> None:
        """Connect and stream headers until ``shutdown`` is called."""
        retry_delay = 1.0

        while not self.should_shutdown:
            try:
                logger.info("Connecting to %s", self.ws_url)
                async with connect(
                    self.ws_url,
                    ping_interval=WS_PING_INTERVAL,
                    ping_timeout=WS_PING_TIMEOUT,
                ) as websocket:
                    await websocket.send(EthSubscribeRequest().model_dump_json())

                    response_data = json.loads(await websocket.recv())
                    if "result" in response_data:
                        logger.info(
                            "Subscribed to newHeads: %s", response_data["result"]
                        )
                        retry_delay = 1.0
                        await self._stream_blocks(websocket)
                    else:
                        logger.error("Subscription failed: %s", response_data)

            except ConnectionError as e:
                logger.warning("WebSocket connection closed: %s", e)
            except Exception:
                logger.exception("WebSocket error")

            if not self.should_shutdown:
                self.reconnect_count += 1
                logger.info(
                    "Reconnecting in %s s (attempt %s)", retry_delay, self.reconnect_count
                )
                await asyncio.sleep(retry_delay)
                retry_delay = min(retry_delay * 2, self.max_retry_delay)

    async def _stream_blocks(self, websocket: ClientConnection) -> None:
        async for message in websocket:
            if self.should_shutdown:
                break

            data = json.loads(message)
            header_data = data.get("params", {}).get("result")
            if not header_data:
                continue

            try:
                block = BlockHeader.model_validate(header_data).to_block_ref()
            except ValidationError:
                logger.warning("Ignoring malformed header: %s", header_data)
                continue

            self.blocks_received += 1
            logger.debug("Received block %d %s", block.block_number, block.block_hash)
            await self.on_block(block)

    def shutdown(self) -> None:
        self.should_shutdown = True


__all__ = ["NewHeadsSubscription"]
