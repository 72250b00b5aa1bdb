"""Upstream chain node client over JSON-RPC."""

from typing import Any

import httpx

from blockwatch.errors import UpstreamUnavailable
from blockwatch.helpers.constants import DEFAULT_TIMEOUT, MAX_RETRIES, RETRY_BASE_DELAY
from blockwatch.helpers.http import create_http_client, retry_with_backoff
from blockwatch.helpers.logging import get_logger
from blockwatch.helpers.models import BlockHeader, BlockRef, RawLog
from blockwatch.helpers.rpc import RPCClient
from blockwatch.helpers.rpc_models import (
    EthGetBlockByHashRequest,
    EthGetBlockByNumberRequest,
    EthGetLogsRequest,
    JsonRpcRequest,
)


logger = get_logger(__name__)


class EthClient:
    """Block and log lookups against one trusted node."""

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = RETRY_BASE_DELAY,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            rpc_url: JSON-RPC endpoint URL
            timeout: Request timeout in seconds
            max_retries: Attempts per request before giving up
            retry_delay: Initial backoff delay in seconds
            http_client: Shared HTTP client, created when omitted

        Raises:
            ValueError: If rpc_url is empty
        """
        self.rpc = RPCClient(rpc_url, timeout=timeout)
        self.http_client = http_client or create_http_client(timeout=timeout)
        self._owns_http_client = http_client is None
        self._send_with_retry = retry_with_backoff(
            max_retries=max_retries, base_delay=retry_delay
        )(self._send)

    async def _send(self, request: JsonRpcRequest) -> Any:
        return await self.rpc.send(self.http_client, request)

    async def request(self, request: JsonRpcRequest) -> Any:
        """Send a request, retrying transport and RPC errors.

        Raises:
            UpstreamUnavailable: If every attempt failed
        """
        try:
            return await self._send_with_retry(request)
        except (httpx.HTTPError, ValueError) as e:
            msg = f"{request.method} failed: {e}"
            raise UpstreamUnavailable(msg) from e

    async def get_blocks(
        self,
        *,
        block_number: int | None = None,
        block_hash: str | None = None,
    ) -> list[BlockRef]:
        """Blocks matching a number or a hash; empty when the node has none.

        Raises:
            ValueError: If neither or both selectors are given
        """
        if (block_number is None) == (block_hash is None):
            msg = "Exactly one of block_number and block_hash is required"
            raise ValueError(msg)

        if block_hash is not None:
            request: JsonRpcRequest = EthGetBlockByHashRequest(params=[block_hash, False])
        else:
            request = EthGetBlockByNumberRequest(params=[hex(block_number or 0), False])

        result = await self.request(request)
        if not result:
            return []
        return [BlockHeader.model_validate(result).to_block_ref()]

    async def get_latest_block(self) -> BlockRef:
        result = await self.request(EthGetBlockByNumberRequest(params=["latest", False]))
        if not result:
            msg = "Node returned no latest block"
            raise UpstreamUnavailable(msg)
        return BlockHeader.model_validate(result).to_block_ref()

    async def get_logs(self, block_hash: str) -> list[RawLog]:
        result = await self.request(EthGetLogsRequest(params=[{"blockHash": block_hash}]))
        return [RawLog.model_validate(log) for log in result or []]

    async def close(self) -> None:
        if self._owns_http_client:
            await self.http_client.aclose()


__all__ = ["EthClient"]
