"""Tests for EthClient using pytest-httpx."""

import json
from typing import TYPE_CHECKING, Any

import httpx
import pytest

from blockwatch.errors import UpstreamUnavailable
from blockwatch.upstream.client import EthClient


if TYPE_CHECKING:
    from pytest_httpx import HTTPXMock


RPC_URL = "https://rpc.test"

HEADER = {
    "number": "0x10",
    "hash": "0xblock16",
    "parentHash": "0xblock15",
    "timestamp": "0x65000000",
    "miner": "0xminer",
}


def rpc_result(result: Any) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": 1, "result": result}


def sent_payloads(httpx_mock: "HTTPXMock") -> list[dict[str, Any]]:
    return [json.loads(request.content) for request in httpx_mock.get_requests()]


@pytest.fixture
def client() -> EthClient:
    return EthClient(RPC_URL, max_retries=2, retry_delay=0)


class TestGetBlocks:
    """Tests for block lookups."""

    @pytest.mark.asyncio
    async def test_by_number(self, client: EthClient, httpx_mock: "HTTPXMock") -> None:
        """Test looking a block up by its number."""
        httpx_mock.add_response(url=RPC_URL, json=rpc_result(HEADER))

        blocks = await client.get_blocks(block_number=16)

        assert len(blocks) == 1
        assert blocks[0].block_hash == "0xblock16"
        assert blocks[0].block_number == 16
        assert blocks[0].parent_hash == "0xblock15"
        assert blocks[0].block_timestamp == 0x65000000
        (payload,) = sent_payloads(httpx_mock)
        assert payload["method"] == "eth_getBlockByNumber"
        assert payload["params"] == ["0x10", False]
        await client.close()

    @pytest.mark.asyncio
    async def test_by_hash(self, client: EthClient, httpx_mock: "HTTPXMock") -> None:
        """Test looking a block up by its hash."""
        httpx_mock.add_response(url=RPC_URL, json=rpc_result(HEADER))

        blocks = await client.get_blocks(block_hash="0xblock16")

        assert [b.block_number for b in blocks] == [16]
        (payload,) = sent_payloads(httpx_mock)
        assert payload["method"] == "eth_getBlockByHash"
        assert payload["params"] == ["0xblock16", False]
        await client.close()

    @pytest.mark.asyncio
    async def test_unknown_block(self, client: EthClient, httpx_mock: "HTTPXMock") -> None:
        """Test that a block the node does not have yields no blocks."""
        httpx_mock.add_response(url=RPC_URL, json=rpc_result(None))

        assert await client.get_blocks(block_number=99) == []
        await client.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "selectors",
        [{}, {"block_number": 1, "block_hash": "0xabc"}],
    )
    async def test_selector_required(self, client: EthClient, selectors: dict[str, Any]) -> None:
        """Test that exactly one of number and hash must be given."""
        with pytest.raises(ValueError, match="Exactly one of block_number and block_hash"):
            await client.get_blocks(**selectors)
        await client.close()


class TestLatestBlockAndLogs:
    """Tests for get_latest_block and get_logs."""

    @pytest.mark.asyncio
    async def test_latest_block(self, client: EthClient, httpx_mock: "HTTPXMock") -> None:
        """Test that the latest block is requested by tag."""
        httpx_mock.add_response(url=RPC_URL, json=rpc_result(HEADER))

        block = await client.get_latest_block()

        assert block.block_number == 16
        assert sent_payloads(httpx_mock)[0]["params"] == ["latest", False]
        await client.close()

    @pytest.mark.asyncio
    async def test_no_latest_block(self, client: EthClient, httpx_mock: "HTTPXMock") -> None:
        """Test that a node without a latest block is unavailable."""
        httpx_mock.add_response(url=RPC_URL, json=rpc_result(None))

        with pytest.raises(UpstreamUnavailable, match="no latest block"):
            await client.get_latest_block()
        await client.close()

    @pytest.mark.asyncio
    async def test_logs_by_block_hash(self, client: EthClient, httpx_mock: "HTTPXMock") -> None:
        """Test fetching every log of a block."""
        log = {
            "address": "0xtoken",
            "topics": ["0xtopic"],
            "data": "0x01",
            "blockHash": "0xblock16",
            "blockNumber": "0x10",
            "transactionHash": "0xtx",
            "transactionIndex": "0x0",
            "logIndex": "0x3",
            "removed": False,
        }
        httpx_mock.add_response(url=RPC_URL, json=rpc_result([log]))

        logs = await client.get_logs("0xblock16")

        assert [(entry.address, entry.log_index) for entry in logs] == [("0xtoken", "0x3")]
        (payload,) = sent_payloads(httpx_mock)
        assert payload["method"] == "eth_getLogs"
        assert payload["params"] == [{"blockHash": "0xblock16"}]
        await client.close()


class TestErrors:
    """Tests for retries and error wrapping."""

    @pytest.mark.asyncio
    async def test_rpc_error_after_retries(
        self, client: EthClient, httpx_mock: "HTTPXMock"
    ) -> None:
        """Test that a persistent RPC error surfaces as UpstreamUnavailable."""
        error = {"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "busy"}}
        httpx_mock.add_response(url=RPC_URL, json=error)
        httpx_mock.add_response(url=RPC_URL, json=error)

        with pytest.raises(UpstreamUnavailable, match="eth_getLogs failed"):
            await client.get_logs("0xblock16")

        assert len(httpx_mock.get_requests()) == 2
        await client.close()

    @pytest.mark.asyncio
    async def test_transport_error_is_retried(
        self, client: EthClient, httpx_mock: "HTTPXMock"
    ) -> None:
        """Test that a failed request is retried before giving up."""
        httpx_mock.add_exception(httpx.ConnectError("connection refused"))
        httpx_mock.add_response(url=RPC_URL, json=rpc_result(HEADER))

        blocks = await client.get_blocks(block_number=16)

        assert len(blocks) == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_server_error(self, client: EthClient, httpx_mock: "HTTPXMock") -> None:
        """Test that HTTP errors are wrapped too."""
        httpx_mock.add_response(url=RPC_URL, status_code=503)
        httpx_mock.add_response(url=RPC_URL, status_code=503)

        with pytest.raises(UpstreamUnavailable):
            await client.get_blocks(block_number=16)
        await client.close()


class TestClose:
    """Tests for closing the HTTP client."""

    @pytest.mark.asyncio
    async def test_shared_client_stays_open(self) -> None:
        """Test that a client passed in is left for its owner to close."""
        async with httpx.AsyncClient() as http_client:
            client = EthClient(RPC_URL, http_client=http_client)
            await client.close()

            assert not http_client.is_closed

    @pytest.mark.asyncio
    async def test_owned_client_is_closed(self, client: EthClient) -> None:
        """Test that the client created internally is closed."""
        await client.close()

        assert client.http_client.is_closed
