"""Pydantic models for JSON-RPC requests and responses."""

from typing import Any

from pydantic import BaseModel, Field


class JsonRpcRequest(BaseModel):
    """JSON-RPC 2.0 request model."""

    jsonrpc: str = Field(default="2.0", description="JSON-RPC version")
    method: str = Field(..., description="Method name to call")
    params: list[Any] = Field(
        default_factory=list, description="Method parameters"
    )
    id: int | str = Field(default=1, description="Request ID")


class EthGetBlockByNumberRequest(JsonRpcRequest):
    """JSON-RPC request for eth_getBlockByNumber."""

    method: str = Field(default="eth_getBlockByNumber", frozen=True)


class EthGetBlockByHashRequest(JsonRpcRequest):
    """JSON-RPC request for eth_getBlockByHash."""

    method: str = Field(default="eth_getBlockByHash", frozen=True)


class EthGetLogsRequest(JsonRpcRequest):
    """JSON-RPC request for eth_getLogs."""

    method: str = Field(default="eth_getLogs", frozen=True)


class EthSubscribeRequest(JsonRpcRequest):
    """JSON-RPC request opening a websocket subscription."""

    method: str = Field(default="eth_subscribe", frozen=True)
    params: list[Any] = Field(default_factory=lambda: ["newHeads"])


__all__ = [
    "EthGetBlockByHashRequest",
    "EthGetBlockByNumberRequest",
    "EthGetLogsRequest",
    "EthSubscribeRequest",
    "JsonRpcRequest",
]
