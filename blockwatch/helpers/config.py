"""Configuration management and environment variable utilities."""

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from blockwatch.helpers.constants import (
    BLOCK_DELAY_SECONDS,
    BLOCK_POLL_MAX_DELAY,
    DEFAULT_EVENTS_IN_BATCH,
    JOB_EXPIRE_SECONDS,
    JOB_MAINTENANCE_INTERVAL,
    JOB_POLL_INTERVAL,
    JOB_RETENTION_HOURS,
    JOB_RETRY_DELAY,
    JOB_RETRY_LIMIT,
    JOB_RETRY_MAX_DELAY,
    MAX_REORG_DEPTH,
    ORDERING_ALERT_AFTER,
)


# Load environment variables from .env file
load_dotenv()

TRUE_VALUES = {"1", "true", "yes", "on"}


def get_required_env(key: str) -> str:
    """Get a required environment variable.

    Args:
        key: Environment variable name

    Returns:
        Environment variable value

    Raises:
        ValueError: If the environment variable is not set

    Example:
        ```python
        from blockwatch.helpers.config import get_required_env

        rpc_url = get_required_env("ETH_RPC_URL")
        ```
    """
    value = os.getenv(key)
    if not value:
        msg = f"{key} environment variable is not set"
        raise ValueError(msg)
    return value


def get_optional_env(key: str, default: str | None = None) -> str | None:
    """Get an optional environment variable with a default value.

    Args:
        key: Environment variable name
        default: Default value if not set

    Returns:
        Environment variable value or default
    """
    return os.getenv(key, default)


def get_bool_env(key: str, *, default: bool = False) -> bool:
    """Get a boolean environment variable ("1", "true", "yes", "on")."""
    value = os.getenv(key)
    if value is None or value == "":
        return default
    return value.strip().lower() in TRUE_VALUES


def get_eth_rpc_url(rpc_url: str | None = None) -> str:
    """Get Ethereum RPC URL from parameter or environment.

    Args:
        rpc_url: Optional RPC URL to use directly

    Returns:
        Ethereum RPC URL

    Raises:
        ValueError: If RPC URL is not provided and ETH_RPC_URL env var is not set
    """
    if rpc_url:
        return rpc_url

    env_rpc_url = os.getenv("ETH_RPC_URL")
    if not env_rpc_url:
        msg = "ETH_RPC_URL must be provided or set in environment variables"
        raise ValueError(msg)

    return env_rpc_url


class JobQueueConfig(BaseModel):
    """Settings of the durable job queue."""

    retry_limit: int = Field(default=JOB_RETRY_LIMIT, ge=0)
    retry_delay: float = Field(default=JOB_RETRY_DELAY, ge=0)
    retry_max_delay: float = Field(default=JOB_RETRY_MAX_DELAY, ge=0)
    expire_in_seconds: int = Field(default=JOB_EXPIRE_SECONDS, gt=0)
    poll_interval: float = Field(default=JOB_POLL_INTERVAL, gt=0)
    maintenance_interval: float = Field(default=JOB_MAINTENANCE_INTERVAL, gt=0)
    retention_hours: int = Field(default=JOB_RETENTION_HOURS, ge=0)


class UpstreamConfig(BaseModel):
    """Endpoints of the upstream chain node."""

    rpc_url: str | None = None
    ws_url: str | None = None
    block_delay_seconds: float = Field(default=BLOCK_DELAY_SECONDS, ge=0)
    block_poll_max_delay: float = Field(default=BLOCK_POLL_MAX_DELAY, gt=0)


class IndexerConfig(BaseModel):
    """Settings shared by the watcher, the job runner and the admin commands."""

    max_reorg_depth: int = Field(default=MAX_REORG_DEPTH, gt=0)
    start_block: int | None = None
    block_queue_concurrency: int = Field(default=1, gt=0)
    event_queue_concurrency: int = Field(default=1, gt=0)
    job_delay_ms: int = Field(default=0, ge=0)
    events_in_batch: int = Field(default=DEFAULT_EVENTS_IN_BATCH, gt=0)
    prefetch_block_count: int = Field(default=0, ge=0)
    lazy_update_block_progress: bool = False
    subgraph_events_order: bool = False
    ordering_alert_after: int = Field(default=ORDERING_ALERT_AFTER, ge=0)
    job_queue: JobQueueConfig = Field(default_factory=JobQueueConfig)
    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)


def _int_env(key: str, default: int) -> int:
    value = os.getenv(key)
    return int(value) if value else default


def _float_env(key: str, default: float) -> float:
    value = os.getenv(key)
    return float(value) if value else default


def load_config() -> IndexerConfig:
    """Build the indexer settings from environment variables.

    Returns:
        Validated indexer configuration

    Raises:
        pydantic.ValidationError: If a value is out of range
        ValueError: If a numeric variable cannot be parsed

    Example:
        ```python
        from blockwatch.helpers.config import load_config

        config = load_config()
        print(config.max_reorg_depth)
        ```
    """
    start_block = get_optional_env("START_BLOCK")

    return IndexerConfig(
        max_reorg_depth=_int_env("MAX_REORG_DEPTH", MAX_REORG_DEPTH),
        start_block=int(start_block) if start_block else None,
        block_queue_concurrency=_int_env("BLOCK_QUEUE_CONCURRENCY", 1),
        event_queue_concurrency=_int_env("EVENT_QUEUE_CONCURRENCY", 1),
        job_delay_ms=_int_env("JOB_DELAY_MS", 0),
        events_in_batch=_int_env("EVENTS_IN_BATCH", DEFAULT_EVENTS_IN_BATCH),
        prefetch_block_count=_int_env("PREFETCH_BLOCK_COUNT", 0),
        lazy_update_block_progress=get_bool_env("LAZY_UPDATE_BLOCK_PROGRESS"),
        subgraph_events_order=get_bool_env("SUBGRAPH_EVENTS_ORDER"),
        ordering_alert_after=_int_env("ORDERING_ALERT_AFTER", ORDERING_ALERT_AFTER),
        job_queue=JobQueueConfig(
            retry_limit=_int_env("JOB_RETRY_LIMIT", JOB_RETRY_LIMIT),
            retry_delay=_float_env("JOB_RETRY_DELAY", JOB_RETRY_DELAY),
            retry_max_delay=_float_env("JOB_RETRY_MAX_DELAY", JOB_RETRY_MAX_DELAY),
            expire_in_seconds=_int_env("JOB_EXPIRE_SECONDS", JOB_EXPIRE_SECONDS),
            poll_interval=_float_env("JOB_POLL_INTERVAL", JOB_POLL_INTERVAL),
            retention_hours=_int_env("JOB_RETENTION_HOURS", JOB_RETENTION_HOURS),
        ),
        upstream=UpstreamConfig(
            rpc_url=get_optional_env("ETH_RPC_URL"),
            ws_url=get_optional_env("ETH_WS_URL"),
            block_delay_seconds=_float_env("BLOCK_DELAY_SECONDS", BLOCK_DELAY_SECONDS),
            block_poll_max_delay=_float_env(
                "BLOCK_POLL_MAX_DELAY", BLOCK_POLL_MAX_DELAY
            ),
        ),
    )


__all__ = [
    "IndexerConfig",
    "JobQueueConfig",
    "UpstreamConfig",
    "get_bool_env",
    "get_eth_rpc_url",
    "get_optional_env",
    "get_required_env",
    "load_config",
]
