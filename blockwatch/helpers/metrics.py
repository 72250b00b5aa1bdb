"""Prometheus gauges describing the most recently completed block."""

from prometheus_client import Gauge, start_http_server

from blockwatch.data.blocks.models import BlockProgress
from blockwatch.helpers.logging import get_logger


logger = get_logger(__name__)

LAST_PROCESSED_BLOCK = Gauge("last_processed_block", "Last processed block")
LAST_BLOCK_PROCESS_DURATION_MS = Gauge(
    "last_block_process_duration_ms", "Last block process duration (ms)"
)
LAST_BLOCK_NUM_EVENTS = Gauge("last_block_num_events", "Number of events in the last block")


def record_block_complete(block: BlockProgress) -> None:
    """Publish the number and event count of a block that just completed."""
    LAST_PROCESSED_BLOCK.set(block.block_number)
    LAST_BLOCK_NUM_EVENTS.set(block.num_events)


def record_block_duration(seconds: float) -> None:
    LAST_BLOCK_PROCESS_DURATION_MS.set(seconds * 1000)


def start_metrics_server(host: str, port: int) -> None:
    """Serve every registered metric at ``http://host:port/metrics``.

    The server runs in a daemon thread and lives as long as the process.

    Example:
        ```python
        from blockwatch.helpers.metrics import start_metrics_server

        start_metrics_server("0.0.0.0", 9000)
        ```
    """
    start_http_server(port, addr=host)
    logger.info("Metrics exposed at http://%s:%d/metrics", host, port)


__all__ = [
    "LAST_BLOCK_NUM_EVENTS",
    "LAST_BLOCK_PROCESS_DURATION_MS",
    "LAST_PROCESSED_BLOCK",
    "record_block_complete",
    "record_block_duration",
    "start_metrics_server",
]
