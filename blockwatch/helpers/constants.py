"""Common configuration constants used across the indexer."""

# Reorg handling
MAX_REORG_DEPTH = 16
"""Number of blocks below the chain head that may still be replaced by a fork"""

UNKNOWN_EVENT_NAME = "__unknown__"
"""Event name stored for logs of contracts that are not watched yet"""

# Queue names
QUEUE_BLOCK_PROCESSING = "block-processing"
"""Queue carrying index and prune jobs"""

QUEUE_EVENT_PROCESSING = "event-processing"
"""Queue carrying events and contract jobs"""

COMPLETION_QUEUE_PREFIX = "__state__completed__"
"""Prefix of the queues receiving terminal job outcomes"""

# Job kinds
JOB_KIND_INDEX = "index"
"""Index a block and resolve its ancestry"""

JOB_KIND_PRUNE = "prune"
"""Prune sibling blocks at a contested height"""

JOB_KIND_EVENTS = "events"
"""Apply the events of a saved block"""

JOB_KIND_CONTRACT = "contract"
"""Refresh the watched contract cache on every worker"""

# Batching
DEFAULT_EVENTS_IN_BATCH = 50
"""Number of events loaded from the store per batch"""

INSERT_EVENTS_BATCH = 100
"""Number of events inserted per statement when saving a block"""

# Job queue defaults
JOB_RETRY_LIMIT = 15
"""Number of retries before a job is failed"""

JOB_RETRY_DELAY = 1.0
"""Base retry delay for failed jobs in seconds"""

JOB_RETRY_MAX_DELAY = 60.0
"""Maximum retry delay for failed jobs in seconds"""

JOB_EXPIRE_SECONDS = 24 * 60 * 60
"""Time an active job may run before it is expired"""

JOB_POLL_INTERVAL = 0.1
"""Delay between polls of an empty queue in seconds"""

JOB_MAINTENANCE_INTERVAL = 30.0
"""Delay between queue maintenance passes in seconds"""

JOB_RETENTION_HOURS = 4
"""Hours completed and failed jobs are kept before purging"""

ORDERING_ALERT_AFTER = 3
"""Retries of an out-of-order event before it is treated as corruption"""

# Upstream polling
BLOCK_DELAY_SECONDS = 2.0
"""Initial wait when a block number is not available upstream yet"""

BLOCK_POLL_MAX_DELAY = 30.0
"""Maximum wait between upstream polls for a block number"""

# HTTP and Network Constants
DEFAULT_TIMEOUT = 30.0
"""Default HTTP request timeout in seconds"""

# Retry Configuration
MAX_RETRIES = 5
"""Default maximum number of retry attempts"""

RETRY_BASE_DELAY = 1.0
"""Base delay for exponential backoff in seconds"""

RETRY_MAX_DELAY = 60.0
"""Maximum delay between retries in seconds"""

# WebSocket
WS_PING_INTERVAL = 20
"""Seconds between websocket pings"""

WS_PING_TIMEOUT = 10
"""Seconds to wait for a websocket pong"""


__all__ = [
    "BLOCK_DELAY_SECONDS",
    "BLOCK_POLL_MAX_DELAY",
    "COMPLETION_QUEUE_PREFIX",
    "DEFAULT_EVENTS_IN_BATCH",
    "DEFAULT_TIMEOUT",
    "INSERT_EVENTS_BATCH",
    "JOB_EXPIRE_SECONDS",
    "JOB_KIND_CONTRACT",
    "JOB_KIND_EVENTS",
    "JOB_KIND_INDEX",
    "JOB_KIND_PRUNE",
    "JOB_MAINTENANCE_INTERVAL",
    "JOB_POLL_INTERVAL",
    "JOB_RETENTION_HOURS",
    "JOB_RETRY_DELAY",
    "JOB_RETRY_LIMIT",
    "JOB_RETRY_MAX_DELAY",
    "MAX_REORG_DEPTH",
    "MAX_RETRIES",
    "ORDERING_ALERT_AFTER",
    "QUEUE_BLOCK_PROCESSING",
    "QUEUE_EVENT_PROCESSING",
    "RETRY_BASE_DELAY",
    "RETRY_MAX_DELAY",
    "UNKNOWN_EVENT_NAME",
    "WS_PING_INTERVAL",
    "WS_PING_TIMEOUT",
]
