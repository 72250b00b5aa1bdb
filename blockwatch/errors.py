"""Exceptions raised by the indexing pipeline and the job queue."""


class NonRetryableJobError(Exception):
    """Raised by a job handler to fail its job without further retries."""


class IndexingError(Exception):
    """Base class of pipeline errors."""


class TransientDependencyNotReady(IndexingError):
    """A block's parent is missing or not complete yet; the job is retried."""


class OrderingViolation(IndexingError):
    """An event was about to be applied out of sequence."""


class EventOrderCorruption(OrderingViolation, NonRetryableJobError):
    """An ordering violation that persisted across retries."""


class UpstreamUnavailable(IndexingError):
    """The upstream node could not be reached after retrying."""


class ReorgLagExceeded(IndexingError):
    """Indexing ran too far ahead of the canonical cursor; a prune job was queued."""


class PruningError(IndexingError):
    """Pruning preconditions do not hold yet."""


class JobExpired(IndexingError):
    """An active job ran past its time to live."""


class BlockProcessingFailed(IndexingError):
    """A block of a bounded range could not be indexed."""


__all__ = [
    "BlockProcessingFailed",
    "EventOrderCorruption",
    "IndexingError",
    "JobExpired",
    "NonRetryableJobError",
    "OrderingViolation",
    "PruningError",
    "ReorgLagExceeded",
    "TransientDependencyNotReady",
    "UpstreamUnavailable",
]
