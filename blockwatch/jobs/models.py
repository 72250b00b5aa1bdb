"""Pydantic models of job payloads and job records."""

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from blockwatch.data.events.models import Contract
from blockwatch.helpers.constants import (
    JOB_KIND_CONTRACT,
    JOB_KIND_EVENTS,
    JOB_KIND_INDEX,
    JOB_KIND_PRUNE,
)


class IndexBlockJob(BaseModel):
    """Index a block once its parent is complete."""

    kind: Literal["index"] = JOB_KIND_INDEX
    block_hash: str
    block_number: int = Field(ge=0)
    parent_hash: str
    block_timestamp: int = 0
    priority: int = 0


class PruneJob(BaseModel):
    """Resolve the fork at one height below the reorg window."""

    kind: Literal["prune"] = JOB_KIND_PRUNE
    prune_block_height: int = Field(ge=0)
    priority: int = 0


class ProcessEventsJob(BaseModel):
    """Apply the pending events of a saved block."""

    kind: Literal["events"] = JOB_KIND_EVENTS
    block_hash: str


class WatchContractJob(BaseModel):
    """Add a contract to the watched contract cache of every worker."""

    kind: Literal["contract"] = JOB_KIND_CONTRACT
    contract: Contract


BlockJobData = Annotated[IndexBlockJob | PruneJob, Field(discriminator="kind")]
EventJobData = Annotated[ProcessEventsJob | WatchContractJob, Field(discriminator="kind")]
JobData = Annotated[
    IndexBlockJob | PruneJob | ProcessEventsJob | WatchContractJob,
    Field(discriminator="kind"),
]

block_job_adapter: TypeAdapter[IndexBlockJob | PruneJob] = TypeAdapter(BlockJobData)
event_job_adapter: TypeAdapter[ProcessEventsJob | WatchContractJob] = TypeAdapter(
    EventJobData
)
job_data_adapter: TypeAdapter[
    IndexBlockJob | PruneJob | ProcessEventsJob | WatchContractJob
] = TypeAdapter(JobData)


class Job(BaseModel):
    """Job record handed to queue handlers."""

    id: int
    queue: str
    data: dict[str, Any]
    priority: int
    state: str
    retry_count: int
    retry_limit: int
    created_on: datetime
    started_on: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class JobRequest(BaseModel):
    """Original job carried by a completion notice."""

    id: int
    queue: str
    data: dict[str, Any]


class JobCompletion(BaseModel):
    """Terminal outcome of a job, delivered to ``on_complete`` callbacks."""

    request: JobRequest
    state: str
    failed: bool
    error: str | None = None


__all__ = [
    "BlockJobData",
    "EventJobData",
    "IndexBlockJob",
    "Job",
    "JobCompletion",
    "JobData",
    "JobRequest",
    "ProcessEventsJob",
    "PruneJob",
    "WatchContractJob",
    "block_job_adapter",
    "event_job_adapter",
    "job_data_adapter",
]
