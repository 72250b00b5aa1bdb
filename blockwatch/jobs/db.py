"""Database model of the durable job queue."""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from blockwatch.helpers.db import Base, BigIntPK


def utc_now() -> datetime:
    """Naive UTC timestamp, comparable with values read back from any dialect."""
    return datetime.now(UTC).replace(tzinfo=None)


class JobState:
    """Job lifecycle states."""

    CREATED = "created"
    RETRY = "retry"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"

    PENDING = (CREATED, RETRY)
    TERMINAL = (COMPLETED, FAILED, EXPIRED)


class JobDB(Base):
    """Queued unit of work."""

    __tablename__ = "job_queue"
    __table_args__ = (
        Index("ix_job_queue_fetch", "queue", "state", "priority", "created_on"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    queue: Mapped[str] = mapped_column(String(255))
    data: Mapped[dict[str, Any]] = mapped_column(JSON)
    priority: Mapped[int] = mapped_column(Integer, default=0)
    state: Mapped[str] = mapped_column(String(16), default=JobState.CREATED)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    retry_limit: Mapped[int] = mapped_column(Integer)
    retry_delay: Mapped[float] = mapped_column(Float)
    expire_in_seconds: Mapped[int] = mapped_column(Integer)
    start_after: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    created_on: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    started_on: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_on: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    output: Mapped[str | None] = mapped_column(Text, nullable=True)
