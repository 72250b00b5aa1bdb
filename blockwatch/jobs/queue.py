"""Durable, priority-ordered job queue stored in the relational database.

Jobs are rows of ``job_queue``. Workers claim the highest-priority pending
job with ``SELECT ... FOR UPDATE SKIP LOCKED`` and a conditional state flip,
so several processes can pull from the same queue. A job whose handler raises
is retried with capped exponential backoff until its retry limit, after which
it fails. Every terminal outcome inserts a completion job on
``__state__completed__<queue>`` within the same transaction; ``on_complete``
callbacks consume those, which makes completion delivery as durable as the
jobs themselves.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from blockwatch.errors import IndexingError, JobExpired, NonRetryableJobError
from blockwatch.helpers.config import JobQueueConfig
from blockwatch.helpers.constants import COMPLETION_QUEUE_PREFIX
from blockwatch.helpers.db import Database
from blockwatch.helpers.http import backoff_delay
from blockwatch.helpers.logging import get_logger
from blockwatch.jobs.db import JobDB, JobState, utc_now
from blockwatch.jobs.models import Job, JobCompletion, JobRequest


logger = get_logger(__name__)

JobHandler = Callable[[Job], Awaitable[Any]]
CompletionHandler = Callable[[JobCompletion], Awaitable[Any]]


def completion_queue_name(queue: str) -> str:
    """Name of the queue receiving terminal outcomes of ``queue``.

    Example:
        >>> completion_queue_name("block-processing")
        '__state__completed__block-processing'
    """
    return f"{COMPLETION_QUEUE_PREFIX}{queue}"


class JobQueue:
    """Job queue client shared by the watcher, the job runner and admin commands."""

    def __init__(self, database: Database, config: JobQueueConfig | None = None) -> None:
        self._db = database
        self.config = config or JobQueueConfig()
        self._workers: list[asyncio.Task[None]] = []
        self._maintenance_task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the maintenance loop; workers are added by ``subscribe``."""
        if self._running:
            return
        self._running = True
        self._maintenance_task = asyncio.create_task(
            self._maintain(), name="job-queue-maintenance"
        )
        logger.info("Job queue started")

    async def stop(self) -> None:
        """Cancel all workers and the maintenance loop."""
        self._running = False
        tasks = list(self._workers)
        if self._maintenance_task is not None:
            tasks.append(self._maintenance_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers.clear()
        self._maintenance_task = None
        logger.info("Job queue stopped")

    async def subscribe(
        self,
        queue: str,
        handler: JobHandler,
        *,
        concurrency: int = 1,
    ) -> None:
        """Start ``concurrency`` workers dispatching jobs of ``queue`` to ``handler``.

        Raises:
            RuntimeError: If the queue has not been started
        """
        if not self._running:
            msg = "Job queue is not started"
            raise RuntimeError(msg)

        for worker_index in range(concurrency):
            task = asyncio.create_task(
                self._work(queue, handler), name=f"{queue}-worker-{worker_index}"
            )
            self._workers.append(task)
        logger.info("Subscribed to %s with %d worker(s)", queue, concurrency)

    async def on_complete(
        self,
        queue: str,
        callback: CompletionHandler,
        *,
        concurrency: int = 1,
    ) -> None:
        """Invoke ``callback`` with the terminal outcome of every job of ``queue``."""

        async def handle(job: Job) -> None:
            await callback(JobCompletion.model_validate(job.data))

        await self.subscribe(completion_queue_name(queue), handle, concurrency=concurrency)

    async def push_job(
        self,
        queue: str,
        data: BaseModel | dict[str, Any],
        *,
        priority: int = 0,
        start_after: datetime | None = None,
    ) -> int:
        """Enqueue a job and return its id.

        Args:
            queue: Queue name
            data: Job payload, a pydantic model or a JSON-compatible dict
            priority: Higher priorities are dequeued first
            start_after: Earliest time the job may run (naive UTC)

        Returns:
            Id of the new job
        """
        payload = data.model_dump(mode="json") if isinstance(data, BaseModel) else dict(data)

        async with self._db.transaction() as session:
            job = self._new_job(queue, payload, priority=priority, start_after=start_after)
            session.add(job)
            await session.flush()
            job_id = job.id

        logger.debug("Pushed job %s to %s with priority %d", job_id, queue, priority)
        return job_id

    async def fetch_next(self, queue: str) -> Job | None:
        """Claim the next runnable job of ``queue``, or return None."""
        now = utc_now()
        async with self._db.transaction() as session:
            stmt = (
                select(JobDB)
                .where(
                    JobDB.queue == queue,
                    JobDB.state.in_(JobState.PENDING),
                    JobDB.start_after <= now,
                )
                .order_by(JobDB.priority.desc(), JobDB.created_on, JobDB.id)
                .limit(1)
                .with_for_update(skip_locked=True)
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                return None

            job = Job.model_validate(row)
            claimed = await session.execute(
                update(JobDB)
                .where(JobDB.id == row.id, JobDB.state.in_(JobState.PENDING))
                .values(state=JobState.ACTIVE, started_on=now)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount == 0:
                return None

        return job.model_copy(update={"state": JobState.ACTIVE, "started_on": now})

    async def complete(self, job: Job, output: Any = None) -> bool:
        """Mark an active job completed; returns False if it was not active."""
        now = utc_now()
        async with self._db.transaction() as session:
            result = await session.execute(
                update(JobDB)
                .where(JobDB.id == job.id, JobDB.state == JobState.ACTIVE)
                .values(
                    state=JobState.COMPLETED,
                    completed_on=now,
                    output=None if output is None else str(output),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                return False
            self._notify(session, job, JobState.COMPLETED)
        return True

    async def mark_complete(self, job: Job) -> None:
        """Complete a job from inside its handler; later completion is a no-op."""
        if await self.complete(job):
            logger.debug("Job %s on %s marked complete", job.id, job.queue)

    async def fail(self, job: Job, error: BaseException, *, retry: bool = True) -> str | None:
        """Record a handler failure.

        The job is rescheduled with backoff while retries remain (and ``retry``
        is True), otherwise it is failed and a completion is emitted.

        Returns:
            The new state, or None if the job was no longer active
        """
        now = utc_now()
        async with self._db.transaction() as session:
            row = await session.get(JobDB, job.id, with_for_update=True)
            if row is None or row.state != JobState.ACTIVE:
                return None

            row.output = str(error)
            if retry and row.retry_count < row.retry_limit:
                delay = backoff_delay(
                    row.retry_count, row.retry_delay, self.config.retry_max_delay
                )
                row.retry_count += 1
                row.state = JobState.RETRY
                row.start_after = now + timedelta(seconds=delay)
                return JobState.RETRY

            row.state = JobState.FAILED
            row.completed_on = now
            self._notify(session, job, JobState.FAILED, str(error))
            return JobState.FAILED

    async def expire_jobs(self) -> int:
        """Expire active jobs that outlived their time to live.

        Returns:
            Number of jobs expired or rescheduled
        """
        now = utc_now()
        expired = 0
        async with self._db.transaction() as session:
            rows = (
                await session.execute(
                    select(JobDB)
                    .where(JobDB.state == JobState.ACTIVE)
                    .with_for_update(skip_locked=True)
                )
            ).scalars().all()

            for row in rows:
                if row.started_on is None:
                    continue
                if row.started_on + timedelta(seconds=row.expire_in_seconds) > now:
                    continue

                expired += 1
                error = JobExpired(f"Job {row.id} expired after {row.expire_in_seconds}s")
                row.output = str(error)
                if row.retry_count < row.retry_limit:
                    row.retry_count += 1
                    row.state = JobState.RETRY
                    row.start_after = now
                    logger.warning("Job %s on %s expired, retrying", row.id, row.queue)
                    continue

                row.state = JobState.EXPIRED
                row.completed_on = now
                self._notify(session, Job.model_validate(row), JobState.EXPIRED, str(error))
                logger.error("Job %s on %s expired", row.id, row.queue)

        return expired

    async def purge_completed(self, older_than: timedelta) -> int:
        """Delete terminal jobs finished before ``now - older_than``."""
        cutoff = utc_now() - older_than
        async with self._db.transaction() as session:
            result = await session.execute(
                delete(JobDB).where(
                    JobDB.state.in_(JobState.TERMINAL),
                    JobDB.completed_on < cutoff,
                )
            )
        return result.rowcount or 0

    async def delete_all_jobs(self) -> int:
        """Delete every job of every queue."""
        async with self._db.transaction() as session:
            result = await session.execute(delete(JobDB))
        deleted = result.rowcount or 0
        logger.info("Deleted %d job(s)", deleted)
        return deleted

    async def get_job(self, job_id: int) -> Job | None:
        async with self._db.session() as session:
            row = await session.get(JobDB, job_id)
            return Job.model_validate(row) if row is not None else None

    async def count_jobs(self, queue: str, state: str | None = None) -> int:
        stmt = select(func.count()).select_from(JobDB).where(JobDB.queue == queue)
        if state is not None:
            stmt = stmt.where(JobDB.state == state)
        async with self._db.session() as session:
            return (await session.execute(stmt)).scalar_one()

    async def work_once(self, queue: str, handler: JobHandler) -> Job | None:
        """Claim and run a single job of ``queue``; returns the job run, if any."""
        job = await self.fetch_next(queue)
        if job is not None:
            await self._run_job(job, handler)
        return job

    def _new_job(
        self,
        queue: str,
        payload: dict[str, Any],
        *,
        priority: int,
        start_after: datetime | None = None,
    ) -> JobDB:
        now = utc_now()
        return JobDB(
            queue=queue,
            data=payload,
            priority=priority,
            state=JobState.CREATED,
            retry_count=0,
            retry_limit=self.config.retry_limit,
            retry_delay=self.config.retry_delay,
            expire_in_seconds=self.config.expire_in_seconds,
            start_after=start_after or now,
            created_on=now,
        )

    def _notify(
        self,
        session: AsyncSession,
        job: Job,
        state: str,
        error: str | None = None,
    ) -> None:
        if job.queue.startswith(COMPLETION_QUEUE_PREFIX):
            return

        completion = JobCompletion(
            request=JobRequest(id=job.id, queue=job.queue, data=job.data),
            state=state,
            failed=state != JobState.COMPLETED,
            error=error,
        )
        session.add(
            self._new_job(
                completion_queue_name(job.queue),
                completion.model_dump(mode="json"),
                priority=job.priority,
            )
        )

    async def _run_job(self, job: Job, handler: JobHandler) -> None:
        try:
            output = await handler(job)
        except NonRetryableJobError as e:
            logger.error("Job %s on %s failed permanently: %s", job.id, job.queue, e)
            await self.fail(job, e, retry=False)
        except IndexingError as e:
            logger.warning(
                "Job %s on %s will be retried (%d/%d): %s",
                job.id,
                job.queue,
                job.retry_count + 1,
                job.retry_limit,
                e,
            )
            await self.fail(job, e)
        except Exception as e:
            logger.exception("Job %s on %s raised", job.id, job.queue)
            await self.fail(job, e)
        else:
            await self.complete(job, output)

    async def _work(self, queue: str, handler: JobHandler) -> None:
        while self._running:
            try:
                job = await self.fetch_next(queue)
            except Exception:
                logger.exception("Failed to fetch job from %s", queue)
                await asyncio.sleep(self.config.poll_interval)
                continue

            if job is None:
                await asyncio.sleep(self.config.poll_interval)
                continue

            try:
                await self._run_job(job, handler)
            except Exception:
                # The job stays active and is picked up again by expiry.
                logger.exception("Failed to record outcome of job %s on %s", job.id, queue)
                await asyncio.sleep(self.config.poll_interval)

    async def _maintain(self) -> None:
        retention = timedelta(hours=self.config.retention_hours)
        while self._running:
            await asyncio.sleep(self.config.maintenance_interval)
            try:
                expired = await self.expire_jobs()
                purged = await self.purge_completed(retention)
            except Exception:
                logger.exception("Job queue maintenance failed")
                continue
            if expired or purged:
                logger.info("Maintenance expired %d and purged %d job(s)", expired, purged)


__all__ = [
    "CompletionHandler",
    "JobHandler",
    "JobQueue",
    "completion_queue_name",
]
