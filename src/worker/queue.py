"""
Brand job queue.

A durable producer/consumer queue backed by the ``jobs`` table.

Producer side (API process):
- enqueue(): add a job to the caller's transaction and return a handle
- notify(): nudge the worker once that transaction has committed

Consumer side (worker process):
- process_next(): claim the next ready job and run one attempt
- drain(): process ready jobs until none are left
- release_stale(): hand back jobs whose worker died mid-attempt; jobs that
  died on their last attempt are failed instead

Retry policy: every failed attempt is retried after a fixed backoff until
max_attempts is reached, then the job is marked failed and failure listeners
fire. Unknown job types are discarded without retries or listeners.

Ordering: among ready jobs the lowest id runs first. A job enqueued with
``after=`` is not ready until that job is terminal.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import Settings
from src.crud import job as jobs_crud
from src.errors import JobExecutionError
from src.models.base import utcnow
from src.models.job import Job, JobType
from src.schemas.job import DeleteFilePayload, UploadFilePayload, dump_job_payload, parse_job_payload

logger = logging.getLogger(__name__)


JobPayloadModel = UploadFilePayload | DeleteFilePayload
JobHandler = Callable[[JobPayloadModel], Awaitable[None]]
JobListener = Callable[..., Any]

KNOWN_JOB_TYPES = frozenset(t.value for t in JobType)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_ms: int = 5000

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(max_attempts=settings.job_max_attempts, backoff_ms=settings.job_backoff_ms)


@dataclass(frozen=True)
class JobHandle:
    id: int
    type: str
    queue: str


class TaskQueue:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        name: str = "brands",
        handler: JobHandler | None = None,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
        notifier: Callable[[], None] | None = None,
    ) -> None:
        self.name = name
        self.retry_policy = retry_policy or RetryPolicy()
        self._session_factory = session_factory
        self._handler = handler
        self._clock = clock
        self._notifier = notifier
        self._completed_listeners: list[JobListener] = []
        self._failed_listeners: list[JobListener] = []

    # ------------------------------------------------------------------
    # Producer
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        session: AsyncSession,
        payload: JobPayloadModel,
        *,
        retry_policy: RetryPolicy | None = None,
        after: JobHandle | None = None,
    ) -> JobHandle:
        """Add a job to the caller's transaction and return immediately.

        The job is only flushed: it becomes visible to the worker when the caller
        commits, together with the row change that produced it. Call notify()
        after that commit.
        """

        policy = retry_policy or self.retry_policy
        job = await jobs_crud.insert_job(
            session,
            queue=self.name,
            job_type=payload.type,
            payload=dump_job_payload(payload),
            max_attempts=policy.max_attempts,
            backoff_ms=policy.backoff_ms,
            depends_on_id=after.id if after is not None else None,
            now=self._clock(),
        )
        handle = JobHandle(id=job.id, type=job.type, queue=self.name)
        logger.info(
            "job enqueued job_id=%s type=%s queue=%s depends_on=%s",
            handle.id,
            handle.type,
            self.name,
            job.depends_on_id,
        )

        return handle

    def notify(self) -> None:
        """Nudge the worker; if the nudge is lost the periodic drain still runs."""

        if self._notifier is not None:
            self._notifier()

    def on_job_completed(self, callback: JobListener) -> JobListener:
        """Register ``callback(job)``; usable as a decorator."""

        self._completed_listeners.append(callback)
        return callback

    def on_job_failed(self, callback: JobListener) -> JobListener:
        """Register ``callback(job, error)``, called once retries are exhausted."""

        self._failed_listeners.append(callback)
        return callback

    # ------------------------------------------------------------------
    # Consumer
    # ------------------------------------------------------------------

    async def process_next(self) -> Job | None:
        """Claim the next ready job and run a single attempt.

        Returns the job in its post-attempt state, or None when nothing is ready.
        """

        if self._handler is None:
            raise RuntimeError("TaskQueue has no job handler; it can only enqueue")

        async with self._session_factory() as session:
            job = await jobs_crud.claim_next(session, queue=self.name, now=self._clock())
            if job is None:
                return None

            logger.info(
                "job claimed job_id=%s type=%s attempt=%s/%s",
                job.id,
                job.type,
                job.attempts,
                job.max_attempts,
            )

            if job.type not in KNOWN_JOB_TYPES:
                logger.warning("job discarded job_id=%s unknown type=%s", job.id, job.type)
                return await jobs_crud.mark_discarded(
                    session, job=job, reason=f"Unknown job type: {job.type}", now=self._clock()
                )

            try:
                payload = parse_job_payload(job.type, job.payload)
                await self._handler(payload)
            except Exception as e:
                error = JobExecutionError(job.id, job.attempts, e)
                return await self._handle_failure(session, job, error)

            await jobs_crud.mark_completed(session, job=job, now=self._clock())
            logger.info("job completed job_id=%s type=%s attempts=%s", job.id, job.type, job.attempts)
            await self._emit(self._completed_listeners, job)
            return job

    async def _handle_failure(self, session: AsyncSession, job: Job, error: JobExecutionError) -> Job:
        if job.attempts < job.max_attempts:
            await jobs_crud.schedule_retry(session, job=job, error=str(error), now=self._clock())
            logger.warning(
                "job retry scheduled job_id=%s attempt=%s/%s backoff_ms=%s error=%s",
                job.id,
                job.attempts,
                job.max_attempts,
                job.backoff_ms,
                error.cause,
            )
            return job

        await jobs_crud.mark_failed(session, job=job, error=str(error), now=self._clock())
        logger.error(
            "job failed job_id=%s type=%s attempts=%s",
            job.id,
            job.type,
            job.attempts,
            exc_info=error.cause,
        )
        await self._emit(self._failed_listeners, job, error)
        return job

    async def drain(self, *, max_jobs: int | None = None) -> int:
        processed = 0
        while max_jobs is None or processed < max_jobs:
            job = await self.process_next()
            if job is None:
                break
            processed += 1
        return processed

    async def release_stale(self, *, older_than: timedelta) -> int:
        """Recover jobs whose worker died mid-attempt.

        Jobs with attempts left go back to pending and the number released is
        returned. Jobs that died on their final attempt are failed and failure
        listeners fire, so no job runs more than max_attempts times.
        """

        now = self._clock()
        locked_before = now - older_than
        async with self._session_factory() as session:
            exhausted = await jobs_crud.fail_stale_exhausted(
                session, queue=self.name, locked_before=locked_before, now=now
            )
            released = await jobs_crud.release_stale(
                session, queue=self.name, locked_before=locked_before, now=now
            )

        for job in exhausted:
            logger.error("stale job failed job_id=%s type=%s attempts=%s", job.id, job.type, job.attempts)
            error = JobExecutionError(job.id, job.attempts, RuntimeError(job.last_error))
            await self._emit(self._failed_listeners, job, error)

        if released:
            logger.warning("stale jobs released queue=%s count=%s", self.name, released)
        return released

    async def _emit(self, listeners: list[JobListener], *args: Any) -> None:
        for listener in listeners:
            try:
                result = listener(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("job listener failed listener=%r", listener)
