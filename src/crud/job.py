"""Durable job store operations.

Claiming uses an optimistic conditional update so two workers can never run
the same attempt:
1. Find the lowest-id job WHERE status=pending AND available_at <= now and whose
   dependency (if any) is terminal
2. UPDATE it to running only if it is still pending
3. Retry with the next candidate if another worker won the race
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from src.models.job import TERMINAL_STATUSES, Job, JobStatus


# Candidates examined per claim before giving up on a contended queue.
CLAIM_CANDIDATES = 5


STALE_FINAL_ATTEMPT_ERROR = "Worker lost during the final attempt"


async def insert_job(
    session: AsyncSession,
    *,
    queue: str,
    job_type: str,
    payload: dict[str, Any],
    max_attempts: int,
    backoff_ms: int,
    depends_on_id: int | None,
    now: datetime,
) -> Job:
    job = Job(
        queue=queue,
        type=job_type,
        payload=payload,
        status=JobStatus.PENDING.value,
        attempts=0,
        max_attempts=max_attempts,
        backoff_ms=backoff_ms,
        depends_on_id=depends_on_id,
        available_at=now,
        created_at=now,
        updated_at=now,
    )
    session.add(job)
    await session.flush()
    return job


async def get_job(session: AsyncSession, *, job_id: int) -> Job | None:
    return await session.get(Job, job_id)


async def claim_next(session: AsyncSession, *, queue: str, now: datetime) -> Job | None:
    parent = aliased(Job)
    stmt = (
        select(Job.id)
        .outerjoin(parent, Job.depends_on_id == parent.id)
        .where(
            Job.queue == queue,
            Job.status == JobStatus.PENDING.value,
            Job.available_at <= now,
            or_(Job.depends_on_id.is_(None), parent.id.is_(None), parent.status.in_(TERMINAL_STATUSES)),
        )
        .order_by(Job.id)
        .limit(CLAIM_CANDIDATES)
    )
    candidates = list((await session.execute(stmt)).scalars().all())

    for job_id in candidates:
        result = await session.execute(
            update(Job)
            .where(Job.id == job_id, Job.status == JobStatus.PENDING.value)
            .values(
                status=JobStatus.RUNNING.value,
                attempts=Job.attempts + 1,
                locked_at=now,
                updated_at=now,
            )
        )
        if result.rowcount == 1:
            await session.commit()
            job = await session.get(Job, job_id, populate_existing=True)
            return job

    await session.commit()
    return None


async def mark_completed(session: AsyncSession, *, job: Job, now: datetime) -> Job:
    job.status = JobStatus.COMPLETED.value
    job.locked_at = None
    job.finished_at = now
    job.last_error = None
    job.updated_at = now
    await session.commit()
    return job


async def mark_discarded(session: AsyncSession, *, job: Job, reason: str, now: datetime) -> Job:
    job.status = JobStatus.DISCARDED.value
    job.locked_at = None
    job.finished_at = now
    job.last_error = reason
    job.updated_at = now
    await session.commit()
    return job


async def schedule_retry(session: AsyncSession, *, job: Job, error: str, now: datetime) -> Job:
    job.status = JobStatus.PENDING.value
    job.locked_at = None
    job.last_error = error
    job.available_at = now + timedelta(milliseconds=job.backoff_ms)
    job.updated_at = now
    await session.commit()
    return job


async def mark_failed(session: AsyncSession, *, job: Job, error: str, now: datetime) -> Job:
    job.status = JobStatus.FAILED.value
    job.locked_at = None
    job.finished_at = now
    job.last_error = error
    job.updated_at = now
    await session.commit()
    return job


async def fail_stale_exhausted(
    session: AsyncSession, *, queue: str, locked_before: datetime, now: datetime
) -> list[Job]:
    """Fail jobs stuck in running whose lost attempt was their last one."""

    stale = (
        Job.queue == queue,
        Job.status == JobStatus.RUNNING.value,
        Job.locked_at < locked_before,
        Job.attempts >= Job.max_attempts,
    )
    ids = list((await session.execute(select(Job.id).where(*stale))).scalars().all())
    if not ids:
        return []

    await session.execute(
        update(Job)
        .where(Job.id.in_(ids), *stale)
        .values(
            status=JobStatus.FAILED.value,
            locked_at=None,
            finished_at=now,
            last_error=STALE_FINAL_ATTEMPT_ERROR,
            updated_at=now,
        )
    )
    await session.commit()

    r = await session.execute(
        select(Job)
        .where(Job.id.in_(ids), Job.status == JobStatus.FAILED.value)
        .order_by(Job.id)
        .execution_options(populate_existing=True)
    )
    return list(r.scalars().all())


async def release_stale(session: AsyncSession, *, queue: str, locked_before: datetime, now: datetime) -> int:
    """Return jobs stuck in running (worker died mid-attempt) to pending.

    Only jobs with attempts left are released; see fail_stale_exhausted().
    """

    result = await session.execute(
        update(Job)
        .where(
            Job.queue == queue,
            Job.status == JobStatus.RUNNING.value,
            Job.locked_at < locked_before,
            Job.attempts < Job.max_attempts,
        )
        .values(status=JobStatus.PENDING.value, locked_at=None, available_at=now, updated_at=now)
    )
    await session.commit()
    return int(result.rowcount or 0)
