from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import settings
from src.database import make_worker_engine
from src.models.job import Job
from src.services.image_store import CloudinaryImageStore
from src.worker.celery_app import celery_app
from src.worker.handlers import BrandJobHandler
from src.worker.queue import RetryPolicy, TaskQueue


logger = logging.getLogger(__name__)


def _log_completed(job: Job) -> None:
    logger.info("job done job_id=%s type=%s", job.id, job.type)


def _log_failed(job: Job, error: Exception) -> None:
    logger.error("job gave up job_id=%s type=%s error=%s", job.id, job.type, error)


def build_worker_queue(session_factory: async_sessionmaker[AsyncSession]) -> TaskQueue:
    handler = BrandJobHandler(
        session_factory,
        CloudinaryImageStore.from_settings(settings),
        folder=settings.brand_icon_folder,
    )
    queue = TaskQueue(
        session_factory,
        name=settings.job_queue_name,
        handler=handler,
        retry_policy=RetryPolicy.from_settings(settings),
    )
    queue.on_job_completed(_log_completed)
    queue.on_job_failed(_log_failed)
    return queue


async def drain_queue(queue: TaskQueue) -> int:
    await queue.release_stale(older_than=timedelta(seconds=settings.job_stale_after_seconds))
    return await queue.drain()


async def _run_drain() -> int:
    engine = make_worker_engine()
    try:
        session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
        return await drain_queue(build_worker_queue(session_factory))
    finally:
        await engine.dispose()


@celery_app.task(name="catalog.drain_brand_jobs")
def drain_brand_jobs() -> int:
    """Run every ready brand job, one at a time.

    Triggered by the API after each enqueue and by the beat schedule, so jobs
    whose backoff has elapsed are picked up without a fresh enqueue.
    """

    processed = asyncio.run(_run_drain())
    logger.info("drain_brand_jobs finished processed=%s", processed)
    return processed
