from __future__ import annotations

from celery import Celery

from src.config import settings


def make_celery() -> Celery:
    """Create the Celery app.

    Note: we keep this in a function so tests can import tasks without eagerly
    touching global state beyond settings.
    """

    celery = Celery(
        "catalog",
        broker=settings.redis_url,
        backend=settings.redis_url,
        include=["src.worker.tasks"],
    )

    celery.conf.update(
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        timezone="UTC",
        enable_utc=True,
        # The jobs table is the source of truth; one drain at a time keeps the
        # queue strictly one-job-at-a-time.
        worker_concurrency=1,
        worker_prefetch_multiplier=1,
        task_ignore_result=True,
        # A wake-up that cannot reach the broker is dropped quickly; the beat
        # schedule below covers it.
        task_publish_retry_policy={
            "max_retries": 1,
            "interval_start": 0,
            "interval_step": 0.5,
            "interval_max": 0.5,
        },
        beat_schedule={
            "drain-brand-jobs": {
                "task": "catalog.drain_brand_jobs",
                "schedule": settings.job_poll_interval_seconds,
            },
        },
    )

    return celery


celery_app = make_celery()
