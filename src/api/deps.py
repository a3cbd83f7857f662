from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.database import SessionLocal, get_db
from src.services.brand_service import BrandService
from src.services.uploads import LocalUploadStorage
from src.worker.dispatch import wake_job_worker
from src.worker.queue import RetryPolicy, TaskQueue


def get_task_queue() -> TaskQueue:
    # Producer-only queue: the API enqueues, the Celery worker executes.
    return TaskQueue(
        SessionLocal,
        name=settings.job_queue_name,
        retry_policy=RetryPolicy.from_settings(settings),
        notifier=wake_job_worker,
    )


def get_upload_storage() -> LocalUploadStorage:
    return LocalUploadStorage(settings.upload_dir)


def get_brand_service(
    session: AsyncSession = Depends(get_db),
    queue: TaskQueue = Depends(get_task_queue),
) -> BrandService:
    return BrandService(session, queue=queue)
