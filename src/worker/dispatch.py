from __future__ import annotations

import logging

from src.config import settings

logger = logging.getLogger(__name__)


def wake_job_worker() -> None:
    """Ask the Celery worker to drain the brand job table.

    This function must be non-fatal: the job row is already committed, and the
    periodic drain will run it even if the broker is unreachable right now.
    """

    if not settings.job_wakeup_enabled:
        return

    try:
        # Import lazily so the HTTP app can start even if the broker config is
        # broken in a given environment.
        from src.worker.tasks import drain_brand_jobs

        drain_brand_jobs.delay()
    except Exception:
        logger.exception("Failed to wake job worker")
