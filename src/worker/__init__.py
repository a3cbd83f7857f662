"""Background job queue and the Celery worker that drains it."""
