from datetime import timedelta
from pathlib import Path

import pytest

from src.crud import job as jobs_crud
from src.errors import JobExecutionError
from src.models.job import JobStatus
from src.schemas.brand import BrandSnapshot
from src.schemas.job import DeleteFilePayload, UploadFilePayload
from src.worker.queue import RetryPolicy, TaskQueue
from tests._helpers import PNG_BYTES, fetch_brand, fetch_jobs, insert_brand


pytestmark = pytest.mark.anyio

ICON_URL = "https://res.cloudinary.com/demo/image/upload/v1/brands/old.png"


async def _enqueue_upload(queue, session, brand, stored_file, **kwargs):
    payload = UploadFilePayload(file=stored_file, brand=BrandSnapshot.model_validate(brand))
    handle = await queue.enqueue(session, payload, **kwargs)
    await session.commit()
    return handle


async def test_enqueue_records_pending_job_with_default_policy(session, session_factory, queue, stored_file):
    brand = await insert_brand(session, name="Mazda")

    handle = await _enqueue_upload(queue, session, brand, stored_file)

    (job,) = await fetch_jobs(session_factory)
    assert job.id == handle.id
    assert handle.type == "uploadFile"
    assert handle.queue == "brands"
    assert job.status == JobStatus.PENDING.value
    assert job.attempts == 0
    assert job.max_attempts == 3
    assert job.backoff_ms == 5000
    assert job.payload["brand"]["name"] == "Mazda"
    assert job.payload["file"]["path"] == stored_file.path
    assert "type" not in job.payload


async def test_enqueue_accepts_a_custom_retry_policy(session, session_factory, queue):
    await queue.enqueue(session, DeleteFilePayload(url=ICON_URL), retry_policy=RetryPolicy(max_attempts=1, backoff_ms=10))
    await session.commit()

    (job,) = await fetch_jobs(session_factory)
    assert job.max_attempts == 1
    assert job.backoff_ms == 10


async def test_enqueue_only_flushes_into_the_callers_transaction(session, session_factory, queue):
    await queue.enqueue(session, DeleteFilePayload(url=ICON_URL))
    await session.rollback()

    assert await fetch_jobs(session_factory) == []


async def test_notify_calls_notifier(session_factory):
    calls = []
    producer = TaskQueue(session_factory, notifier=lambda: calls.append("wake"))

    producer.notify()

    assert calls == ["wake"]


async def test_process_next_returns_none_when_queue_is_empty(queue):
    assert await queue.process_next() is None
    assert await queue.drain() == 0


async def test_process_next_without_handler_raises(session_factory):
    producer = TaskQueue(session_factory)
    with pytest.raises(RuntimeError):
        await producer.process_next()


async def test_upload_job_sets_icon_and_removes_temp_file(
    session, session_factory, queue, image_store, stored_file
):
    brand = await insert_brand(session, name="Mazda")
    completed = []
    queue.on_job_completed(lambda job: completed.append(job.id))

    handle = await _enqueue_upload(queue, session, brand, stored_file)
    job = await queue.process_next()

    assert job.id == handle.id
    assert job.status == JobStatus.COMPLETED.value
    assert job.attempts == 1
    assert completed == [handle.id]
    assert image_store.uploaded == [(PNG_BYTES, "brands")]

    stored = await fetch_brand(session_factory, brand.id)
    assert stored.icon == image_store.calls[0][1]
    assert not Path(stored_file.path).exists()


async def test_failed_attempt_waits_for_backoff_then_succeeds(
    session, session_factory, queue, image_store, clock, stored_file
):
    brand = await insert_brand(session, name="Mazda")
    completed = []
    queue.on_job_completed(lambda job: completed.append(job.id))
    image_store.fail_uploads = 2

    await _enqueue_upload(queue, session, brand, stored_file)

    job = await queue.process_next()
    assert job.status == JobStatus.PENDING.value
    assert job.attempts == 1
    assert "upload unavailable" in job.last_error
    # Temp file survives so the retry can read it again.
    assert Path(stored_file.path).exists()

    # Not ready until the fixed backoff has elapsed.
    clock.advance(ms=4999)
    assert await queue.process_next() is None

    clock.advance(ms=1)
    job = await queue.process_next()
    assert job.status == JobStatus.PENDING.value
    assert job.attempts == 2

    clock.advance(ms=5000)
    job = await queue.process_next()
    assert job.status == JobStatus.COMPLETED.value
    assert job.attempts == 3

    assert completed == [job.id]
    assert len(image_store.uploaded) == 1


async def test_job_fails_after_max_attempts_and_notifies_once(
    session, session_factory, queue, image_store, clock, stored_file
):
    brand = await insert_brand(session, name="Mazda")
    failures = []
    completed = []
    queue.on_job_failed(lambda job, error: failures.append((job.id, error)))
    queue.on_job_completed(lambda job: completed.append(job.id))
    image_store.fail_uploads = 10

    handle = await _enqueue_upload(queue, session, brand, stored_file)

    for _ in range(3):
        await queue.process_next()
        clock.advance(ms=5000)

    assert await queue.process_next() is None

    (job,) = await fetch_jobs(session_factory)
    assert job.status == JobStatus.FAILED.value
    assert job.attempts == 3
    assert job.finished_at is not None

    assert completed == []
    assert len(failures) == 1
    job_id, error = failures[0]
    assert job_id == handle.id
    assert isinstance(error, JobExecutionError)
    assert error.attempt == 3

    stored = await fetch_brand(session_factory, brand.id)
    assert stored.icon == ""


async def test_async_listeners_are_awaited(session, queue):
    seen = []

    @queue.on_job_completed
    async def record(job):
        seen.append(job.type)

    await queue.enqueue(session, DeleteFilePayload(url=ICON_URL))
    await session.commit()

    await queue.drain()

    assert seen == ["deleteFile"]


async def test_listener_error_does_not_affect_job_outcome(session, session_factory, queue):
    seen = []

    def broken(job):
        raise RuntimeError("listener down")

    queue.on_job_completed(broken)
    queue.on_job_completed(lambda job: seen.append(job.id))

    handle = await queue.enqueue(session, DeleteFilePayload(url=ICON_URL))
    await session.commit()

    job = await queue.process_next()

    assert job.status == JobStatus.COMPLETED.value
    assert seen == [handle.id]


async def test_unknown_job_type_is_discarded_without_retry_or_listeners(
    session, session_factory, queue, clock
):
    events = []
    queue.on_job_completed(lambda job: events.append("completed"))
    queue.on_job_failed(lambda job, error: events.append("failed"))

    await jobs_crud.insert_job(
        session,
        queue="brands",
        job_type="resizeFile",
        payload={"url": ICON_URL},
        max_attempts=3,
        backoff_ms=5000,
        depends_on_id=None,
        now=clock(),
    )
    await session.commit()

    job = await queue.process_next()
    assert job.status == JobStatus.DISCARDED.value
    assert job.attempts == 1
    assert "resizeFile" in job.last_error

    clock.advance(ms=5000)
    assert await queue.process_next() is None
    assert events == []


async def test_jobs_run_in_enqueue_order(session, queue, image_store):
    for n in range(3):
        await queue.enqueue(session, DeleteFilePayload(url=f"{ICON_URL}?n={n}"))
        await session.commit()

    assert await queue.drain() == 3
    assert image_store.deleted == [f"{ICON_URL}?n={n}" for n in range(3)]


async def test_dependent_job_waits_for_its_dependency(
    session, session_factory, queue, image_store, clock, stored_file
):
    brand = await insert_brand(session, name="Mazda", icon=ICON_URL)
    image_store.fail_deletes = 1

    delete = await queue.enqueue(session, DeleteFilePayload(url=ICON_URL))
    await session.commit()

    await _enqueue_upload(queue, session, brand, stored_file, after=delete)

    job = await queue.process_next()
    assert job.id == delete.id
    assert job.status == JobStatus.PENDING.value

    # The upload is ready by time but blocked behind the pending delete.
    assert await queue.process_next() is None

    clock.advance(ms=5000)
    assert await queue.drain() == 2
    assert [kind for kind, _ in image_store.calls] == ["delete", "upload"]


async def test_dependent_job_runs_after_dependency_gives_up(
    session, session_factory, queue, image_store, clock, stored_file
):
    brand = await insert_brand(session, name="Mazda", icon=ICON_URL)
    image_store.fail_deletes = 3

    delete = await queue.enqueue(session, DeleteFilePayload(url=ICON_URL))
    await session.commit()

    await _enqueue_upload(queue, session, brand, stored_file, after=delete)

    for _ in range(3):
        await queue.process_next()
        clock.advance(ms=5000)

    job = await queue.process_next()
    assert job.type == "uploadFile"
    assert job.status == JobStatus.COMPLETED.value

    stored = await fetch_brand(session_factory, brand.id)
    assert stored.icon == image_store.calls[-1][1]


async def test_release_stale_returns_abandoned_job_to_pending(session, session_factory, queue, clock):
    await queue.enqueue(session, DeleteFilePayload(url=ICON_URL))
    await session.commit()

    # A worker claims the job and dies before recording the outcome.
    async with session_factory() as s:
        claimed = await jobs_crud.claim_next(s, queue="brands", now=clock())
    assert claimed.status == JobStatus.RUNNING.value

    assert await queue.release_stale(older_than=timedelta(minutes=10)) == 0

    clock.advance(seconds=601)
    assert await queue.release_stale(older_than=timedelta(minutes=10)) == 1

    job = await queue.process_next()
    assert job.status == JobStatus.COMPLETED.value
    assert job.attempts == 2


async def test_release_stale_fails_job_lost_on_its_final_attempt(
    session, session_factory, queue, image_store, clock
):
    failures = []
    queue.on_job_failed(lambda job, error: failures.append((job.id, error)))
    image_store.fail_deletes = 2

    handle = await queue.enqueue(session, DeleteFilePayload(url=ICON_URL))
    await session.commit()

    for _ in range(2):
        await queue.process_next()
        clock.advance(ms=5000)

    # Third and last attempt: the worker dies before recording the outcome.
    async with session_factory() as s:
        claimed = await jobs_crud.claim_next(s, queue="brands", now=clock())
    assert claimed.attempts == claimed.max_attempts == 3

    clock.advance(seconds=601)
    assert await queue.release_stale(older_than=timedelta(minutes=10)) == 0

    (job,) = await fetch_jobs(session_factory)
    assert job.status == JobStatus.FAILED.value
    assert job.attempts == 3
    assert job.last_error == jobs_crud.STALE_FINAL_ATTEMPT_ERROR
    assert job.finished_at is not None

    assert [job_id for job_id, _ in failures] == [handle.id]
    assert isinstance(failures[0][1], JobExecutionError)

    assert await queue.process_next() is None
    assert image_store.deleted == []


async def test_queues_are_isolated_by_name(session, session_factory, queue, image_store):
    other = TaskQueue(session_factory, name="reports")
    await other.enqueue(session, DeleteFilePayload(url=ICON_URL))
    await session.commit()

    assert await queue.process_next() is None
    assert image_store.deleted == []
