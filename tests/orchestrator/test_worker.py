"""JobWorker and callback delivery tests.

Handlers are plain coroutines; no git or subprocess involved.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import httpx
import pytest

from gitsmith.orchestrator.errors import PersistenceError
from gitsmith.orchestrator.models.enums import JobStatus, JobType
from gitsmith.orchestrator.models.job import Job
from gitsmith.orchestrator.queue.callbacks import SIGNATURE_HEADER, CallbackNotifier, sign_payload
from gitsmith.orchestrator.queue.manager import JobQueue
from gitsmith.orchestrator.queue.worker import SHUTDOWN_ERROR, JobWorker
from gitsmith.orchestrator.store.local import LocalJobStore


@pytest.fixture
def queue(tmp_path: Path) -> JobQueue:
    return JobQueue(LocalJobStore(tmp_path))


async def _wait_for(queue: JobQueue, job_id: str, *, timeout: float = 5.0) -> Job:
    async def poll() -> Job:
        while True:
            job = await queue.get(job_id)
            if job.status.is_terminal:
                return job
            await asyncio.sleep(0.01)

    return await asyncio.wait_for(poll(), timeout=timeout)


# -- run_once ------------------------------------------------------------------


async def test_run_once_idle(queue: JobQueue) -> None:
    worker = JobWorker(queue, {})
    assert await worker.run_once() is None


async def test_run_once_completes_job(queue: JobQueue) -> None:
    async def push(job: Job) -> dict[str, Any]:
        return {"pushedBranch": job.params.get("branch", "main")}

    job_id = await queue.submit(JobType.PUSH, {"branch": "dev"}, workspace_id="ws-1")
    worker = JobWorker(queue, {JobType.PUSH: push})

    final = await worker.run_once()
    assert final is not None
    assert final.id == job_id
    assert final.status is JobStatus.COMPLETED
    assert final.result == {"pushedBranch": "dev"}


async def test_handler_exception_fails_only_that_job(queue: JobQueue) -> None:
    async def push(job: Job) -> dict[str, Any]:
        if job.params.get("explode"):
            msg = "remote rejected the push"
            raise RuntimeError(msg)
        return {"ok": True}

    bad = await queue.submit(JobType.PUSH, {"explode": True}, workspace_id="ws-1")
    good = await queue.submit(JobType.PUSH, {}, workspace_id="ws-1")
    worker = JobWorker(queue, {JobType.PUSH: push})

    await worker.run_once()
    await worker.run_once()

    failed = await queue.get(bad)
    assert failed.status is JobStatus.FAILED
    assert failed.error == "remote rejected the push"
    assert (await queue.get(good)).status is JobStatus.COMPLETED
    assert not queue.is_processing()


async def test_missing_handler_fails_job(queue: JobQueue) -> None:
    job_id = await queue.submit(JobType.WORKSPACE_CLEANUP)
    worker = JobWorker(queue, {})

    await worker.run_once()
    job = await queue.get(job_id)
    assert job.status is JobStatus.FAILED
    assert job.error is not None and "No handler" in job.error


async def test_unserialisable_result_fails_job(queue: JobQueue) -> None:
    async def push(job: Job) -> dict[str, Any]:
        return {"value": object()}

    job_id = await queue.submit(JobType.PUSH, workspace_id="ws-1")
    await JobWorker(queue, {JobType.PUSH: push}).run_once()

    job = await queue.get(job_id)
    assert job.status is JobStatus.FAILED
    assert job.error is not None and job.error.startswith("Job result could not be stored")


class FailingTerminalWrites(LocalJobStore):
    def __init__(self, data_root: Path, failures: int) -> None:
        super().__init__(data_root)
        self.failures = failures

    async def write(self, job: Job) -> None:
        if job.status.is_terminal and self.failures > 0:
            self.failures -= 1
            msg = f"Failed to persist job {job.id}: disk full"
            raise PersistenceError(msg)
        await super().write(job)


async def _noop(job: Job) -> dict[str, Any]:
    return {}


async def test_unstored_result_falls_back_to_failure(tmp_path: Path) -> None:
    queue = JobQueue(FailingTerminalWrites(tmp_path, failures=1))
    first = await queue.submit(JobType.PUSH, workspace_id="ws-1")
    second = await queue.submit(JobType.PUSH, workspace_id="ws-1")
    worker = JobWorker(queue, {JobType.PUSH: _noop})

    final = await worker.run_once()
    assert final is not None and final.id == first
    assert final.status is JobStatus.FAILED
    assert final.error is not None and "disk full" in final.error
    assert not queue.is_processing()

    assert (await worker.run_once()).id == second
    assert await queue.list([JobStatus.PROCESSING]) == []


async def test_unrecorded_failure_blocks_claims_until_written(tmp_path: Path) -> None:
    queue = JobQueue(FailingTerminalWrites(tmp_path, failures=2))
    first = await queue.submit(JobType.PUSH, workspace_id="ws-1")
    second = await queue.submit(JobType.PUSH, workspace_id="ws-1")
    worker = JobWorker(queue, {JobType.PUSH: _noop})

    with pytest.raises(PersistenceError):
        await worker.run_once()

    # Never two jobs processing, even with the first stuck on disk.
    assert [job.id for job in await queue.list([JobStatus.PROCESSING])] == [first]
    assert await queue.claim_next() is None

    recorded = await worker.run_once()
    assert recorded is not None and recorded.id == first
    assert recorded.status is JobStatus.FAILED
    assert recorded.error is not None and recorded.error.startswith("Job result could not be stored")

    final = await worker.run_once()
    assert final is not None and final.id == second
    assert final.status is JobStatus.COMPLETED


# -- Loop ------------------------------------------------------------------------


async def test_at_most_one_job_processing(queue: JobQueue) -> None:
    concurrent = 0
    peak = 0

    async def push(job: Job) -> dict[str, Any]:
        nonlocal concurrent, peak
        concurrent += 1
        peak = max(peak, concurrent)
        processing = await queue.list([JobStatus.PROCESSING])
        assert [j.id for j in processing] == [job.id]
        await asyncio.sleep(0.02)
        concurrent -= 1
        return {}

    ids = [await queue.submit(JobType.PUSH, workspace_id="ws-1") for _ in range(4)]
    worker = JobWorker(queue, {JobType.PUSH: push}, poll_interval=0.05)
    await worker.start()
    try:
        for job_id in ids:
            assert (await _wait_for(queue, job_id)).status is JobStatus.COMPLETED
    finally:
        await worker.stop(timeout=1)

    assert peak == 1
    assert not worker.running


async def test_submission_wakes_idle_worker(queue: JobQueue) -> None:
    async def push(job: Job) -> dict[str, Any]:
        return {}

    worker = JobWorker(queue, {JobType.PUSH: push}, poll_interval=60)
    await worker.start()
    try:
        await asyncio.sleep(0.05)
        job_id = await queue.submit(JobType.PUSH, workspace_id="ws-1")
        assert (await _wait_for(queue, job_id, timeout=2)).status is JobStatus.COMPLETED
    finally:
        await worker.stop(timeout=1)


async def test_start_recovers_interrupted_jobs(tmp_path: Path) -> None:
    store = LocalJobStore(tmp_path)
    earlier = JobQueue(store)
    job_id = await earlier.submit(JobType.PUSH, workspace_id="ws-1")
    assert await earlier.claim_next() is not None

    queue = JobQueue(store)
    worker = JobWorker(queue, {}, poll_interval=60)
    await worker.start()
    await worker.stop(timeout=1)

    assert (await queue.get(job_id)).status is JobStatus.FAILED


async def test_stop_cancels_job_after_timeout(queue: JobQueue) -> None:
    started = asyncio.Event()

    async def push(job: Job) -> dict[str, Any]:
        started.set()
        await asyncio.sleep(30)
        return {}

    job_id = await queue.submit(JobType.PUSH, workspace_id="ws-1")
    worker = JobWorker(queue, {JobType.PUSH: push}, poll_interval=0.05)
    await worker.start()
    await asyncio.wait_for(started.wait(), timeout=2)

    await worker.stop(timeout=0.05)

    job = await queue.get(job_id)
    assert job.status is JobStatus.FAILED
    assert job.error == SHUTDOWN_ERROR


# -- Callbacks -------------------------------------------------------------------


async def test_callback_delivered_with_signature(queue: JobQueue) -> None:
    received: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(request)
        return httpx.Response(200)

    async def push(job: Job) -> dict[str, Any]:
        return {"pushedBranch": "main"}

    notifier = CallbackNotifier("s3cret", transport=httpx.MockTransport(handler), backoff=())
    job_id = await queue.submit(
        JobType.PUSH, workspace_id="ws-1", callback_url="https://hooks.example.com/jobs"
    )
    await JobWorker(queue, {JobType.PUSH: push}, notifier=notifier).run_once()

    assert len(received) == 1
    request = received[0]
    body = json.loads(request.content)
    assert body["id"] == job_id
    assert body["status"] == "completed"
    assert body["result"] == {"pushedBranch": "main"}
    assert request.headers[SIGNATURE_HEADER] == sign_payload("s3cret", request.content)


async def test_callback_retries_then_gives_up() -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        return httpx.Response(500)

    notifier = CallbackNotifier(transport=httpx.MockTransport(handler), backoff=(0, 0))
    job = Job(id="j", type=JobType.PUSH, status=JobStatus.FAILED, callback_url="https://hooks.example.com/x")

    assert await notifier.notify(job) is False
    assert attempts == 3


async def test_callback_recovers_on_retry() -> None:
    responses = iter([httpx.Response(503), httpx.Response(204)])

    def handler(request: httpx.Request) -> httpx.Response:
        return next(responses)

    notifier = CallbackNotifier(transport=httpx.MockTransport(handler), backoff=(0,))
    job = Job(id="j", type=JobType.PUSH, status=JobStatus.COMPLETED, callback_url="https://hooks.example.com/x")

    assert await notifier.notify(job) is True


async def test_callback_failure_does_not_change_job(queue: JobQueue) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    async def push(job: Job) -> dict[str, Any]:
        return {}

    notifier = CallbackNotifier(transport=httpx.MockTransport(handler), backoff=())
    job_id = await queue.submit(JobType.PUSH, workspace_id="ws-1", callback_url="https://hooks.example.com/x")
    await JobWorker(queue, {JobType.PUSH: push}, notifier=notifier).run_once()

    assert (await queue.get(job_id)).status is JobStatus.COMPLETED


def test_sign_payload() -> None:
    signature = sign_payload("key", b"{}")
    assert signature.startswith("sha256=")
    assert len(signature) == len("sha256=") + 64
