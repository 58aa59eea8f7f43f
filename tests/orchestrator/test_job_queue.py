"""Unit tests for LocalJobStore and JobQueue.

No git required -- uses a temporary directory.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from gitsmith.orchestrator.errors import InvalidInputError, InvalidTransitionError, JobNotFoundError, PersistenceError
from gitsmith.orchestrator.models.enums import JOB_TRANSITIONS, DeleteRefusal, JobStatus, JobType
from gitsmith.orchestrator.models.job import Job
from gitsmith.orchestrator.queue.manager import INTERRUPTED_ERROR, JobQueue
from gitsmith.orchestrator.store.base import JobStore
from gitsmith.orchestrator.store.local import LocalJobStore


@pytest.fixture
def store(tmp_path: Path) -> LocalJobStore:
    return LocalJobStore(tmp_path)


@pytest.fixture
def queue(store: LocalJobStore) -> JobQueue:
    return JobQueue(store)


# -- Store -------------------------------------------------------------------


def test_local_store_satisfies_protocol(store: LocalJobStore) -> None:
    assert isinstance(store, JobStore)


async def test_store_write_read_roundtrip(store: LocalJobStore, tmp_path: Path) -> None:
    job = Job(id="job-1", type=JobType.ASK, workspace_id="ws", params={"question": "why?"})
    await store.write(job)

    assert await store.read("job-1") == job
    raw = json.loads((tmp_path / "jobs" / "job-1.json").read_text())
    assert raw["workspaceId"] == "ws"
    assert raw["status"] == "pending"


async def test_store_read_missing(store: LocalJobStore) -> None:
    with pytest.raises(FileNotFoundError):
        await store.read("nope")


async def test_store_list_skips_unreadable_records(store: LocalJobStore, tmp_path: Path) -> None:
    await store.write(Job(id="good", type=JobType.PUSH, workspace_id="ws"))
    (tmp_path / "jobs" / "bad.json").write_text("{not json")

    assert [job.id for job in await store.list_all()] == ["good"]


async def test_store_write_failure_raises_persistence_error(
    store: LocalJobStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    def _fail(path, data):
        raise OSError("disk full")

    monkeypatch.setattr("gitsmith.orchestrator.store.local.atomic_write", _fail)
    with pytest.raises(PersistenceError):
        await store.write(Job(id="job-1", type=JobType.PUSH, workspace_id="ws"))


# -- Submit ------------------------------------------------------------------


async def test_submit_persists_pending_job(queue: JobQueue) -> None:
    job_id = await queue.submit(JobType.ASK, {"question": "What does this do?"}, workspace_id="ws-1")

    job = await queue.get(job_id)
    assert job.status is JobStatus.PENDING
    assert job.type is JobType.ASK
    assert job.workspace_id == "ws-1"
    assert job.started_at is None
    assert await queue.has_pending_jobs()
    assert not queue.is_processing()


async def test_submit_accepts_string_type(queue: JobQueue) -> None:
    job_id = await queue.submit("push", workspace_id="ws-1")
    assert (await queue.get(job_id)).type is JobType.PUSH


async def test_submit_rejects_unknown_type(queue: JobQueue) -> None:
    with pytest.raises(InvalidInputError, match="Unknown job type"):
        await queue.submit("deploy", workspace_id="ws-1")


async def test_submit_requires_workspace(queue: JobQueue) -> None:
    with pytest.raises(InvalidInputError, match="workspaceId"):
        await queue.submit(JobType.PUSH)
    # Cleanup jobs span all workspaces.
    assert await queue.submit(JobType.WORKSPACE_CLEANUP)


async def test_submit_requires_params(queue: JobQueue) -> None:
    with pytest.raises(InvalidInputError, match="question"):
        await queue.submit(JobType.EDIT, {}, workspace_id="ws-1")
    with pytest.raises(InvalidInputError, match="sourceBranch"):
        await queue.submit(JobType.MERGE_REQUEST, {}, workspace_id="ws-1")


async def test_resubmitting_same_id_is_a_noop(queue: JobQueue) -> None:
    first = await queue.submit(JobType.ASK, {"question": "one"}, workspace_id="ws-1", job_id="fixed")
    second = await queue.submit(JobType.ASK, {"question": "two"}, workspace_id="ws-1", job_id="fixed")

    assert first == second == "fixed"
    assert (await queue.get("fixed")).params == {"question": "one"}
    assert len(await queue.list()) == 1


async def test_get_missing_raises(queue: JobQueue) -> None:
    with pytest.raises(JobNotFoundError):
        await queue.get("missing")


async def test_list_filters_and_limits(queue: JobQueue) -> None:
    ids = [await queue.submit(JobType.PUSH, workspace_id="ws-1", job_id=f"job-{i}") for i in range(3)]
    claimed = await queue.claim_next()
    assert claimed is not None
    await queue.complete(claimed.id, {})

    pending = await queue.list([JobStatus.PENDING])
    assert {job.id for job in pending} == set(ids[1:])
    assert [job.id for job in await queue.list(["completed"])] == [ids[0]]
    assert len(await queue.list(limit=2)) == 2
    # Newest first.
    assert [job.id for job in await queue.list()] == list(reversed(ids))


# -- Claim and finish ----------------------------------------------------------


async def test_claim_next_is_fifo_and_exclusive(queue: JobQueue) -> None:
    first = await queue.submit(JobType.PUSH, workspace_id="ws-1")
    await queue.submit(JobType.PUSH, workspace_id="ws-1")

    job = await queue.claim_next()
    assert job is not None
    assert job.id == first
    assert job.status is JobStatus.PROCESSING
    assert job.started_at is not None and job.started_at >= job.created_at
    assert queue.is_processing()
    assert queue.active_job_id == first

    # A second claim is refused while one job is processing.
    assert await queue.claim_next() is None


async def test_complete_records_result_and_releases(queue: JobQueue) -> None:
    await queue.submit(JobType.PUSH, workspace_id="ws-1")
    job = await queue.claim_next()
    assert job is not None

    done = await queue.complete(job.id, {"pushedBranch": "main"})
    assert done.status is JobStatus.COMPLETED
    assert done.result == {"pushedBranch": "main"}
    assert done.completed_at is not None and done.started_at is not None
    assert done.completed_at >= done.started_at
    assert not queue.is_processing()


async def test_fail_records_error(queue: JobQueue) -> None:
    await queue.submit(JobType.PUSH, workspace_id="ws-1")
    job = await queue.claim_next()
    assert job is not None

    failed = await queue.fail(job.id, "remote rejected")
    assert failed.status is JobStatus.FAILED
    assert failed.error == "remote rejected"
    assert failed.result is None


async def test_terminal_jobs_cannot_transition(queue: JobQueue) -> None:
    await queue.submit(JobType.PUSH, workspace_id="ws-1")
    job = await queue.claim_next()
    assert job is not None
    await queue.complete(job.id, {})

    with pytest.raises(InvalidTransitionError):
        await queue.fail(job.id, "too late")
    assert (await queue.get(job.id)).status is JobStatus.COMPLETED


async def test_pending_job_cannot_complete(queue: JobQueue) -> None:
    job_id = await queue.submit(JobType.PUSH, workspace_id="ws-1")
    with pytest.raises(InvalidTransitionError):
        await queue.complete(job_id, {})


async def test_pending_job_can_only_start_processing(queue: JobQueue) -> None:
    assert JOB_TRANSITIONS[JobStatus.PENDING] == {JobStatus.PROCESSING}

    job_id = await queue.submit(JobType.PUSH, workspace_id="ws-1")
    with pytest.raises(InvalidTransitionError):
        await queue.fail(job_id, "never started")
    assert (await queue.get(job_id)).status is JobStatus.PENDING


async def test_recover_interrupted(queue: JobQueue, store: LocalJobStore) -> None:
    await queue.submit(JobType.PUSH, workspace_id="ws-1", job_id="orphan")
    job = await queue.claim_next()
    assert job is not None

    # Simulate a restart: a new queue over the same store.
    restarted = JobQueue(store)
    assert await restarted.recover_interrupted() == 1
    recovered = await restarted.get("orphan")
    assert recovered.status is JobStatus.FAILED
    assert recovered.error == INTERRUPTED_ERROR


# -- Delete --------------------------------------------------------------------


async def test_delete_finished(queue: JobQueue) -> None:
    await queue.submit(JobType.PUSH, workspace_id="ws-1", job_id="done")
    job = await queue.claim_next()
    assert job is not None
    await queue.fail(job.id, "boom")

    outcome = await queue.delete_finished("done")
    assert outcome.deleted
    assert outcome.deleted_from is JobStatus.FAILED
    with pytest.raises(JobNotFoundError):
        await queue.get("done")


async def test_delete_refuses_unfinished(queue: JobQueue) -> None:
    await queue.submit(JobType.PUSH, workspace_id="ws-1", job_id="waiting")

    outcome = await queue.delete_finished("waiting")
    assert not outcome.deleted
    assert outcome.reason is DeleteRefusal.NOT_FINISHED
    assert (await queue.get("waiting")).status is JobStatus.PENDING


async def test_delete_missing_and_unreadable(queue: JobQueue, tmp_path: Path) -> None:
    assert (await queue.delete_finished("ghost")).reason is DeleteRefusal.NOT_FOUND

    (tmp_path / "jobs").mkdir(exist_ok=True)
    (tmp_path / "jobs" / "broken.json").write_text("{")
    assert (await queue.delete_finished("broken")).reason is DeleteRefusal.READ_ERROR


# -- Job ids -------------------------------------------------------------------


@pytest.mark.parametrize("job_id", ["../../escaped", "a/b", "", "x" * 65, "has space", "trailing\n"])
async def test_submit_rejects_unsafe_job_ids(queue: JobQueue, tmp_path: Path, job_id: str) -> None:
    with pytest.raises(InvalidInputError, match="Invalid job id"):
        await queue.submit(JobType.WORKSPACE_CLEANUP, job_id=job_id)

    assert not (tmp_path / "escaped.json").exists()
    assert await queue.list() == []


async def test_malformed_ids_read_as_missing(queue: JobQueue, tmp_path: Path) -> None:
    # A record outside the jobs directory must not be reachable by id.
    (tmp_path / "outside.json").write_text(
        Job(id="outside", type=JobType.PUSH, status=JobStatus.FAILED).model_dump_json(by_alias=True)
    )

    with pytest.raises(JobNotFoundError):
        await queue.get("../outside")
    outcome = await queue.delete_finished("../outside")
    assert outcome.reason is DeleteRefusal.NOT_FOUND
    assert (tmp_path / "outside.json").exists()


async def test_generated_and_supplied_ids_are_accepted(queue: JobQueue) -> None:
    assert await queue.submit(JobType.WORKSPACE_CLEANUP, job_id="nightly_sweep-2024") == "nightly_sweep-2024"
    generated = await queue.submit(JobType.WORKSPACE_CLEANUP)
    assert (await queue.get(generated)).id == generated


# -- Pending index ---------------------------------------------------------------


class CountingStore(LocalJobStore):
    def __init__(self, data_root: Path) -> None:
        super().__init__(data_root)
        self.scans = 0

    async def list_all(self) -> list[Job]:
        self.scans += 1
        return await super().list_all()


async def test_pending_checks_do_not_rescan_history(tmp_path: Path) -> None:
    store = CountingStore(tmp_path)
    queue = JobQueue(store)
    first = await queue.submit(JobType.PUSH, workspace_id="ws-1")
    second = await queue.submit(JobType.PUSH, workspace_id="ws-1")

    for _ in range(5):
        assert await queue.has_pending_jobs()
    job = await queue.claim_next()
    assert job is not None and job.id == first
    await queue.complete(job.id, {})
    job = await queue.claim_next()
    assert job is not None and job.id == second
    await queue.complete(job.id, {})

    assert not await queue.has_pending_jobs()
    assert await queue.claim_next() is None
    assert store.scans == 1


async def test_pending_index_loads_existing_records(store: LocalJobStore) -> None:
    await JobQueue(store).submit(JobType.PUSH, workspace_id="ws-1", job_id="left-over")

    restarted = JobQueue(store)
    assert await restarted.has_pending_jobs()
    job = await restarted.claim_next()
    assert job is not None and job.id == "left-over"


# -- Terminal write failures -------------------------------------------------------


class FailingTerminalWrites(LocalJobStore):
    """Rejects the next ``failures`` writes of a completed or failed record."""

    def __init__(self, data_root: Path, failures: int) -> None:
        super().__init__(data_root)
        self.failures = failures

    async def write(self, job: Job) -> None:
        if job.status.is_terminal and self.failures > 0:
            self.failures -= 1
            msg = f"Failed to persist job {job.id}: disk full"
            raise PersistenceError(msg)
        await super().write(job)


async def test_failed_terminal_write_keeps_slot_taken(tmp_path: Path) -> None:
    queue = JobQueue(FailingTerminalWrites(tmp_path, failures=1))
    first = await queue.submit(JobType.PUSH, workspace_id="ws-1")
    await queue.submit(JobType.PUSH, workspace_id="ws-1")
    job = await queue.claim_next()
    assert job is not None

    with pytest.raises(PersistenceError):
        await queue.complete(job.id, {})

    assert queue.active_job_id == first
    assert await queue.claim_next() is None
    assert [j.id for j in await queue.list([JobStatus.PROCESSING])] == [first]

    done = await queue.complete(job.id, {})
    assert done.status is JobStatus.COMPLETED
    assert not queue.is_processing()
    assert await queue.claim_next() is not None
