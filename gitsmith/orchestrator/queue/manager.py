"""Job queue -- persistent job records and their status transitions.

One JobQueue is built per process by the composition root.  It owns every
job record: submission appends ``pending`` records, the worker moves them
forward through ``JOB_TRANSITIONS``, and external callers may only delete
jobs that reached a terminal state.
"""

from __future__ import annotations

import asyncio
import re
import uuid
from typing import TYPE_CHECKING, Any

from loguru import logger
from pydantic import ValidationError

from gitsmith.orchestrator.errors import (
    InvalidInputError,
    InvalidTransitionError,
    JobNotFoundError,
    PersistenceError,
)
from gitsmith.orchestrator.models.enums import JOB_TRANSITIONS, DeleteRefusal, JobStatus, JobType
from gitsmith.orchestrator.models.job import JOB_ID_PATTERN, DeleteOutcome, Job
from gitsmith.orchestrator.models.workspace import utcnow

if TYPE_CHECKING:
    from collections.abc import Iterable

    from gitsmith.orchestrator.store.base import JobStore

REQUIRED_PARAMS: dict[JobType, tuple[str, ...]] = {
    JobType.ASK: ("question",),
    JobType.EDIT: ("question",),
    JobType.PUSH: (),
    JobType.MERGE_REQUEST: ("sourceBranch",),
    JobType.WORKSPACE_CLEANUP: (),
}

INTERRUPTED_ERROR = "Interrupted by service restart"

_JOB_ID = re.compile(JOB_ID_PATTERN)


def new_job_id() -> str:
    return uuid.uuid4().hex[:8]


def is_valid_job_id(job_id: str) -> bool:
    return _JOB_ID.fullmatch(job_id) is not None


class JobQueue:
    """Persistent FIFO of jobs with forward-only status transitions.

    Only one job may be ``processing`` at a time; ``claim_next`` refuses to
    hand out a second job while one is active.

    Pending jobs are also indexed in memory, loaded from the store on first
    use, so the worker's polling never rescans job history.  This queue must
    be the only writer of ``pending`` records for its store.
    """

    def __init__(self, store: JobStore) -> None:
        self._store = store
        self._wake = asyncio.Event()
        self._claim_lock = asyncio.Lock()
        self._active_job_id: str | None = None
        self._pending: dict[str, Job] | None = None

    # -- Submit ----------------------------------------------------------------

    async def submit(
        self,
        job_type: JobType | str,
        params: dict[str, Any] | None = None,
        *,
        workspace_id: str | None = None,
        job_id: str | None = None,
        callback_url: str | None = None,
    ) -> str:
        """Persist a new ``pending`` job and return its id without waiting.

        Resubmitting with a caller-supplied ``job_id`` that already exists
        returns that id and leaves the stored record untouched.
        """
        try:
            job_type = JobType(job_type)
        except ValueError:
            msg = f"Unknown job type: {job_type!r}"
            raise InvalidInputError(msg) from None

        params = dict(params or {})
        if job_type is not JobType.WORKSPACE_CLEANUP and not workspace_id:
            msg = f"Job type '{job_type}' requires a workspaceId"
            raise InvalidInputError(msg)
        missing = [name for name in REQUIRED_PARAMS[job_type] if not params.get(name)]
        if missing:
            msg = f"Job type '{job_type}' is missing required params: {', '.join(missing)}"
            raise InvalidInputError(msg)

        if job_id is not None and not is_valid_job_id(job_id):
            msg = f"Invalid job id {job_id!r}: use 1-64 letters, digits, '-' or '_'"
            raise InvalidInputError(msg)
        if job_id is not None and await self._store.exists(job_id):
            logger.debug("Job {} already submitted, returning existing id", job_id)
            return job_id

        job = Job(
            id=job_id or new_job_id(),
            type=job_type,
            workspace_id=workspace_id,
            params=params,
            callback_url=callback_url,
        )
        await self._store.write(job)
        (await self._pending_index())[job.id] = job
        logger.info("Job submitted: {} (type={}, workspace={})", job.id, job.type, workspace_id)
        self._wake.set()
        return job.id

    # -- Query -----------------------------------------------------------------

    async def get(self, job_id: str) -> Job:
        """Return a job record.  Raises ``JobNotFoundError`` if missing."""
        if not is_valid_job_id(job_id):
            raise JobNotFoundError(job_id)
        try:
            return await self._store.read(job_id)
        except FileNotFoundError:
            raise JobNotFoundError(job_id) from None

    async def list(self, statuses: Iterable[JobStatus | str] | None = None, limit: int | None = None) -> list[Job]:
        """Jobs ordered by creation time, newest first, optionally filtered."""
        jobs = await self._store.list_all()
        if statuses is not None:
            wanted = {JobStatus(s) for s in statuses}
            jobs = [job for job in jobs if job.status in wanted]
        jobs.sort(key=lambda job: (job.created_at, job.id), reverse=True)
        if limit is not None:
            jobs = jobs[:limit]
        return jobs

    def is_processing(self) -> bool:
        return self._active_job_id is not None

    @property
    def active_job_id(self) -> str | None:
        return self._active_job_id

    async def has_pending_jobs(self) -> bool:
        return bool(await self._pending_index())

    async def _pending_index(self) -> dict[str, Job]:
        if self._pending is None:
            jobs = await self._store.list_all()
            self._pending = {job.id: job for job in jobs if job.status is JobStatus.PENDING}
        return self._pending

    # -- Delete ----------------------------------------------------------------

    async def delete_finished(self, job_id: str) -> DeleteOutcome:
        """Delete a job only if it is ``completed`` or ``failed``."""
        if not is_valid_job_id(job_id):
            return DeleteOutcome(deleted=False, reason=DeleteRefusal.NOT_FOUND)
        try:
            job = await self._store.read(job_id)
        except FileNotFoundError:
            return DeleteOutcome(deleted=False, reason=DeleteRefusal.NOT_FOUND)
        except (OSError, ValidationError) as exc:
            logger.warning("Cannot read job {} for deletion: {}", job_id, exc)
            return DeleteOutcome(deleted=False, reason=DeleteRefusal.READ_ERROR)

        if not job.status.is_terminal:
            return DeleteOutcome(deleted=False, reason=DeleteRefusal.NOT_FINISHED)

        await self._store.delete(job_id)
        logger.info("Job deleted: {} (was {})", job_id, job.status)
        return DeleteOutcome(deleted=True, deleted_from=job.status)

    # -- Transitions (worker only) ---------------------------------------------

    async def _transition(self, job: Job, to_status: JobStatus, **changes: Any) -> Job:
        if to_status not in JOB_TRANSITIONS[job.status]:
            raise InvalidTransitionError(job.id, job.status, to_status)
        updated = job.model_copy(update={"status": to_status, **changes})
        await self._store.write(updated)
        return updated

    async def claim_next(self) -> Job | None:
        """Move the oldest pending job to ``processing`` and return it.

        Returns None when nothing is pending or a job is already active.
        """
        async with self._claim_lock:
            if self._active_job_id is not None:
                return None
            pending = await self._pending_index()
            if not pending:
                return None
            oldest = min(pending.values(), key=lambda job: (job.created_at, job.id))
            started_at = max(utcnow(), oldest.created_at)
            job = await self._transition(oldest, JobStatus.PROCESSING, started_at=started_at)
            del pending[job.id]
            self._active_job_id = job.id
            logger.info("Job started: {} (type={})", job.id, job.type)
            return job

    async def complete(self, job_id: str, result: dict[str, Any]) -> Job:
        return await self._finish(job_id, JobStatus.COMPLETED, result=result)

    async def fail(self, job_id: str, error: str) -> Job:
        return await self._finish(job_id, JobStatus.FAILED, error=error)

    async def _finish(self, job_id: str, status: JobStatus, **changes: Any) -> Job:
        """Write a terminal status and release the processing slot.

        If the write itself fails the record is still ``processing`` on disk,
        so the slot stays taken and ``claim_next`` keeps refusing until a
        later terminal write for this job succeeds.
        """
        try:
            job = await self.get(job_id)
            completed_at = max(utcnow(), job.started_at or job.created_at)
            job = await self._transition(job, status, completed_at=completed_at, **changes)
        except PersistenceError:
            # Still ``processing`` on disk.
            raise
        except BaseException:
            self._release(job_id)
            raise
        self._release(job_id)
        logger.info("Job {}: {}", status, job_id)
        return job

    def _release(self, job_id: str) -> None:
        if self._active_job_id == job_id:
            self._active_job_id = None

    async def recover_interrupted(self) -> int:
        """Fail jobs left ``processing`` by a previous process.

        Called once at startup before the worker begins claiming jobs.
        """
        count = 0
        for job in await self.list([JobStatus.PROCESSING]):
            if job.id == self._active_job_id:
                continue
            completed_at = max(utcnow(), job.started_at or job.created_at)
            await self._transition(job, JobStatus.FAILED, completed_at=completed_at, error=INTERRUPTED_ERROR)
            count += 1
        if count:
            logger.warning("Startup recovery: {} interrupted jobs marked as failed", count)
        return count

    # -- Wakeup ----------------------------------------------------------------

    async def wait_for_work(self, timeout: float) -> None:
        """Sleep until a job is submitted or ``timeout`` elapses."""
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=timeout)
        except TimeoutError:
            pass
        finally:
            self._wake.clear()
