"""Single job worker.

One asyncio task claims the oldest pending job, runs its handler and records
the outcome, then moves to the next.  Because there is exactly one worker and
``JobQueue.claim_next`` refuses a second active job, at most one job is
``processing`` at any instant.  This is what lets handlers mutate a workspace
checkout without further locking.

Handler exceptions fail the job; they never stop the loop.  If even the
failure cannot be written, the worker retries that write before claiming
anything else.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Mapping
from typing import TYPE_CHECKING

from loguru import logger

from gitsmith.orchestrator.errors import PersistenceError

if TYPE_CHECKING:
    from gitsmith.orchestrator.models.enums import JobType
    from gitsmith.orchestrator.models.job import Job
    from gitsmith.orchestrator.queue.callbacks import CallbackNotifier
    from gitsmith.orchestrator.queue.handlers import JobHandler
    from gitsmith.orchestrator.queue.manager import JobQueue

SHUTDOWN_ERROR = "Cancelled during service shutdown"


class JobWorker:
    def __init__(
        self,
        queue: JobQueue,
        handlers: Mapping[JobType, JobHandler],
        *,
        poll_interval: float = 2.0,
        notifier: CallbackNotifier | None = None,
    ) -> None:
        self._queue = queue
        self._handlers = dict(handlers)
        self._poll_interval = poll_interval
        self._notifier = notifier
        self._task: asyncio.Task[None] | None = None
        self._stopping = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._unrecorded: tuple[str, str] | None = None
        """(job id, error) of a failure that could not be written yet."""

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Recover interrupted jobs and start the loop.  No-op if running."""
        if self._task is not None and not self._task.done():
            return
        await self._queue.recover_interrupted()
        self._stopping = False
        self._task = asyncio.create_task(self._loop(), name="gitsmith-job-worker")
        logger.info("Job worker started (poll_interval={}s)", self._poll_interval)

    async def stop(self, timeout: float | None = None) -> None:
        """Stop claiming jobs and wait for the active one to finish.

        After ``timeout`` the active job is cancelled and recorded as failed.
        """
        self._stopping = True
        if self._task is None:
            return
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        except TimeoutError:
            logger.warning("Job worker: active job {} did not finish in {}s", self._queue.active_job_id, timeout)
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Job worker stopped")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # -- Loop ------------------------------------------------------------------

    async def _loop(self) -> None:
        while not self._stopping:
            try:
                job = await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Job worker iteration failed")
                job = None
            if job is None and not self._stopping:
                await self._queue.wait_for_work(self._poll_interval)

    async def run_once(self) -> Job | None:
        """Claim and execute one pending job.  Returns the final record, or None if idle."""
        if self._unrecorded is not None:
            final = await self._record_unrecorded(*self._unrecorded)
        else:
            job = await self._queue.claim_next()
            if job is None:
                return None
            self._idle.clear()
            try:
                final = await self._execute(job)
            finally:
                self._idle.set()
        if self._notifier is not None and final.callback_url:
            await self._notifier.notify(final)
        return final

    async def _execute(self, job: Job) -> Job:
        handler = self._handlers.get(job.type)
        if handler is None:
            return await self._fail(job.id, f"No handler registered for job type '{job.type}'")
        try:
            with logger.contextualize(job_id=job.id):
                result = await handler(job)
        except asyncio.CancelledError:
            with contextlib.suppress(Exception):
                await asyncio.shield(self._queue.fail(job.id, SHUTDOWN_ERROR))
            raise
        except Exception as exc:
            logger.exception("Job {} ({}) failed", job.id, job.type)
            return await self._fail(job.id, str(exc) or type(exc).__name__)
        try:
            return await self._queue.complete(job.id, result)
        except Exception as exc:
            logger.warning("Job {}: result could not be stored: {}", job.id, exc)
            return await self._fail(job.id, f"Job result could not be stored: {exc}")

    async def _fail(self, job_id: str, error: str) -> Job:
        try:
            return await self._queue.fail(job_id, error)
        except PersistenceError:
            self._unrecorded = (job_id, error)
            raise

    async def _record_unrecorded(self, job_id: str, error: str) -> Job:
        final = await self._queue.fail(job_id, error)
        self._unrecorded = None
        logger.info("Job {}: failure recorded after an earlier write error", job_id)
        return final
