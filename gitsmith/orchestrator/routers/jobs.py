"""Job endpoints (RPC-style).

Submission returns immediately with the job id; the background worker picks
the job up.  Callers poll ``/jobs/{id}/get`` or register a ``callbackUrl``.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status

from gitsmith.orchestrator.deps import Queue
from gitsmith.orchestrator.errors import InvalidInputError, JobNotFoundError
from gitsmith.orchestrator.models.api import JobSubmit, JobSubmitResponse
from gitsmith.orchestrator.models.enums import DeleteRefusal, JobStatus
from gitsmith.orchestrator.models.job import Job

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("/submit", response_model=JobSubmitResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_job(body: JobSubmit, queue: Queue) -> JobSubmitResponse:
    """Queue a job for the background worker."""
    try:
        job_id = await queue.submit(
            body.type,
            body.params,
            workspace_id=body.workspace_id,
            job_id=body.job_id,
            callback_url=body.callback_url,
        )
    except InvalidInputError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from None
    return JobSubmitResponse(job_id=job_id)


@router.get("/list", response_model=list[Job])
async def list_jobs(
    queue: Queue,
    status_filter: Annotated[list[JobStatus] | None, Query(alias="status")] = None,
    limit: Annotated[int | None, Query(ge=1)] = None,
) -> list[Job]:
    """List jobs, newest first."""
    return await queue.list(status_filter, limit=limit)


@router.get("/{job_id}/get", response_model=Job)
async def get_job(job_id: str, queue: Queue) -> Job:
    try:
        return await queue.get(job_id)
    except JobNotFoundError:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=f"Job '{job_id}' not found.") from None


@router.post("/{job_id}/delete", status_code=status.HTTP_204_NO_CONTENT)
async def delete_job(job_id: str, queue: Queue) -> None:
    """Delete a completed or failed job.  Pending and running jobs are refused."""
    outcome = await queue.delete_finished(job_id)
    if outcome.deleted:
        return
    if outcome.reason is DeleteRefusal.NOT_FOUND:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=f"Job '{job_id}' not found.")
    if outcome.reason is DeleteRefusal.NOT_FINISHED:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=f"Job '{job_id}' has not finished.")
    raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Job '{job_id}' could not be read.")
