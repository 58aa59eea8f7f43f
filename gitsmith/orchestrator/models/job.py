"""Job records persisted by the job store."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field

from gitsmith.orchestrator.models.enums import DeleteRefusal, JobStatus, JobType
from gitsmith.orchestrator.models.workspace import CamelModel, utcnow

JOB_ID_PATTERN = r"^[A-Za-z0-9_-]{1,64}$"
"""Caller-supplied job ids double as file names, so they are restricted to this."""


class Job(CamelModel):
    """One asynchronous operation against a workspace."""

    id: str
    type: JobType
    status: JobStatus = JobStatus.PENDING
    workspace_id: str | None = None
    params: dict[str, Any] = Field(default_factory=dict)
    callback_url: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    result: dict[str, Any] | None = None
    error: str | None = None


class DeleteOutcome(CamelModel):
    """Typed result of ``JobQueue.delete_finished``."""

    deleted: bool
    reason: DeleteRefusal | None = None
    deleted_from: JobStatus | None = None
