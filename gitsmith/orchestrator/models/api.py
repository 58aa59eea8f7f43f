"""API request / response schemas.

These thin schemas sit between HTTP and the managers.  Domain records
(``Job``, ``Workspace``, ``WorkspacePermissions``) are returned as-is; the
types here cover request bodies and composite responses.  Everything is
serialised with camelCase keys and accepts either camelCase or snake_case
on input.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field, SecretStr

from gitsmith.orchestrator.models.cache import DirectoryAnalysis
from gitsmith.orchestrator.models.enums import JobType
from gitsmith.orchestrator.models.job import JOB_ID_PATTERN
from gitsmith.orchestrator.models.workspace import CamelModel

# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


class JobSubmit(CamelModel):
    type: JobType
    workspace_id: str | None = None
    params: dict[str, Any] = Field(default_factory=dict)
    job_id: str | None = Field(
        default=None,
        pattern=JOB_ID_PATTERN,
        description="Optional; resubmitting an existing id is a no-op.",
    )
    callback_url: str | None = None


class JobSubmitResponse(CamelModel):
    job_id: str


class QueueStatus(CamelModel):
    processing: bool
    pending_jobs: bool
    active_job_id: str | None = None
    worker_running: bool


# ---------------------------------------------------------------------------
# Workspaces
# ---------------------------------------------------------------------------


class WorkspaceClone(CamelModel):
    """Input for cloning a repository into a new workspace."""

    repo_url: str
    branch: str | None = None
    username: str | None = Field(default=None, description="Used with ``token`` for this clone only.")
    token: SecretStr | None = None
    tags: list[str] = Field(default_factory=list)


class BranchList(CamelModel):
    target_branch: str
    branches: list[str]


class GitConfigUnset(CamelModel):
    fields: list[str] = Field(description="Any of user_email, user_name, signing_key.")


class AnalysisResponse(CamelModel):
    commit_hash: str
    from_cache: bool
    cached: bool
    analysis: DirectoryAnalysis
