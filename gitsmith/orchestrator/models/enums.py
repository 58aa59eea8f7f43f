"""Shared enumerations used across the orchestrator."""

from __future__ import annotations

from enum import StrEnum

# -- Job ---------------------------------------------------------------------


class JobStatus(StrEnum):
    """Persisted job status.  Moves forward only, see ``JOB_TRANSITIONS``."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


JOB_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


class JobType(StrEnum):
    ASK = "ask"
    EDIT = "edit"
    PUSH = "push"
    MERGE_REQUEST = "merge_request"
    WORKSPACE_CLEANUP = "workspace_cleanup"


class DeleteRefusal(StrEnum):
    """Reason a finished-job deletion did not happen."""

    NOT_FOUND = "not_found"
    NOT_FINISHED = "not_finished"
    READ_ERROR = "read_error"


# -- Provider ----------------------------------------------------------------


class GitProvider(StrEnum):
    GITHUB = "github"
    GITLAB = "gitlab"
    UNKNOWN = "unknown"


# -- Content cache -----------------------------------------------------------


class NodeType(StrEnum):
    FILE = "file"
    DIRECTORY = "directory"
