"""Domain exceptions raised by managers, the registry and the job queue.

Each exception subclasses the builtin that best describes its kind so callers
can catch either the precise type or the broad category.  Routers translate
these into HTTP status codes; the worker turns them into failed jobs.

The git engine and the permission resolver never raise these: they return
result values instead.
"""

from __future__ import annotations


class WorkspaceNotFoundError(LookupError):
    """Raised when a workspace id is not in the registry."""


class JobNotFoundError(LookupError):
    """Raised when a job id has no persisted record."""


class InvalidInputError(ValueError):
    """Raised for malformed URLs, unknown job types or missing required fields."""


class DuplicateWorkspaceError(ValueError):
    """Raised when a workspace for the same repository and branch already exists."""

    def __init__(self, workspace_id: str, repo_url: str, branch: str) -> None:
        self.workspace_id = workspace_id
        super().__init__(f"Workspace '{workspace_id}' already tracks {repo_url} ({branch})")


class InvalidTransitionError(ValueError):
    """Raised when a job status change violates the transition map."""

    def __init__(self, job_id: str, from_status: str, to_status: str) -> None:
        self.job_id = job_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Job '{job_id}': invalid transition {from_status} -> {to_status}")


class RemoteSyncError(RuntimeError):
    """Raised when a clone, fetch or push fails or a stale ref cannot be repaired.

    ``remote_commit`` and ``local_commit`` are set when the failure is an
    unresolved ref mismatch so a human can intervene.
    """

    def __init__(
        self,
        message: str,
        *,
        remote_commit: str | None = None,
        local_commit: str | None = None,
    ) -> None:
        self.remote_commit = remote_commit
        self.local_commit = local_commit
        super().__init__(message)


class PersistenceError(OSError):
    """Raised when the registry or job store cannot durably write a record."""
