"""Workspace data model.

A workspace is a registered, disk-backed checkout of one branch of a remote
repository.  Records are persisted in the workspace index with camelCase keys
and ISO-8601 timestamps so older index files stay readable.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from gitsmith.orchestrator.models.permissions import WorkspacePermissions


def utcnow() -> datetime:
    return datetime.now(UTC)


class CamelModel(BaseModel):
    """Base for records persisted or exposed with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GitIdentity(CamelModel):
    """Per-workspace git identity (``user.email`` / ``user.name`` / ``user.signingkey``)."""

    user_email: str | None = None
    user_name: str | None = None
    signing_key: str | None = None


class WorkspaceMetadata(CamelModel):
    size: int = 0
    commit_hash: str = ""
    is_active: bool = True
    tags: list[str] = Field(default_factory=list)
    git_config: GitIdentity | None = None
    permissions: WorkspacePermissions | None = None


class Workspace(CamelModel):
    """Workspace record owned by the registry."""

    id: str
    path: str
    repo_url: str
    target_branch: str
    created_at: datetime = Field(default_factory=utcnow)
    last_accessed: datetime = Field(default_factory=utcnow)
    metadata: WorkspaceMetadata = Field(default_factory=WorkspaceMetadata)


class WorkspaceStats(CamelModel):
    total: int = 0
    active: int = 0
    inactive: int = 0
    total_size: int = 0
    oldest_access: datetime | None = None
    newest_access: datetime | None = None
