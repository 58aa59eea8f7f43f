"""Permission snapshot models.

A snapshot records what the configured credential may do on a repository
and whether the workspace's target branch is protected.  Snapshots are
immutable; a refresh replaces the stored one.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from gitsmith.orchestrator.models.enums import GitProvider


class WorkspacePermissions(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    provider: GitProvider
    access_level: int
    access_level_name: str
    can_push_to_protected: bool
    target_branch_protected: bool
    authenticated_user: str
    checked_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    warning: str | None = None


class PermissionsFetchResult(BaseModel):
    """Outcome of a permission lookup.

    ``missing_config`` is an expected state (no credential for the provider),
    reported together with guidance in ``error``.  It is never raised.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    provider: GitProvider
    permissions: WorkspacePermissions | None = None
    missing_config: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.permissions is not None
