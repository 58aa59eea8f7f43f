"""Data models for the orchestrator."""

from gitsmith.orchestrator.models.api import (
    AnalysisResponse,
    BranchList,
    GitConfigUnset,
    JobSubmit,
    JobSubmitResponse,
    QueueStatus,
    WorkspaceClone,
)
from gitsmith.orchestrator.models.cache import CacheEntry, DirectoryAnalysis, FileTreeNode
from gitsmith.orchestrator.models.enums import (
    JOB_TRANSITIONS,
    DeleteRefusal,
    GitProvider,
    JobStatus,
    JobType,
    NodeType,
)
from gitsmith.orchestrator.models.job import DeleteOutcome, Job
from gitsmith.orchestrator.models.permissions import PermissionsFetchResult, WorkspacePermissions
from gitsmith.orchestrator.models.workspace import (
    GitIdentity,
    Workspace,
    WorkspaceMetadata,
    WorkspaceStats,
)

__all__ = [
    "JOB_TRANSITIONS",
    # API schemas
    "AnalysisResponse",
    "BranchList",
    # Cache
    "CacheEntry",
    # Jobs
    "DeleteOutcome",
    # Enums
    "DeleteRefusal",
    "DirectoryAnalysis",
    "FileTreeNode",
    "GitConfigUnset",
    # Workspaces
    "GitIdentity",
    "GitProvider",
    "Job",
    "JobStatus",
    "JobSubmit",
    "JobSubmitResponse",
    "JobType",
    "NodeType",
    # Permissions
    "PermissionsFetchResult",
    "QueueStatus",
    "Workspace",
    "WorkspaceClone",
    "WorkspaceMetadata",
    "WorkspacePermissions",
    "WorkspaceStats",
]
