"""Git synchronization engine and URL helpers."""

from gitsmith.orchestrator.git.engine import (
    CloneOptions,
    GitCredentials,
    GitEngine,
    GitStatus,
    RefSyncResult,
)
from gitsmith.orchestrator.git.runner import GitErrorKind, GitResult
from gitsmith.orchestrator.git.urls import detect_provider, validate_url

__all__ = [
    "CloneOptions",
    "GitCredentials",
    "GitEngine",
    "GitErrorKind",
    "GitResult",
    "GitStatus",
    "RefSyncResult",
    "detect_provider",
    "validate_url",
]
