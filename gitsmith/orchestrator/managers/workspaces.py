"""Workspace operations that span the registry, git engine and resolver.

Encapsulates clone, cleanup, branch listing, permission refresh, per-workspace
git identity and cached directory analysis.  Raises domain exceptions from
``gitsmith.orchestrator.errors``; never HTTP exceptions.
"""

from __future__ import annotations

import secrets
import shutil
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING

from anyio import to_thread
from loguru import logger

from gitsmith.orchestrator.errors import (
    DuplicateWorkspaceError,
    InvalidInputError,
    RemoteSyncError,
    WorkspaceNotFoundError,
)
from gitsmith.orchestrator.git.engine import GIT_CONFIG_KEYS, CloneOptions, GitCredentials
from gitsmith.orchestrator.git.runner import short_hash
from gitsmith.orchestrator.git.urls import redact_url, validate_url
from gitsmith.orchestrator.models.workspace import GitIdentity, Workspace, WorkspaceMetadata

if TYPE_CHECKING:
    from collections.abc import Iterable

    from gitsmith.orchestrator.cache import ContentCache
    from gitsmith.orchestrator.git.engine import GitEngine
    from gitsmith.orchestrator.models.cache import DirectoryAnalysis
    from gitsmith.orchestrator.models.permissions import PermissionsFetchResult, WorkspacePermissions
    from gitsmith.orchestrator.permissions import PermissionResolver
    from gitsmith.orchestrator.registry import WorkspaceRegistry

WORKSPACE_ID_BYTES = 5  # 10 hex characters


@dataclass
class AnalysisResult:
    analysis: DirectoryAnalysis
    commit_hash: str
    from_cache: bool
    cached: bool
    """Whether the analysis is now stored in the cache."""


class WorkspaceManager:
    """Instantiated once during app lifespan."""

    def __init__(
        self,
        registry: WorkspaceRegistry,
        git: GitEngine,
        resolver: PermissionResolver,
        cache: ContentCache,
        *,
        clone_depth: int | None = 1,
        clone_single_branch: bool = True,
    ) -> None:
        self.registry = registry
        self.git = git
        self.resolver = resolver
        self.cache = cache
        self.clone_depth = clone_depth
        self.clone_single_branch = clone_single_branch

    # -- Clone -----------------------------------------------------------------

    async def _allocate_id(self) -> str:
        while True:
            workspace_id = secrets.token_hex(WORKSPACE_ID_BYTES)
            if not await self.registry.exists(workspace_id):
                return workspace_id

    async def clone_workspace(
        self,
        repo_url: str,
        branch: str | None = None,
        *,
        credentials: GitCredentials | None = None,
        tags: list[str] | None = None,
    ) -> Workspace:
        """Clone ``repo_url`` into a new workspace and register it.

        Raises ``InvalidInputError`` for a malformed URL,
        ``DuplicateWorkspaceError`` if the (url, branch) pair is already
        tracked and ``RemoteSyncError`` if the clone fails.  A failed clone
        leaves nothing behind on disk or in the registry.
        """
        repo_url = repo_url.strip()
        if not validate_url(repo_url):
            msg = f"Invalid repository URL: {redact_url(repo_url)}"
            raise InvalidInputError(msg)

        if branch:
            existing = await self.registry.find_by_repo(repo_url, branch)
            if existing is not None:
                raise DuplicateWorkspaceError(existing.id, redact_url(repo_url), branch)

        workspace_id = await self._allocate_id()
        path = self.registry.base / f"workspace-{workspace_id}"
        options = CloneOptions(
            depth=self.clone_depth,
            single_branch=self.clone_single_branch,
            branch=branch,
            credentials=credentials,
        )

        cloned = await self.git.clone(repo_url, path, options)
        if not cloned.ok:
            await to_thread.run_sync(partial(_remove_tree, path))
            raise RemoteSyncError(cloned.error or "Clone failed")

        try:
            target_branch = (await self.git.current_branch(path)).unwrap()
            commit_hash = (await self.git.head_commit(path)).unwrap()
            if not branch:
                existing = await self.registry.find_by_repo(repo_url, target_branch)
                if existing is not None:
                    raise DuplicateWorkspaceError(existing.id, redact_url(repo_url), target_branch)
        except BaseException:
            await to_thread.run_sync(partial(_remove_tree, path))
            raise

        workspace = Workspace(
            id=workspace_id,
            path=str(path),
            repo_url=repo_url,
            target_branch=target_branch,
            metadata=WorkspaceMetadata(size=0, commit_hash=commit_hash, is_active=True, tags=tags or []),
        )
        await self.registry.save(workspace)
        logger.info(
            "Workspace {} created for {} ({} @ {})",
            workspace_id,
            redact_url(repo_url),
            target_branch,
            short_hash(commit_hash),
        )
        return workspace

    # -- Cleanup ---------------------------------------------------------------

    async def cleanup_workspace(self, workspace_id: str) -> None:
        """Remove the checkout directory and the registry entry."""
        workspace = await self.registry.get(workspace_id)
        if workspace is None:
            raise WorkspaceNotFoundError(workspace_id)

        removed = await to_thread.run_sync(partial(_remove_tree, Path(workspace.path)))
        if not removed:
            logger.warning("Workspace {} directory {} was already gone", workspace_id, workspace.path)
        try:
            await self.cache.invalidate(workspace.path)
        except OSError as exc:
            logger.warning("Could not drop cache entries for {}: {}", workspace_id, exc)
        await self.registry.delete(workspace_id)
        logger.info("Workspace {} cleaned up", workspace_id)

    async def sweep(self, max_age_hours: float) -> int:
        return await self.registry.sweep_older_than(max_age_hours)

    # -- Branches --------------------------------------------------------------

    async def list_branches(self, workspace_id: str) -> list[str]:
        """Remote branches, target branch first.

        Falls back to the locally known branches if origin is unreachable.
        """
        workspace = await self.registry.load(workspace_id)
        remote = await self.git.all_remote_branches(workspace.path, workspace.target_branch)
        if remote.ok and remote.value is not None:
            return remote.value
        logger.warning("Workspace {}: {}; listing local branches instead", workspace_id, remote.error)
        return (await self.git.list_branches(workspace.path, workspace.target_branch)).unwrap()

    # -- Permissions -----------------------------------------------------------

    async def refresh_permissions(self, workspace_id: str) -> PermissionsFetchResult:
        """Query the provider and store the snapshot on success.

        A failed or unconfigured lookup leaves the previous snapshot in place.
        """
        workspace = await self.registry.load(workspace_id)
        result = await self.resolver.fetch_permissions(workspace.repo_url, workspace.target_branch)
        if result.permissions is not None:
            await self.registry.update(workspace_id, {"metadata": {"permissions": result.permissions}})
            logger.info(
                "Workspace {} permissions refreshed: {} (push to {}: {})",
                workspace_id,
                result.permissions.access_level_name,
                workspace.target_branch,
                result.permissions.can_push_to_protected,
            )
        return result

    async def get_permissions(self, workspace_id: str) -> WorkspacePermissions | None:
        workspace = await self.registry.load(workspace_id)
        return workspace.metadata.permissions

    # -- Git identity ----------------------------------------------------------

    async def get_git_config(self, workspace_id: str) -> GitIdentity:
        workspace = await self.registry.load(workspace_id)
        return (await self.git.get_config(workspace.path)).unwrap()

    async def set_git_config(self, workspace_id: str, identity: GitIdentity) -> GitIdentity:
        workspace = await self.registry.load(workspace_id)
        (await self.git.set_config(workspace.path, identity)).unwrap()
        return await self._record_git_config(workspace)

    async def unset_git_config(self, workspace_id: str, fields: Iterable[str]) -> GitIdentity:
        fields = list(fields)
        unknown = [name for name in fields if name not in GIT_CONFIG_KEYS]
        if unknown:
            msg = f"Unknown git config fields: {', '.join(unknown)}"
            raise InvalidInputError(msg)
        workspace = await self.registry.load(workspace_id)
        (await self.git.unset_config(workspace.path, fields)).unwrap()
        return await self._record_git_config(workspace)

    async def _record_git_config(self, workspace: Workspace) -> GitIdentity:
        identity = (await self.git.get_config(workspace.path)).unwrap()
        await self.registry.update(workspace.id, {"metadata": {"git_config": identity}})
        return identity

    # -- Analysis --------------------------------------------------------------

    async def analyze_workspace(self, workspace_id: str, *, force: bool = False) -> AnalysisResult:
        """Directory analysis at the checkout's current HEAD, served from cache when possible.

        Failure to store the fresh analysis is logged and reported as
        ``cached=False``; it never fails the call.
        """
        workspace = await self.registry.load(workspace_id)
        commit_hash = (await self.git.head_commit(workspace.path)).unwrap()

        if not force:
            hit = await self.cache.get(workspace.path, commit_hash)
            if hit is not None:
                return AnalysisResult(analysis=hit, commit_hash=commit_hash, from_cache=True, cached=True)

        analysis = await self.cache.analyze(workspace.path)
        cached = True
        try:
            await self.cache.set(workspace.path, analysis, commit_hash)
        except OSError as exc:
            cached = False
            logger.warning("Workspace {}: analysis not cached: {}", workspace_id, exc)

        if commit_hash != workspace.metadata.commit_hash:
            await self.registry.update(workspace_id, {"metadata": {"commit_hash": commit_hash}})
        return AnalysisResult(analysis=analysis, commit_hash=commit_hash, from_cache=False, cached=cached)


# -- Sync helpers (run in thread pool) -----------------------------------------


def _remove_tree(path: Path) -> bool:
    """Remove a directory tree.  Returns False if it did not exist."""
    if not path.exists():
        return False
    shutil.rmtree(path)
    return True
