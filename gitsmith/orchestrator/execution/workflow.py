"""Git workflow around an edit: branch preparation and post-execution.

Before the assistant runs, the workspace is moved onto the branch that will
receive the edit.  Editing the target branch itself is never done in place:
a ``<target>-<job id>`` branch is created and a merge request is opened
afterwards.  Whatever a previous job left in the checkout is discarded
first.  After the assistant runs, any changes are committed, the remote
tracking ref is reconciled, and the branch is pushed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

import httpx
from loguru import logger

from gitsmith.orchestrator.errors import InvalidInputError, RemoteSyncError
from gitsmith.orchestrator.git.urls import detect_provider, github_owner_repo, gitlab_project_path
from gitsmith.orchestrator.models.enums import GitProvider
from gitsmith.orchestrator.models.workspace import CamelModel
from gitsmith.orchestrator.permissions import MISSING_TOKEN_GUIDANCE, UNKNOWN_PROVIDER_ERROR
from gitsmith.orchestrator.providers.base import ProviderError

if TYPE_CHECKING:
    from gitsmith.orchestrator.git.engine import GitEngine, RefSyncResult
    from gitsmith.orchestrator.models.workspace import Workspace
    from gitsmith.orchestrator.permissions import PermissionResolver


@dataclass
class BranchPlan:
    work_branch: str
    """Branch that receives the commit and is pushed."""
    target_branch: str
    merge_request_required: bool


class PostExecutionResult(CamelModel):
    has_changes: bool
    commit_hash: str | None = None
    pushed_branch: str | None = None
    merge_request_url: str | None = None
    merge_request_error: str | None = None


def unique_branch_name(base: str, job_id: str | None = None, now: datetime | None = None) -> str:
    """``<base>-<job id>``, or a millisecond timestamp when there is no job."""
    if job_id:
        return f"{base}-{job_id}"
    now = now or datetime.now(UTC)
    return f"{base}-{now.strftime('%Y%m%d%H%M%S')}{now.microsecond // 1000:03d}"


class GitWorkflow:
    def __init__(self, git: GitEngine, resolver: PermissionResolver) -> None:
        self.git = git
        self.resolver = resolver

    # -- Before ----------------------------------------------------------------

    async def prepare_branch(
        self,
        workspace: Workspace,
        source_branch: str | None = None,
        *,
        job_id: str | None = None,
    ) -> BranchPlan:
        """Move the checkout onto the branch that will receive the edit.

        The working tree is reset and cleaned, the target branch is synced
        with origin, and local branches that origin no longer has are pruned
        before anything new is checked out.
        """
        path = workspace.path
        target = workspace.target_branch
        source = source_branch or target

        (await self.git.reset_workspace(path)).unwrap()
        (await self.git.clean_workspace(path)).unwrap()
        (await self.git.switch_branch(path, target)).unwrap()
        (await self.git.pull(path)).unwrap()
        pruned = await self.git.prune_local_branches(path, keep=(target, source))
        if not pruned.ok:
            logger.warning("Workspace {}: local branches not pruned: {}", workspace.id, pruned.error)

        if source == target:
            work_branch = unique_branch_name(source, job_id)
            (await self.git.create_branch(path, work_branch)).unwrap()
            logger.info("Workspace {}: editing on new branch {} (from {})", workspace.id, work_branch, target)
            return BranchPlan(work_branch=work_branch, target_branch=target, merge_request_required=True)

        (await self.git.switch_branch(path, source)).unwrap()
        (await self.git.pull(path)).unwrap()
        logger.info("Workspace {}: editing on branch {}", workspace.id, source)
        return BranchPlan(work_branch=source, target_branch=target, merge_request_required=False)

    # -- After -----------------------------------------------------------------

    async def push_branch(self, path: str | Path, branch: str) -> RefSyncResult:
        """Reconcile ``origin/<branch>`` with the remote, then push.

        Raises ``RemoteSyncError`` naming both commits if a stale ref could
        not be repaired, or with git's diagnostic if the push fails.
        """
        sync = await self.git.ensure_fresh_remote_ref(path, branch)
        if not sync.in_sync:
            detail = sync.error or sync.describe_mismatch()
            msg = f"Could not refresh origin/{branch} before push: {detail}"
            raise RemoteSyncError(msg, remote_commit=sync.actual_remote_commit, local_commit=sync.local_ref_commit)
        (await self.git.push(path, branch, set_upstream=True)).unwrap()
        return sync

    async def finalize_changes(self, workspace: Workspace, plan: BranchPlan, *, title: str) -> PostExecutionResult:
        path = workspace.path
        if not (await self.git.has_changes(path)).unwrap():
            logger.info("Workspace {}: no changes to commit", workspace.id)
            return PostExecutionResult(has_changes=False)

        message = f"Automated changes - {datetime.now(UTC).isoformat()}"
        commit_hash = (await self.git.commit_all(path, message)).unwrap()
        await self.push_branch(path, plan.work_branch)
        result = PostExecutionResult(has_changes=True, commit_hash=commit_hash, pushed_branch=plan.work_branch)

        if plan.merge_request_required:
            try:
                result.merge_request_url = await self.open_merge_request(
                    workspace.repo_url,
                    source_branch=plan.work_branch,
                    target_branch=plan.target_branch,
                    title=title,
                )
            except (httpx.HTTPError, ProviderError, InvalidInputError) as exc:
                result.merge_request_error = str(exc)
                logger.warning("Workspace {}: merge request not created: {}", workspace.id, exc)
        return result

    async def open_merge_request(
        self,
        repo_url: str,
        *,
        source_branch: str,
        target_branch: str,
        title: str,
        description: str = "",
    ) -> str:
        """Open a GitHub pull request or GitLab merge request; return its URL."""
        provider = detect_provider(repo_url)
        if provider is GitProvider.GITHUB:
            github = self.resolver.github_client()
            owner_repo = github_owner_repo(repo_url)
            if github is None:
                raise InvalidInputError(MISSING_TOKEN_GUIDANCE[GitProvider.GITHUB])
            if owner_repo is None:
                msg = f"Could not extract owner/repo from {repo_url}"
                raise InvalidInputError(msg)
            return await github.create_pull_request(
                *owner_repo, head=source_branch, base=target_branch, title=title, body=description
            )
        if provider is GitProvider.GITLAB:
            gitlab = self.resolver.gitlab_client()
            project_path = gitlab_project_path(repo_url)
            if gitlab is None:
                raise InvalidInputError(MISSING_TOKEN_GUIDANCE[GitProvider.GITLAB])
            if project_path is None:
                msg = f"Could not extract a GitLab project path from {repo_url}"
                raise InvalidInputError(msg)
            return await gitlab.create_merge_request(
                project_path,
                source_branch=source_branch,
                target_branch=target_branch,
                title=title,
                description=description,
            )
        raise InvalidInputError(UNKNOWN_PROVIDER_ERROR)
