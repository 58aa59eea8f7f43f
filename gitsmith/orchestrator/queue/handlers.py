"""Job handlers: one coroutine per job type.

Each handler receives the claimed ``Job`` and returns the dict stored as its
``result``.  Handlers raise on failure; the worker records the exception
message as the job's ``error``.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from loguru import logger

from gitsmith.orchestrator.errors import InvalidInputError
from gitsmith.orchestrator.execution.assistant import AssistantError
from gitsmith.orchestrator.models.enums import JobType

if TYPE_CHECKING:
    from gitsmith.orchestrator.execution.assistant import AssistantRunner
    from gitsmith.orchestrator.execution.workflow import GitWorkflow
    from gitsmith.orchestrator.git.engine import GitEngine
    from gitsmith.orchestrator.models.job import Job
    from gitsmith.orchestrator.models.workspace import Workspace
    from gitsmith.orchestrator.registry import WorkspaceRegistry

JobHandler = Callable[["Job"], Awaitable[dict[str, Any]]]


class JobHandlers:
    def __init__(
        self,
        registry: WorkspaceRegistry,
        git: GitEngine,
        workflow: GitWorkflow,
        assistant: AssistantRunner,
        *,
        default_max_age_hours: float = 168,
    ) -> None:
        self.registry = registry
        self.git = git
        self.workflow = workflow
        self.assistant = assistant
        self.default_max_age_hours = default_max_age_hours

    def as_mapping(self) -> dict[JobType, JobHandler]:
        return {
            JobType.ASK: self.ask,
            JobType.EDIT: self.edit,
            JobType.PUSH: self.push,
            JobType.MERGE_REQUEST: self.merge_request,
            JobType.WORKSPACE_CLEANUP: self.workspace_cleanup,
        }

    async def _workspace(self, job: Job) -> Workspace:
        if not job.workspace_id:
            msg = f"Job {job.id} has no workspaceId"
            raise InvalidInputError(msg)
        return await self.registry.load(job.workspace_id)

    # -- Assistant -------------------------------------------------------------

    async def ask(self, job: Job) -> dict[str, Any]:
        workspace = await self._workspace(job)
        started = time.monotonic()
        result = await self.assistant.run(
            workspace.path,
            job.params["question"],
            job.params.get("context"),
            edit=False,
        )
        if not result.success:
            raise AssistantError(result)
        return {"output": result.stdout, "executionTimeMs": int((time.monotonic() - started) * 1000)}

    async def edit(self, job: Job) -> dict[str, Any]:
        workspace = await self._workspace(job)
        started = time.monotonic()
        plan = await self.workflow.prepare_branch(workspace, job.params.get("sourceBranch"), job_id=job.id)

        result = await self.assistant.run(
            workspace.path,
            job.params["question"],
            job.params.get("context"),
            edit=True,
        )
        if not result.success:
            raise AssistantError(result)

        title = job.params.get("title") or f"Automated changes for job {job.id}"
        post = await self.workflow.finalize_changes(workspace, plan, title=title)
        if post.commit_hash:
            await self.registry.update(workspace.id, {"metadata": {"commit_hash": post.commit_hash}})

        return {
            "output": result.stdout,
            "executionTimeMs": int((time.monotonic() - started) * 1000),
            "sourceBranch": plan.work_branch,
            "postExecution": post.model_dump(by_alias=True),
        }

    # -- Git -------------------------------------------------------------------

    async def push(self, job: Job) -> dict[str, Any]:
        workspace = await self._workspace(job)
        branch = job.params.get("branch") or (await self.git.current_branch(workspace.path)).unwrap()
        sync = await self.workflow.push_branch(workspace.path, branch)
        return {
            "pushedBranch": branch,
            "wasStale": sync.was_stale,
            "remoteCommit": sync.actual_remote_commit,
        }

    async def merge_request(self, job: Job) -> dict[str, Any]:
        workspace = await self._workspace(job)
        source = job.params["sourceBranch"]
        target = job.params.get("targetBranch") or workspace.target_branch
        if source == target:
            msg = f"Source and target branch are both '{source}'"
            raise InvalidInputError(msg)
        url = await self.workflow.open_merge_request(
            workspace.repo_url,
            source_branch=source,
            target_branch=target,
            title=job.params.get("title") or f"Merge {source} into {target}",
            description=job.params.get("description", ""),
        )
        return {"mergeRequestUrl": url, "sourceBranch": source, "targetBranch": target}

    # -- Maintenance -----------------------------------------------------------

    async def workspace_cleanup(self, job: Job) -> dict[str, Any]:
        max_age = float(job.params.get("maxAgeHours", self.default_max_age_hours))
        marked = await self.registry.sweep_older_than(max_age)
        logger.info("Cleanup job {}: {} workspaces marked inactive", job.id, marked)
        return {"markedInactive": marked, "maxAgeHours": max_age}
