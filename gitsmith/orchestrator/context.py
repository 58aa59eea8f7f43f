"""Composition root.

``OrchestratorServices`` holds the one instance of every component the
process needs.  It is built once from settings (in the app lifespan or a CLI
command) and handed to whatever needs a component; nothing reaches for a
module-level singleton.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from gitsmith.orchestrator.cache import ContentCache
from gitsmith.orchestrator.execution.assistant import AssistantRunner
from gitsmith.orchestrator.execution.workflow import GitWorkflow
from gitsmith.orchestrator.git.engine import GitEngine
from gitsmith.orchestrator.managers.workspaces import WorkspaceManager
from gitsmith.orchestrator.permissions import PermissionResolver
from gitsmith.orchestrator.queue.callbacks import CallbackNotifier
from gitsmith.orchestrator.queue.handlers import JobHandlers
from gitsmith.orchestrator.queue.manager import JobQueue
from gitsmith.orchestrator.queue.worker import JobWorker
from gitsmith.orchestrator.registry import WorkspaceRegistry
from gitsmith.orchestrator.store.local import LocalJobStore

if TYPE_CHECKING:
    import httpx

    from gitsmith.orchestrator.settings import OrchestratorSettings


@dataclass
class OrchestratorServices:
    settings: OrchestratorSettings
    registry: WorkspaceRegistry
    git: GitEngine
    resolver: PermissionResolver
    cache: ContentCache
    workspaces: WorkspaceManager
    queue: JobQueue
    worker: JobWorker

    async def startup(self, *, start_worker: bool = True) -> None:
        await self.registry.initialize()
        if start_worker:
            await self.worker.start()

    async def shutdown(self) -> None:
        await self.worker.stop(timeout=self.settings.worker_shutdown_timeout)


def build_services(
    settings: OrchestratorSettings,
    *,
    assistant: AssistantRunner | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> OrchestratorServices:
    """Wire every component from ``settings``.

    ``assistant`` and ``http_transport`` let tests substitute the external
    collaborator and provider APIs.
    """
    registry = WorkspaceRegistry(settings.resolve_workspace_base())
    git = GitEngine(timeout_seconds=settings.git_timeout_seconds)
    resolver = PermissionResolver(settings.provider_credentials(), transport=http_transport)
    cache = ContentCache(
        settings.data_root,
        expiry_days=settings.cache_expiry_days,
        max_bytes=settings.cache_max_bytes,
        include_patterns=settings.cache_include_patterns,
        exclude_patterns=settings.cache_exclude_patterns,
        tree_max_depth=settings.cache_tree_max_depth,
    )
    workspaces = WorkspaceManager(
        registry,
        git,
        resolver,
        cache,
        clone_depth=settings.clone_depth or None,
        clone_single_branch=settings.clone_single_branch,
    )
    queue = JobQueue(LocalJobStore(settings.data_root))
    assistant = assistant or AssistantRunner(
        settings.assistant_command,
        extra_args=settings.assistant_extra_args,
        timeout_seconds=settings.assistant_timeout_seconds,
    )
    handlers = JobHandlers(
        registry,
        git,
        GitWorkflow(git, resolver),
        assistant,
        default_max_age_hours=settings.workspace_max_age_hours,
    )
    notifier = CallbackNotifier(
        settings.callback_secret.get_secret_value() if settings.callback_secret else None,
        transport=http_transport,
    )
    worker = JobWorker(queue, handlers.as_mapping(), poll_interval=settings.worker_poll_interval, notifier=notifier)
    return OrchestratorServices(
        settings=settings,
        registry=registry,
        git=git,
        resolver=resolver,
        cache=cache,
        workspaces=workspaces,
        queue=queue,
        worker=worker,
    )
