"""Workspace endpoints (RPC-style).

All write operations use POST; reads use GET.  Domain exceptions raised by
the manager are translated to HTTP status codes here.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status

from gitsmith.orchestrator.deps import Registry, Services, Workspaces
from gitsmith.orchestrator.errors import (
    DuplicateWorkspaceError,
    InvalidInputError,
    RemoteSyncError,
    WorkspaceNotFoundError,
)
from gitsmith.orchestrator.git.engine import GitCredentials
from gitsmith.orchestrator.models.api import AnalysisResponse, BranchList, GitConfigUnset, WorkspaceClone
from gitsmith.orchestrator.models.permissions import PermissionsFetchResult, WorkspacePermissions
from gitsmith.orchestrator.models.workspace import GitIdentity, Workspace, WorkspaceStats

router = APIRouter(prefix="/workspaces", tags=["workspaces"])


@contextmanager
def _http_errors(workspace_id: str | None = None) -> Iterator[None]:
    try:
        yield
    except WorkspaceNotFoundError:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=f"Workspace '{workspace_id}' not found.") from None
    except DuplicateWorkspaceError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, detail=str(exc)) from None
    except InvalidInputError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from None
    except RemoteSyncError as exc:
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from None


# -- Collection ----------------------------------------------------------------


@router.post("/clone", response_model=Workspace, status_code=status.HTTP_201_CREATED)
async def clone_workspace(body: WorkspaceClone, workspaces: Workspaces) -> Workspace:
    """Clone a repository into a new workspace."""
    credentials = None
    if body.token is not None:
        credentials = GitCredentials(username=body.username or "oauth2", token=body.token.get_secret_value())
    with _http_errors():
        return await workspaces.clone_workspace(body.repo_url, body.branch, credentials=credentials, tags=body.tags)


@router.get("/list", response_model=list[Workspace])
async def list_workspaces(registry: Registry) -> list[Workspace]:
    """List workspaces, most recently accessed first."""
    return await registry.list_all()


@router.get("/stats", response_model=WorkspaceStats)
async def workspace_stats(registry: Registry) -> WorkspaceStats:
    return await registry.stats()


@router.post("/sweep")
async def sweep_workspaces(
    workspaces: Workspaces,
    services: Services,
    max_age_hours: Annotated[float | None, Query(alias="maxAgeHours", gt=0)] = None,
) -> dict[str, int]:
    """Mark workspaces idle for longer than ``maxAgeHours`` as inactive."""
    hours = max_age_hours or services.settings.workspace_max_age_hours
    return {"markedInactive": await workspaces.sweep(hours)}


# -- Single workspace ----------------------------------------------------------


@router.get("/{workspace_id}/get", response_model=Workspace)
async def get_workspace(workspace_id: str, registry: Registry) -> Workspace:
    workspace = await registry.get(workspace_id)
    if workspace is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=f"Workspace '{workspace_id}' not found.")
    return workspace


@router.post("/{workspace_id}/delete", status_code=status.HTTP_204_NO_CONTENT)
async def delete_workspace(workspace_id: str, workspaces: Workspaces) -> None:
    """Remove the checkout and forget the workspace."""
    with _http_errors(workspace_id):
        await workspaces.cleanup_workspace(workspace_id)


@router.get("/{workspace_id}/branches", response_model=BranchList)
async def list_branches(workspace_id: str, workspaces: Workspaces, registry: Registry) -> BranchList:
    with _http_errors(workspace_id):
        branches = await workspaces.list_branches(workspace_id)
        workspace = await registry.load(workspace_id)
    return BranchList(target_branch=workspace.target_branch, branches=branches)


# -- Git identity ----------------------------------------------------------------


@router.get("/{workspace_id}/git-config", response_model=GitIdentity)
async def get_git_config(workspace_id: str, workspaces: Workspaces) -> GitIdentity:
    with _http_errors(workspace_id):
        return await workspaces.get_git_config(workspace_id)


@router.post("/{workspace_id}/git-config", response_model=GitIdentity)
async def set_git_config(workspace_id: str, body: GitIdentity, workspaces: Workspaces) -> GitIdentity:
    """Set the given identity fields in the checkout's local git config."""
    with _http_errors(workspace_id):
        return await workspaces.set_git_config(workspace_id, body)


@router.post("/{workspace_id}/git-config/unset", response_model=GitIdentity)
async def unset_git_config(workspace_id: str, body: GitConfigUnset, workspaces: Workspaces) -> GitIdentity:
    with _http_errors(workspace_id):
        return await workspaces.unset_git_config(workspace_id, body.fields)


# -- Permissions -------------------------------------------------------------------


@router.post("/{workspace_id}/permissions/refresh", response_model=PermissionsFetchResult)
async def refresh_permissions(workspace_id: str, workspaces: Workspaces) -> PermissionsFetchResult:
    """Ask the provider again.  Failures are reported in the body, not as errors."""
    with _http_errors(workspace_id):
        return await workspaces.refresh_permissions(workspace_id)


@router.get("/{workspace_id}/permissions", response_model=WorkspacePermissions | None)
async def get_permissions(workspace_id: str, workspaces: Workspaces) -> WorkspacePermissions | None:
    """The last stored snapshot, or null if none has been fetched."""
    with _http_errors(workspace_id):
        return await workspaces.get_permissions(workspace_id)


# -- Analysis ----------------------------------------------------------------------


@router.get("/{workspace_id}/analysis", response_model=AnalysisResponse)
async def analyze_workspace(
    workspace_id: str,
    workspaces: Workspaces,
    force: bool = False,
) -> AnalysisResponse:
    with _http_errors(workspace_id):
        result = await workspaces.analyze_workspace(workspace_id, force=force)
    return AnalysisResponse(
        commit_hash=result.commit_hash,
        from_cache=result.from_cache,
        cached=result.cached,
        analysis=result.analysis,
    )
