"""WorkspaceManager tests against a local bare origin.

URL validation only admits remote URLs, so it is patched to let the local
origin path through.
"""

from __future__ import annotations

import shutil
from pathlib import Path

import pytest

from gitsmith.orchestrator.cache import ContentCache
from gitsmith.orchestrator.errors import (
    DuplicateWorkspaceError,
    InvalidInputError,
    RemoteSyncError,
    WorkspaceNotFoundError,
)
from gitsmith.orchestrator.git.engine import GitEngine
from gitsmith.orchestrator.managers.workspaces import WorkspaceManager
from gitsmith.orchestrator.models.enums import GitProvider
from gitsmith.orchestrator.models.permissions import WorkspacePermissions
from gitsmith.orchestrator.models.workspace import GitIdentity, Workspace
from gitsmith.orchestrator.permissions import PermissionResolver
from gitsmith.orchestrator.registry import WorkspaceRegistry
from gitsmith.orchestrator.settings import ProviderCredentials

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git executable not available")


@pytest.fixture
def allow_local_urls(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("gitsmith.orchestrator.managers.workspaces.validate_url", lambda url: bool(url))


@pytest.fixture
async def manager(tmp_path: Path, git_env: Path) -> WorkspaceManager:
    registry = WorkspaceRegistry(tmp_path / "workspaces")
    await registry.initialize()
    return WorkspaceManager(
        registry,
        GitEngine(timeout_seconds=60),
        PermissionResolver(ProviderCredentials()),
        ContentCache(tmp_path / "data"),
        clone_depth=None,
    )


# -- Clone -------------------------------------------------------------------------


async def test_clone_registers_workspace(manager: WorkspaceManager, origin: Path, allow_local_urls, run) -> None:
    workspace = await manager.clone_workspace(str(origin), tags=["demo"])

    assert len(workspace.id) == 10
    assert workspace.target_branch == "main"
    assert workspace.metadata.commit_hash == run("rev-parse", "main", cwd=origin)
    assert workspace.metadata.tags == ["demo"]
    assert Path(workspace.path) == manager.registry.base / f"workspace-{workspace.id}"
    assert (Path(workspace.path) / "README.md").is_file()
    assert await manager.registry.get(workspace.id) == workspace


async def test_clone_specific_branch(manager: WorkspaceManager, origin: Path, allow_local_urls) -> None:
    workspace = await manager.clone_workspace(str(origin), "feature")
    assert workspace.target_branch == "feature"
    assert (Path(workspace.path) / "src" / "feature.py").is_file()


async def test_duplicate_clone_rejected(manager: WorkspaceManager, origin: Path, allow_local_urls) -> None:
    first = await manager.clone_workspace(str(origin), "main")

    with pytest.raises(DuplicateWorkspaceError) as excinfo:
        await manager.clone_workspace(str(origin), "main")
    assert excinfo.value.workspace_id == first.id

    # Without an explicit branch the duplicate is detected after cloning.
    with pytest.raises(DuplicateWorkspaceError):
        await manager.clone_workspace(str(origin))
    assert [ws.id for ws in await manager.registry.list_all()] == [first.id]
    assert sorted(p.name for p in manager.registry.base.glob("workspace-*")) == [f"workspace-{first.id}"]


async def test_failed_clone_leaves_nothing_behind(manager: WorkspaceManager, tmp_path: Path, allow_local_urls) -> None:
    with pytest.raises(RemoteSyncError, match="Clone failed"):
        await manager.clone_workspace(str(tmp_path / "missing.git"))

    assert await manager.registry.list_all() == []
    assert list(manager.registry.base.glob("workspace-*")) == []


async def test_invalid_url_rejected(manager: WorkspaceManager) -> None:
    with pytest.raises(InvalidInputError, match="Invalid repository URL"):
        await manager.clone_workspace("/etc/passwd")


# -- Cleanup -----------------------------------------------------------------------


async def test_cleanup_removes_checkout_and_record(
    manager: WorkspaceManager, origin: Path, allow_local_urls
) -> None:
    workspace = await manager.clone_workspace(str(origin))
    await manager.analyze_workspace(workspace.id)

    await manager.cleanup_workspace(workspace.id)

    assert not Path(workspace.path).exists()
    assert await manager.registry.get(workspace.id) is None
    assert (await manager.cache.stats())["entries"] == 0
    with pytest.raises(WorkspaceNotFoundError):
        await manager.cleanup_workspace(workspace.id)


# -- Branches ----------------------------------------------------------------------


async def test_list_branches_queries_origin(manager: WorkspaceManager, origin: Path, allow_local_urls) -> None:
    workspace = await manager.clone_workspace(str(origin))
    # Single-branch clone, yet both remote branches are listed.
    assert await manager.list_branches(workspace.id) == ["main", "feature"]


# -- Git identity --------------------------------------------------------------------


async def test_git_config_set_and_unset(manager: WorkspaceManager, origin: Path, allow_local_urls) -> None:
    workspace = await manager.clone_workspace(str(origin))

    identity = await manager.set_git_config(
        workspace.id, GitIdentity(user_email="bot@example.com", user_name="Bot")
    )
    assert identity.user_email == "bot@example.com"
    assert identity.user_name == "Bot"
    stored = await manager.registry.get(workspace.id)
    assert stored is not None
    assert stored.metadata.git_config == identity

    remaining = await manager.unset_git_config(workspace.id, ["user_email"])
    assert remaining.user_email is None
    assert remaining.user_name == "Bot"
    assert await manager.get_git_config(workspace.id) == remaining


async def test_unset_unknown_field_rejected(manager: WorkspaceManager) -> None:
    with pytest.raises(InvalidInputError, match="core_editor"):
        await manager.unset_git_config("any", ["core_editor"])


# -- Analysis ------------------------------------------------------------------------


async def test_analysis_is_served_from_cache(manager: WorkspaceManager, origin: Path, allow_local_urls) -> None:
    workspace = await manager.clone_workspace(str(origin))

    first = await manager.analyze_workspace(workspace.id)
    second = await manager.analyze_workspace(workspace.id)
    forced = await manager.analyze_workspace(workspace.id, force=True)

    assert not first.from_cache
    assert first.cached
    assert first.commit_hash == workspace.metadata.commit_hash
    assert first.analysis.languages == ["Markdown", "Python"]
    assert second.from_cache
    assert second.analysis == first.analysis
    assert not forced.from_cache


# -- Permissions ---------------------------------------------------------------------


async def test_refresh_permissions_keeps_previous_snapshot(manager: WorkspaceManager, tmp_path: Path) -> None:
    snapshot = WorkspacePermissions(
        provider=GitProvider.GITHUB,
        access_level=30,
        access_level_name="write",
        can_push_to_protected=False,
        target_branch_protected=True,
        authenticated_user="bot",
    )
    workspace = Workspace(
        id="gh",
        path=str(tmp_path),
        repo_url="https://github.com/acme/app.git",
        target_branch="main",
    )
    workspace.metadata.permissions = snapshot
    await manager.registry.save(workspace)

    result = await manager.refresh_permissions("gh")

    assert result.missing_config
    assert result.permissions is None
    assert await manager.get_permissions("gh") == snapshot
