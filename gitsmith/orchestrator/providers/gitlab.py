"""GitLab REST API (v4) client (permissions and merge requests)."""

from __future__ import annotations

from urllib.parse import quote

import httpx
from loguru import logger

from gitsmith.orchestrator.models.enums import GitProvider
from gitsmith.orchestrator.models.permissions import WorkspacePermissions
from gitsmith.orchestrator.providers.base import (
    DEFAULT_PROVIDER_TIMEOUT_SECONDS,
    DEVELOPER,
    GITLAB_ACCESS_LEVEL_NAMES,
    NO_ACCESS,
    ProviderError,
    get_json,
    protected_branch_warning,
    read_only_warning,
)


def access_level_name(level: int) -> str:
    return GITLAB_ACCESS_LEVEL_NAMES.get(level, f"Level {level}")


class GitLabClient:
    def __init__(
        self,
        token: str,
        base_url: str = "https://gitlab.com",
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = DEFAULT_PROVIDER_TIMEOUT_SECONDS,
    ) -> None:
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._transport = transport
        self._timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=f"{self._base_url}/api/v4",
            headers={"PRIVATE-TOKEN": self._token},
            timeout=self._timeout,
            transport=self._transport,
        )

    async def get_repository_permissions(self, project_path: str, branch: str) -> WorkspacePermissions:
        """Resolve the token's access level on a project and the protection of ``branch``.

        The effective level is the higher of project and group membership.
        A protected branch allows a direct push when the level meets the
        lowest non-zero ``push_access_levels`` entry; level 0 means no one.
        """
        project = f"/projects/{quote(project_path, safe='')}"
        async with self._client() as client:
            user = await get_json(client, "/user")
            username = str(user.get("username", "unknown"))
            project_data = await get_json(client, project)

            response = await client.get(f"{project}/protected_branches/{quote(branch, safe='')}")
            if response.status_code == 404:
                protection = None
            else:
                response.raise_for_status()
                protection = response.json()

        if not isinstance(project_data, dict):
            msg = "Unexpected project payload from GitLab"
            raise ProviderError(msg)

        perms = project_data.get("permissions") or {}
        levels = [
            int(entry["access_level"])
            for entry in (perms.get("project_access"), perms.get("group_access"))
            if isinstance(entry, dict) and entry.get("access_level") is not None
        ]
        level = max(levels, default=NO_ACCESS)

        protected = protection is not None
        if protected:
            push_levels = [
                int(entry["access_level"])
                for entry in protection.get("push_access_levels", [])
                if entry.get("access_level") is not None and int(entry["access_level"]) > 0
            ]
            can_push = bool(push_levels) and level >= min(push_levels)
        else:
            can_push = level >= DEVELOPER

        warning: str | None = None
        if level < DEVELOPER:
            warning = read_only_warning(username)
        elif not can_push:
            warning = protected_branch_warning(branch, "merge request")

        logger.debug("GitLab permissions for {}@{}: {} (protected={})", project_path, branch, level, protected)
        return WorkspacePermissions(
            provider=GitProvider.GITLAB,
            access_level=level,
            access_level_name=access_level_name(level),
            can_push_to_protected=can_push,
            target_branch_protected=protected,
            authenticated_user=username,
            warning=warning,
        )

    async def create_merge_request(
        self,
        project_path: str,
        *,
        source_branch: str,
        target_branch: str,
        title: str,
        description: str = "",
    ) -> str:
        """Open a merge request and return its web URL."""
        async with self._client() as client:
            response = await client.post(
                f"/projects/{quote(project_path, safe='')}/merge_requests",
                json={
                    "source_branch": source_branch,
                    "target_branch": target_branch,
                    "title": title,
                    "description": description,
                    "remove_source_branch": True,
                },
            )
            response.raise_for_status()
            url = response.json().get("web_url")
        if not url:
            msg = "GitLab did not return a merge request URL"
            raise ProviderError(msg)
        logger.info("Opened merge request {}", url)
        return str(url)
