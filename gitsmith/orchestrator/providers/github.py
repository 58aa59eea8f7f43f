"""GitHub REST API client (permissions and pull requests)."""

from __future__ import annotations

from urllib.parse import quote

import httpx
from loguru import logger

from gitsmith.orchestrator.models.enums import GitProvider
from gitsmith.orchestrator.models.permissions import WorkspacePermissions
from gitsmith.orchestrator.providers.base import (
    DEFAULT_PROVIDER_TIMEOUT_SECONDS,
    DEVELOPER,
    MAINTAINER,
    NO_ACCESS,
    OWNER,
    REPORTER,
    ProviderError,
    get_json,
    protected_branch_warning,
    read_only_warning,
)


def github_access_level(permissions: dict[str, bool]) -> tuple[int, str]:
    """Map the ``permissions`` object of a repository to (level, name)."""
    if permissions.get("admin"):
        return OWNER, "admin"
    if permissions.get("maintain"):
        return MAINTAINER, "maintain"
    if permissions.get("push"):
        return DEVELOPER, "write"
    if permissions.get("pull"):
        return REPORTER, "read"
    return NO_ACCESS, "none"


class GitHubClient:
    def __init__(
        self,
        token: str,
        base_url: str = "https://api.github.com",
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
            base_url=self._base_url,
            headers={
                "Authorization": f"Bearer {self._token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=self._timeout,
            transport=self._transport,
        )

    async def get_repository_permissions(self, owner: str, repo: str, branch: str) -> WorkspacePermissions:
        """Resolve the token's role on ``owner/repo`` and the protection of ``branch``.

        Admins bypass protection.  For everyone else a protected branch with
        required reviews or push restrictions blocks direct pushes.  When the
        protection details are not readable by the token, the branch is
        treated as blocking.
        """
        repo_path = f"/repos/{quote(owner, safe='')}/{quote(repo, safe='')}"
        async with self._client() as client:
            user = await get_json(client, "/user")
            login = str(user.get("login", "unknown"))
            repo_data = await get_json(client, repo_path)
            if not isinstance(repo_data, dict):
                msg = "Unexpected repository payload from GitHub"
                raise ProviderError(msg)
            level, level_name = github_access_level(repo_data.get("permissions") or {})

            branch_path = f"{repo_path}/branches/{quote(branch, safe='')}"
            branch_resp = await client.get(branch_path)
            if branch_resp.status_code == 404:
                protected = False
            else:
                branch_resp.raise_for_status()
                protected = bool(branch_resp.json().get("protected", False))

            blocking = False
            if protected:
                protection = await client.get(f"{branch_path}/protection")
                if protection.status_code == 200:
                    rules = protection.json()
                    blocking = bool(rules.get("required_pull_request_reviews") or rules.get("restrictions"))
                elif protection.status_code in (403, 404):
                    blocking = True
                else:
                    protection.raise_for_status()

        is_admin = level >= OWNER
        has_push = level >= DEVELOPER
        can_push = has_push and (is_admin or not protected or not blocking)

        warning: str | None = None
        if not has_push:
            warning = read_only_warning(login)
        elif not can_push:
            warning = protected_branch_warning(branch, "pull request")

        logger.debug("GitHub permissions for {}/{}@{}: {} (protected={})", owner, repo, branch, level_name, protected)
        return WorkspacePermissions(
            provider=GitProvider.GITHUB,
            access_level=level,
            access_level_name=level_name,
            can_push_to_protected=can_push,
            target_branch_protected=protected,
            authenticated_user=login,
            warning=warning,
        )

    async def create_pull_request(
        self,
        owner: str,
        repo: str,
        *,
        head: str,
        base: str,
        title: str,
        body: str = "",
    ) -> str:
        """Open a pull request and return its web URL."""
        async with self._client() as client:
            response = await client.post(
                f"/repos/{quote(owner, safe='')}/{quote(repo, safe='')}/pulls",
                json={"title": title, "head": head, "base": base, "body": body},
            )
            response.raise_for_status()
            url = response.json().get("html_url")
        if not url:
            msg = "GitHub did not return a pull request URL"
            raise ProviderError(msg)
        logger.info("Opened pull request {}", url)
        return str(url)
