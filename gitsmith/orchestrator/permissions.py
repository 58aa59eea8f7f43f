"""Permission resolver.

Given a repository URL and branch, asks the owning provider what the
configured credential may do.  ``fetch_permissions`` never raises: unknown
providers, unparsable URLs and API failures come back as ``error``; a
missing credential comes back as ``missing_config`` with guidance.
"""

from __future__ import annotations

import httpx
from loguru import logger

from gitsmith.orchestrator.git.urls import detect_provider, github_owner_repo, gitlab_project_path
from gitsmith.orchestrator.models.enums import GitProvider
from gitsmith.orchestrator.models.permissions import PermissionsFetchResult
from gitsmith.orchestrator.providers.base import ProviderError
from gitsmith.orchestrator.providers.github import GitHubClient
from gitsmith.orchestrator.providers.gitlab import GitLabClient
from gitsmith.orchestrator.settings import ProviderCredentials

UNKNOWN_PROVIDER_ERROR = "Unknown repository provider. Only GitHub and GitLab are supported."

MISSING_TOKEN_GUIDANCE = {
    GitProvider.GITHUB: "No GitHub token configured. Set GITSMITH_GITHUB_TOKEN to enable permission checks.",
    GitProvider.GITLAB: "No GitLab token configured. Set GITSMITH_GITLAB_TOKEN to enable permission checks.",
}


class PermissionResolver:
    def __init__(
        self,
        credentials: ProviderCredentials,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._credentials = credentials
        self._transport = transport

    def github_client(self) -> GitHubClient | None:
        if not self._credentials.github_token:
            return None
        return GitHubClient(self._credentials.github_token, self._credentials.github_api_url, transport=self._transport)

    def gitlab_client(self) -> GitLabClient | None:
        if not self._credentials.gitlab_token:
            return None
        return GitLabClient(self._credentials.gitlab_token, self._credentials.gitlab_url, transport=self._transport)

    async def fetch_permissions(self, repo_url: str, branch: str) -> PermissionsFetchResult:
        provider = detect_provider(repo_url)
        if provider is GitProvider.UNKNOWN:
            return PermissionsFetchResult(provider=provider, error=UNKNOWN_PROVIDER_ERROR)

        try:
            if provider is GitProvider.GITLAB:
                return await self._fetch_gitlab(repo_url, branch)
            return await self._fetch_github(repo_url, branch)
        except httpx.HTTPStatusError as exc:
            error = f"{provider.value} API returned {exc.response.status_code} for {exc.request.url.path}"
        except (httpx.HTTPError, ProviderError, ValueError) as exc:
            error = f"{provider.value} API request failed: {exc}"
        logger.warning("Permission check for {} failed: {}", repo_url, error)
        return PermissionsFetchResult(provider=provider, error=error)

    async def _fetch_gitlab(self, repo_url: str, branch: str) -> PermissionsFetchResult:
        client = self.gitlab_client()
        if client is None:
            return _missing(GitProvider.GITLAB)
        project_path = gitlab_project_path(repo_url)
        if project_path is None:
            return PermissionsFetchResult(
                provider=GitProvider.GITLAB,
                error=f"Could not extract a GitLab project path from {repo_url}",
            )
        permissions = await client.get_repository_permissions(project_path, branch)
        return PermissionsFetchResult(provider=GitProvider.GITLAB, permissions=permissions)

    async def _fetch_github(self, repo_url: str, branch: str) -> PermissionsFetchResult:
        client = self.github_client()
        if client is None:
            return _missing(GitProvider.GITHUB)
        owner_repo = github_owner_repo(repo_url)
        if owner_repo is None:
            return PermissionsFetchResult(
                provider=GitProvider.GITHUB,
                error=f"Could not extract owner/repo from {repo_url}",
            )
        permissions = await client.get_repository_permissions(*owner_repo, branch)
        return PermissionsFetchResult(provider=GitProvider.GITHUB, permissions=permissions)


def _missing(provider: GitProvider) -> PermissionsFetchResult:
    return PermissionsFetchResult(provider=provider, missing_config=True, error=MISSING_TOKEN_GUIDANCE[provider])
