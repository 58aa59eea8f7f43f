"""Hosting-provider API clients."""

from gitsmith.orchestrator.providers.base import ProviderError
from gitsmith.orchestrator.providers.github import GitHubClient
from gitsmith.orchestrator.providers.gitlab import GitLabClient

__all__ = ["GitHubClient", "GitLabClient", "ProviderError"]
