"""Shared pieces of the hosting-provider API clients."""

from __future__ import annotations

from typing import Any

import httpx

DEFAULT_PROVIDER_TIMEOUT_SECONDS = 30.0

# GitLab's numeric scale; GitHub roles are mapped onto it.
NO_ACCESS = 0
MINIMAL_ACCESS = 5
GUEST = 10
REPORTER = 20
DEVELOPER = 30
MAINTAINER = 40
OWNER = 50

GITLAB_ACCESS_LEVEL_NAMES: dict[int, str] = {
    NO_ACCESS: "No access",
    MINIMAL_ACCESS: "Minimal access",
    GUEST: "Guest",
    REPORTER: "Reporter",
    DEVELOPER: "Developer",
    MAINTAINER: "Maintainer",
    OWNER: "Owner",
}


class ProviderError(RuntimeError):
    """Raised when a provider response cannot be interpreted."""


def protected_branch_warning(branch: str, request_kind: str) -> str:
    return (
        f"Branch '{branch}' is protected and this token cannot push to it directly. "
        f"Changes will need to go through a {request_kind}."
    )


def read_only_warning(user: str) -> str:
    return f"User '{user}' has read-only access to this repository; pushes will be rejected."


async def get_json(client: httpx.AsyncClient, path: str) -> Any:
    response = await client.get(path)
    response.raise_for_status()
    return response.json()
