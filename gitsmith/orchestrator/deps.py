"""FastAPI dependency injection for orchestrator components.

Usage in route handlers::

    @router.get("/things")
    async def list_things(queue: Queue) -> list[Job]:
        ...

Components are built once in the app lifespan and stored on
``app.state.services``.  Dependencies raise HTTP 503 if that has not
happened.
"""

from __future__ import annotations

import secrets
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from gitsmith.orchestrator.context import OrchestratorServices
from gitsmith.orchestrator.managers.workspaces import WorkspaceManager
from gitsmith.orchestrator.queue.manager import JobQueue
from gitsmith.orchestrator.registry import WorkspaceRegistry

_bearer = HTTPBearer(auto_error=False)


def get_services(request: Request) -> OrchestratorServices:
    services: OrchestratorServices | None = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Orchestrator services are not initialised.",
        )
    return services


def get_registry(services: Annotated[OrchestratorServices, Depends(get_services)]) -> WorkspaceRegistry:
    return services.registry


def get_queue(services: Annotated[OrchestratorServices, Depends(get_services)]) -> JobQueue:
    return services.queue


def get_workspaces(services: Annotated[OrchestratorServices, Depends(get_services)]) -> WorkspaceManager:
    return services.workspaces


async def verify_token(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer)],
) -> None:
    """Check the bearer token when ``auth_token`` is configured."""
    expected: str | None = getattr(request.app.state, "auth_token", None)
    if not expected:
        return
    if credentials is None or not secrets.compare_digest(credentials.credentials, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing bearer token.",
            headers={"WWW-Authenticate": "Bearer"},
        )


# -- Annotated type aliases for concise route signatures ---------------------

Services = Annotated[OrchestratorServices, Depends(get_services)]
Registry = Annotated[WorkspaceRegistry, Depends(get_registry)]
Queue = Annotated[JobQueue, Depends(get_queue)]
Workspaces = Annotated[WorkspaceManager, Depends(get_workspaces)]
