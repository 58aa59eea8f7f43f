from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.routing import APIRouter
from loguru import logger

from gitsmith.orchestrator.context import build_services
from gitsmith.orchestrator.deps import Queue, Services, verify_token
from gitsmith.orchestrator.log import setup_logging
from gitsmith.orchestrator.models.api import QueueStatus
from gitsmith.orchestrator.routers.jobs import router as jobs_router
from gitsmith.orchestrator.routers.workspaces import router as workspaces_router
from gitsmith.orchestrator.settings import get_settings


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    # -- Startup ---------------------------------------------------------------
    settings = get_settings()
    setup_logging(settings.log_level, serialize=settings.log_json)

    _app.state.auth_token = settings.auth_token
    if not settings.auth_token:
        logger.warning("No GITSMITH_AUTH_TOKEN set -- API is unauthenticated")

    logger.info("Orchestrator starting (host={}, port={})", settings.host, settings.port)
    logger.info("Data root: {} (workspaces={})", settings.data_root, settings.resolve_workspace_base())

    services = build_services(settings)
    await services.startup()
    _app.state.services = services
    logger.info("Workspace registry: {} workspaces loaded", services.registry.count)

    yield

    # -- Shutdown --------------------------------------------------------------
    logger.info("Orchestrator shutting down (active_job={})", services.queue.active_job_id)
    await services.shutdown()
    _app.state.services = None


def create_app() -> FastAPI:
    app = FastAPI(title="Gitsmith Orchestrator", lifespan=lifespan)
    app.state.services = None
    app.state.auth_token = None

    # -----------------------------------------------------------------------
    # API router -- all backend endpoints live under /api
    # -----------------------------------------------------------------------
    api = APIRouter(prefix="/api")

    @api.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @api.get("/status", response_model=QueueStatus, dependencies=[Depends(verify_token)])
    async def queue_status(queue: Queue, services: Services) -> QueueStatus:
        return QueueStatus(
            processing=queue.is_processing(),
            pending_jobs=await queue.has_pending_jobs(),
            active_job_id=queue.active_job_id,
            worker_running=services.worker.running,
        )

    api.include_router(jobs_router, dependencies=[Depends(verify_token)])
    api.include_router(workspaces_router, dependencies=[Depends(verify_token)])

    app.include_router(api)
    return app


app = create_app()
