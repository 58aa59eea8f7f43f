import click


@click.group()
def main() -> None:
    """Gitsmith - git workspace orchestrator for an AI coding assistant."""


@main.command()
@click.option("--host", default=None, help="Bind host (default: from GITSMITH_HOST or 0.0.0.0).")
@click.option("--port", default=None, type=int, help="Bind port (default: from GITSMITH_PORT or 8000).")
@click.option("--reload", is_flag=True, default=False, help="Enable auto-reload for development.")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Start the orchestrator HTTP server and job worker."""
    import uvicorn

    from gitsmith.orchestrator.settings import get_settings

    settings = get_settings()
    uvicorn.run(
        "gitsmith.orchestrator.app:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level="warning",  # uvicorn's own logging is intercepted by loguru
        # The worker gets its own drain window before uvicorn gives up.
        timeout_graceful_shutdown=int(settings.worker_shutdown_timeout) + 10,
    )


def _run(coro_fn):
    """Build services without the worker, run ``coro_fn(services)`` and return its result."""
    import asyncio

    from gitsmith.orchestrator.context import build_services
    from gitsmith.orchestrator.log import setup_logging
    from gitsmith.orchestrator.settings import get_settings

    settings = get_settings()
    setup_logging(settings.log_level, serialize=settings.log_json)

    async def runner():
        services = build_services(settings)
        await services.startup(start_worker=False)
        return await coro_fn(services)

    return asyncio.run(runner())


def _echo_json(value) -> None:
    import json

    from pydantic import BaseModel

    if isinstance(value, BaseModel):
        click.echo(value.model_dump_json(by_alias=True, indent=2))
    elif isinstance(value, list):
        click.echo(json.dumps([item.model_dump(mode="json", by_alias=True) for item in value], indent=2))
    else:
        click.echo(json.dumps(value, indent=2))


# ---------------------------------------------------------------------------
# Workspaces
# ---------------------------------------------------------------------------


@main.group()
def workspaces() -> None:
    """Inspect and maintain the workspace registry."""


@workspaces.command("list")
def list_workspaces() -> None:
    """List registered workspaces, most recently accessed first."""

    async def action(services):
        return await services.registry.list_all()

    _echo_json(_run(action))


@workspaces.command()
def stats() -> None:
    """Show aggregate workspace statistics."""

    async def action(services):
        return await services.registry.stats()

    _echo_json(_run(action))


@workspaces.command()
@click.option(
    "--max-age-hours",
    type=float,
    default=None,
    help="Idle threshold (default: GITSMITH_WORKSPACE_MAX_AGE_HOURS).",
)
def sweep(max_age_hours: float | None) -> None:
    """Mark idle workspaces as inactive."""

    async def action(services):
        hours = max_age_hours or services.settings.workspace_max_age_hours
        return await services.workspaces.sweep(hours)

    marked = _run(action)
    click.echo(f"Marked {marked} workspace(s) inactive.")


@workspaces.command()
@click.argument("workspace_id")
def cleanup(workspace_id: str) -> None:
    """Delete a workspace's checkout and registry entry."""

    async def action(services):
        await services.workspaces.cleanup_workspace(workspace_id)

    try:
        _run(action)
    except LookupError:
        raise click.ClickException(f"Workspace '{workspace_id}' not found.") from None
    click.echo(f"Workspace {workspace_id} removed.")


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


@main.group()
def jobs() -> None:
    """Inspect and delete persisted jobs."""


@jobs.command("list")
@click.option(
    "--status",
    "statuses",
    multiple=True,
    type=click.Choice(["pending", "processing", "completed", "failed"]),
    help="Only show jobs in this status (repeatable).",
)
@click.option("--limit", type=int, default=None)
def list_jobs(statuses: tuple[str, ...], limit: int | None) -> None:
    """List jobs, newest first."""

    async def action(services):
        return await services.queue.list(statuses or None, limit=limit)

    _echo_json(_run(action))


@jobs.command("get")
@click.argument("job_id")
def get_job(job_id: str) -> None:
    async def action(services):
        return await services.queue.get(job_id)

    try:
        _echo_json(_run(action))
    except LookupError:
        raise click.ClickException(f"Job '{job_id}' not found.") from None


@jobs.command("delete")
@click.argument("job_id")
def delete_job(job_id: str) -> None:
    """Delete a completed or failed job."""

    async def action(services):
        return await services.queue.delete_finished(job_id)

    outcome = _run(action)
    if not outcome.deleted:
        raise click.ClickException(f"Job '{job_id}' not deleted: {outcome.reason}")
    click.echo(f"Job {job_id} deleted (was {outcome.deleted_from}).")


if __name__ == "__main__":
    main()
