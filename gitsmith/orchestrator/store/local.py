"""Job records as one JSON file each under ``{data_root}/jobs/``.

File I/O runs in anyio's worker threads.  Every write goes through
``atomic_write`` (write a sibling temp file, fsync-free rename over the
target), which the workspace index and the content cache reuse, so a crash
mid-write leaves either the old record or the new one on disk.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from functools import partial
from pathlib import Path

from anyio import to_thread
from loguru import logger
from pydantic import ValidationError

from gitsmith.orchestrator.errors import PersistenceError
from gitsmith.orchestrator.models.job import Job


class LocalJobStore:
    """Local filesystem implementation of the JobStore protocol."""

    def __init__(self, data_root: str | Path) -> None:
        self._base = Path(data_root) / "jobs"

    def _job_path(self, job_id: str) -> Path:
        return self._base / f"{job_id}.json"

    # -- Write -----------------------------------------------------------------

    async def write(self, job: Job) -> None:
        data = job.model_dump_json(by_alias=True, indent=2)
        try:
            await to_thread.run_sync(partial(atomic_write, self._job_path(job.id), data))
        except OSError as exc:
            msg = f"Failed to persist job {job.id}: {exc}"
            raise PersistenceError(msg) from exc

    # -- Read ------------------------------------------------------------------

    async def read(self, job_id: str) -> Job:
        raw = await to_thread.run_sync(partial(read_file, self._job_path(job_id)))
        return Job.model_validate_json(raw)

    async def list_all(self) -> list[Job]:
        raws = await to_thread.run_sync(partial(_read_all, self._base))
        jobs: list[Job] = []
        for name, raw in raws:
            try:
                jobs.append(Job.model_validate_json(raw))
            except ValidationError:
                logger.warning("Skipping unreadable job record {}", name)
        return jobs

    # -- Utilities -------------------------------------------------------------

    async def exists(self, job_id: str) -> bool:
        return await to_thread.run_sync(self._job_path(job_id).exists)

    async def delete(self, job_id: str) -> None:
        await to_thread.run_sync(partial(_unlink, self._job_path(job_id)))


# -- Sync helpers (run in thread pool) -----------------------------------------


def atomic_write(path: Path, data: str) -> None:
    """Replace ``path`` with ``data`` in one rename.

    The temp file lives next to the target so ``os.replace`` stays on one
    filesystem.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise


def read_file(path: Path) -> str:
    """Raises ``FileNotFoundError`` when the record is absent."""
    return path.read_text(encoding="utf-8")


def _read_all(base: Path) -> list[tuple[str, str]]:
    if not base.is_dir():
        return []
    out: list[tuple[str, str]] = []
    for path in base.glob("*.json"):
        with contextlib.suppress(FileNotFoundError):
            out.append((path.name, path.read_text(encoding="utf-8")))
    return out


def _unlink(path: Path) -> None:
    path.unlink(missing_ok=True)
