"""Persistent workspace registry.

The registry is the single source of truth for workspace identity, location
and cached metadata.  It keeps an in-memory index and writes it through to
``{workspace_base}/.workspace-index.json`` after every mutation.

Single owning process: concurrent coroutines are serialised by an
``asyncio.Lock``; multiple processes must not share one index file.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta
from functools import partial
from pathlib import Path
from typing import Any

from anyio import to_thread
from loguru import logger
from pydantic import ValidationError

from gitsmith.orchestrator.errors import PersistenceError, WorkspaceNotFoundError
from gitsmith.orchestrator.models.workspace import Workspace, WorkspaceStats, utcnow
from gitsmith.orchestrator.store.local import atomic_write, read_file

INDEX_FILENAME = ".workspace-index.json"


def decode_index(raw: Any) -> list[Workspace]:
    """Normalise any known index shape into a list of workspaces.

    Accepted shapes:

    - ``[record, ...]`` (current)
    - ``{"workspaces": {id: record, ...}, ...}`` (legacy map)
    - ``{id: record, ...}`` (bare legacy map)

    Anything else decodes to an empty index.  Individual records that fail
    validation are skipped with a warning.
    """
    records: list[Any]
    if isinstance(raw, list):
        records = raw
    elif isinstance(raw, dict) and isinstance(raw.get("workspaces"), dict):
        records = list(raw["workspaces"].values())
    elif isinstance(raw, dict) and raw and all(isinstance(v, dict) and "repoUrl" in v for v in raw.values()):
        records = list(raw.values())
    else:
        if raw not in (None, {}, []):
            logger.warning("Unrecognised workspace index format ({}), starting empty", type(raw).__name__)
        return []

    workspaces: list[Workspace] = []
    for record in records:
        try:
            workspaces.append(Workspace.model_validate(record))
        except ValidationError as exc:
            logger.warning("Skipping invalid workspace record: {}", exc.errors()[0].get("msg"))
    return workspaces


def encode_index(workspaces: list[Workspace]) -> str:
    return json.dumps([ws.model_dump(mode="json", by_alias=True) for ws in workspaces], indent=2)


class WorkspaceRegistry:
    """In-memory workspace index with write-through persistence.

    Every mutating call persists the full index before returning.  If the
    write fails, ``PersistenceError`` is raised even though the in-memory
    index already reflects the change, since durability is the contract.
    Returned records are copies; mutate through ``save`` or ``update``.
    """

    def __init__(self, workspace_base: str | Path) -> None:
        self._base = Path(workspace_base)
        self._index_path = self._base / INDEX_FILENAME
        self._workspaces: dict[str, Workspace] = {}
        self._lock = asyncio.Lock()
        self._initialized = False

    @property
    def base(self) -> Path:
        return self._base

    @property
    def index_path(self) -> Path:
        return self._index_path

    # -- Lifecycle -------------------------------------------------------------

    async def initialize(self) -> None:
        """Ensure the index file exists and load it.  Safe to call repeatedly."""
        async with self._lock:
            try:
                raw = await to_thread.run_sync(partial(_load_or_create, self._index_path))
            except OSError as exc:
                msg = f"Cannot initialise workspace index at {self._index_path}: {exc}"
                raise PersistenceError(msg) from exc
            self._workspaces = {ws.id: ws for ws in decode_index(raw)}
            self._initialized = True
            logger.info("Registry: loaded {} workspaces from {}", len(self._workspaces), self._index_path)

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    async def _persist(self) -> None:
        data = encode_index(list(self._workspaces.values()))
        try:
            await to_thread.run_sync(partial(atomic_write, self._index_path, data))
        except OSError as exc:
            msg = f"Failed to persist workspace index: {exc}"
            raise PersistenceError(msg) from exc

    # -- Mutation --------------------------------------------------------------

    async def save(self, workspace: Workspace) -> Workspace:
        await self._ensure_initialized()
        async with self._lock:
            self._workspaces[workspace.id] = workspace.model_copy(deep=True)
            await self._persist()
        logger.debug("Registry: saved workspace {}", workspace.id)
        return workspace.model_copy(deep=True)

    async def load(self, workspace_id: str) -> Workspace:
        """Return a workspace and bump its ``last_accessed``.

        Raises ``WorkspaceNotFoundError`` if absent.
        """
        await self._ensure_initialized()
        async with self._lock:
            workspace = self._get_or_raise(workspace_id)
            workspace.last_accessed = max(workspace.last_accessed, utcnow())
            await self._persist()
            return workspace.model_copy(deep=True)

    async def update(self, workspace_id: str, changes: dict[str, Any]) -> Workspace:
        """Merge ``changes`` into a stored workspace and persist.

        ``metadata`` is merged key by key, so callers can change a single
        metadata field without restating the others.  ``last_accessed`` never
        moves backwards.
        """
        await self._ensure_initialized()
        async with self._lock:
            current = self._get_or_raise(workspace_id)
            merged = current.model_dump(by_alias=False)
            changes = dict(changes)
            metadata_changes = changes.pop("metadata", None)
            merged.update(changes)
            if metadata_changes:
                merged["metadata"].update(metadata_changes)
            merged["id"] = workspace_id
            updated = Workspace.model_validate(merged)
            updated.last_accessed = max(updated.last_accessed, current.last_accessed)
            self._workspaces[workspace_id] = updated
            await self._persist()
            return updated.model_copy(deep=True)

    async def delete(self, workspace_id: str) -> None:
        await self._ensure_initialized()
        async with self._lock:
            self._get_or_raise(workspace_id)
            del self._workspaces[workspace_id]
            await self._persist()
        logger.debug("Registry: deleted workspace {}", workspace_id)

    async def sweep_older_than(self, max_age_hours: float) -> int:
        """Mark active workspaces idle for longer than ``max_age_hours`` as inactive.

        Does not delete anything.  Returns the number of workspaces marked.
        """
        await self._ensure_initialized()
        cutoff = utcnow() - timedelta(hours=max_age_hours)
        async with self._lock:
            marked = 0
            for workspace in self._workspaces.values():
                if workspace.metadata.is_active and workspace.last_accessed < cutoff:
                    workspace.metadata.is_active = False
                    marked += 1
            if marked:
                await self._persist()
        if marked:
            logger.info("Registry: marked {} workspaces inactive (idle > {}h)", marked, max_age_hours)
        return marked

    # -- Query -----------------------------------------------------------------

    def _get_or_raise(self, workspace_id: str) -> Workspace:
        workspace = self._workspaces.get(workspace_id)
        if workspace is None:
            raise WorkspaceNotFoundError(workspace_id)
        return workspace

    async def get(self, workspace_id: str) -> Workspace | None:
        """Return a workspace without touching ``last_accessed``."""
        await self._ensure_initialized()
        workspace = self._workspaces.get(workspace_id)
        return workspace.model_copy(deep=True) if workspace else None

    async def exists(self, workspace_id: str) -> bool:
        await self._ensure_initialized()
        return workspace_id in self._workspaces

    async def list_all(self) -> list[Workspace]:
        """Return all workspaces, most recently accessed first."""
        await self._ensure_initialized()
        ordered = sorted(self._workspaces.values(), key=lambda ws: ws.last_accessed, reverse=True)
        return [ws.model_copy(deep=True) for ws in ordered]

    async def find_by_repo(self, repo_url: str, branch: str) -> Workspace | None:
        await self._ensure_initialized()
        for workspace in self._workspaces.values():
            if workspace.repo_url == repo_url and workspace.target_branch == branch:
                return workspace.model_copy(deep=True)
        return None

    async def stats(self) -> WorkspaceStats:
        await self._ensure_initialized()
        workspaces = list(self._workspaces.values())
        if not workspaces:
            return WorkspaceStats()
        accessed: list[datetime] = [ws.last_accessed for ws in workspaces]
        active = sum(1 for ws in workspaces if ws.metadata.is_active)
        return WorkspaceStats(
            total=len(workspaces),
            active=active,
            inactive=len(workspaces) - active,
            total_size=sum(ws.metadata.size for ws in workspaces),
            oldest_access=min(accessed),
            newest_access=max(accessed),
        )

    @property
    def count(self) -> int:
        return len(self._workspaces)


# -- Sync helpers (run in thread pool) -----------------------------------------


def _load_or_create(index_path: Path) -> Any:
    index_path.parent.mkdir(parents=True, exist_ok=True)
    if not index_path.exists():
        atomic_write(index_path, "[]")
        return []
    raw = read_file(index_path)
    if not raw.strip():
        return []
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Workspace index {} is not valid JSON, starting empty", index_path)
        return None
