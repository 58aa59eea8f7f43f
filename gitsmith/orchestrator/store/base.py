"""Job store interface.

The job store persists one record per job and answers id and status
queries.  The interface is async so the local filesystem backend can push
blocking I/O to a worker thread.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from gitsmith.orchestrator.models.job import Job


@runtime_checkable
class JobStore(Protocol):
    """Async protocol for reading and writing job records.

    Storage layout (keyed by job id)::

        {root}/jobs/{job_id}.json
    """

    async def write(self, job: Job) -> None:
        """Create or replace a job record.  Raises ``PersistenceError`` on failure."""
        ...

    async def read(self, job_id: str) -> Job:
        """Read a job record.  Raises ``FileNotFoundError`` if not found."""
        ...

    async def list_all(self) -> list[Job]:
        """Return every readable job record, in no particular order."""
        ...

    async def exists(self, job_id: str) -> bool:
        ...

    async def delete(self, job_id: str) -> None:
        """Delete a job record.  No-op if not found."""
        ...
