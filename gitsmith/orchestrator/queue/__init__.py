"""Job queue, worker and handlers."""

from gitsmith.orchestrator.queue.manager import JobQueue
from gitsmith.orchestrator.queue.worker import JobWorker

__all__ = ["JobQueue", "JobWorker"]
