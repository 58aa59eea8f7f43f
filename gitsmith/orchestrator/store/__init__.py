"""Job store implementations."""

from gitsmith.orchestrator.store.base import JobStore
from gitsmith.orchestrator.store.local import LocalJobStore

__all__ = ["JobStore", "LocalJobStore"]
