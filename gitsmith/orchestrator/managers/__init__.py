"""Domain managers for the orchestrator.

Managers combine the registry, git engine, resolver and cache into
workspace-level operations and raise domain exceptions (``LookupError``,
``ValueError`` subclasses from ``errors``), never HTTP exceptions -- that
translation is the router's responsibility.
"""

from gitsmith.orchestrator.managers.workspaces import AnalysisResult, WorkspaceManager

__all__ = ["AnalysisResult", "WorkspaceManager"]
