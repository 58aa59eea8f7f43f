"""Content cache models: directory analysis and the persisted entry."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from gitsmith.orchestrator.models.enums import NodeType
from gitsmith.orchestrator.models.workspace import CamelModel, utcnow

CACHE_VERSION = "1"


class FileTreeNode(CamelModel):
    name: str
    path: str
    type: NodeType
    children: list[FileTreeNode] | None = None
    size: int | None = None
    last_modified: datetime | None = None
    mime_type: str | None = None
    truncated: bool = False


class DirectoryAnalysis(CamelModel):
    file_count: int
    languages: list[str] = Field(default_factory=list)
    language_histogram: dict[str, int] = Field(default_factory=dict)
    structure: list[FileTreeNode] = Field(default_factory=list)


class CacheEntry(CamelModel):
    directory_hash: str
    commit_hash: str
    path: str
    last_updated: datetime = Field(default_factory=utcnow)
    version: str = CACHE_VERSION
    analysis: DirectoryAnalysis
