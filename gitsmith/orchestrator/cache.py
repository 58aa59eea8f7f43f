"""Commit-keyed content cache for directory analyses.

Entries live as JSON files under ``{data_root}/cache/`` and are keyed by the
pair (directory fingerprint, commit hash).  The fingerprint is a sha256 over
``relpath:size:mtime_ns`` of every matched file, so an entry is only served
for an unchanged tree at the exact commit it was computed for.

The cache is advisory.  Expired entries are dropped lazily when read, and
``set`` evicts the oldest entries until the new one fits the byte budget.
"""

from __future__ import annotations

import contextlib
import fnmatch
import hashlib
import os
from collections import Counter
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from functools import partial
from pathlib import Path

from anyio import to_thread
from loguru import logger
from pydantic import ValidationError

from gitsmith.orchestrator.git.runner import short_hash
from gitsmith.orchestrator.models.cache import CACHE_VERSION, CacheEntry, DirectoryAnalysis, FileTreeNode
from gitsmith.orchestrator.models.enums import NodeType
from gitsmith.orchestrator.models.workspace import utcnow
from gitsmith.orchestrator.settings import DEFAULT_EXCLUDE_PATTERNS, DEFAULT_INCLUDE_PATTERNS
from gitsmith.orchestrator.store.local import atomic_write, read_file

LANGUAGES: dict[str, str] = {
    ".js": "JavaScript",
    ".ts": "TypeScript",
    ".jsx": "React",
    ".tsx": "React TypeScript",
    ".py": "Python",
    ".java": "Java",
    ".cpp": "C++",
    ".c": "C",
    ".cs": "C#",
    ".go": "Go",
    ".rs": "Rust",
    ".php": "PHP",
    ".rb": "Ruby",
    ".swift": "Swift",
    ".kt": "Kotlin",
    ".scala": "Scala",
    ".sh": "Shell",
    ".yml": "YAML",
    ".yaml": "YAML",
    ".json": "JSON",
    ".xml": "XML",
    ".html": "HTML",
    ".css": "CSS",
    ".scss": "SCSS",
    ".sass": "Sass",
    ".md": "Markdown",
    ".sql": "SQL",
}

MIME_TYPES: dict[str, str] = {
    ".js": "application/javascript",
    ".ts": "application/typescript",
    ".json": "application/json",
    ".html": "text/html",
    ".css": "text/css",
    ".md": "text/markdown",
    ".txt": "text/plain",
    ".py": "text/x-python",
    ".java": "text/x-java-source",
    ".cpp": "text/x-c++src",
    ".c": "text/x-csrc",
    ".yml": "application/yaml",
    ".yaml": "application/yaml",
}


@dataclass(frozen=True)
class _FileInfo:
    rel: str
    size: int
    mtime_ns: int


# ---------------------------------------------------------------------------
# Directory walking
# ---------------------------------------------------------------------------


def matches(rel_path: str, pattern: str) -> bool:
    """Glob match where ``**/`` may also match zero directories."""
    if fnmatch.fnmatchcase(rel_path, pattern):
        return True
    return pattern.startswith("**/") and fnmatch.fnmatchcase(rel_path, pattern[3:])


def _excluded(rel_path: str, exclude: list[str]) -> bool:
    return any(matches(rel_path, pattern) for pattern in exclude)


def collect_files(root: Path, include: list[str], exclude: list[str]) -> list[_FileInfo]:
    """Matched regular files under ``root``, sorted by relative path.

    Hidden files and directories are skipped.
    """
    found: list[_FileInfo] = []
    for dirpath, dirnames, filenames in os.walk(root):
        rel_dir = os.path.relpath(dirpath, root)
        rel_dir = "" if rel_dir == "." else rel_dir.replace(os.sep, "/")
        dirnames[:] = [
            d
            for d in dirnames
            if not d.startswith(".") and not _excluded(f"{rel_dir}/{d}/" if rel_dir else f"{d}/", exclude)
        ]
        for name in filenames:
            if name.startswith("."):
                continue
            rel = f"{rel_dir}/{name}" if rel_dir else name
            if _excluded(rel, exclude) or not any(matches(rel, p) for p in include):
                continue
            with contextlib.suppress(OSError):
                st = os.stat(os.path.join(dirpath, name))
                found.append(_FileInfo(rel=rel, size=st.st_size, mtime_ns=st.st_mtime_ns))
    found.sort(key=lambda f: f.rel)
    return found


def fingerprint_files(files: list[_FileInfo]) -> str:
    digest = hashlib.sha256()
    for info in files:
        digest.update(f"{info.rel}:{info.size}:{info.mtime_ns}\n".encode())
    return digest.hexdigest()


def _suffix(name: str) -> str:
    return os.path.splitext(name)[1].lower()


def build_tree(root: Path, files: list[_FileInfo], max_depth: int) -> list[FileTreeNode]:
    """Nested file tree, cut off below ``max_depth`` levels.

    Directories whose contents were cut off are marked ``truncated``.
    """
    roots: list[FileTreeNode] = []
    nodes: dict[str, FileTreeNode] = {}
    for info in files:
        parts = info.rel.split("/")
        level = roots
        prefix = ""
        for depth, part in enumerate(parts, start=1):
            prefix = f"{prefix}/{part}" if prefix else part
            is_file = depth == len(parts)
            node = nodes.get(prefix)
            if node is None:
                if is_file:
                    node = FileTreeNode(
                        name=part,
                        path=str(root / prefix),
                        type=NodeType.FILE,
                        size=info.size,
                        last_modified=datetime.fromtimestamp(info.mtime_ns / 1e9, tz=UTC),
                        mime_type=MIME_TYPES.get(_suffix(part), "application/octet-stream"),
                    )
                else:
                    node = FileTreeNode(name=part, path=str(root / prefix), type=NodeType.DIRECTORY, children=[])
                nodes[prefix] = node
                level.append(node)
            if is_file:
                break
            if depth >= max_depth:
                node.truncated = True
                break
            level = node.children if node.children is not None else []
    return roots


def analyze_directory(
    root: Path,
    include: list[str],
    exclude: list[str],
    max_depth: int,
) -> tuple[DirectoryAnalysis, str]:
    """Walk ``root`` once and return (analysis, fingerprint)."""
    files = collect_files(root, include, exclude)
    histogram = Counter(
        LANGUAGES[_suffix(info.rel)] for info in files if _suffix(info.rel) in LANGUAGES
    )
    analysis = DirectoryAnalysis(
        file_count=len(files),
        languages=sorted(histogram),
        language_histogram=dict(sorted(histogram.items())),
        structure=build_tree(root, files, max_depth),
    )
    return analysis, fingerprint_files(files)


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class ContentCache:
    def __init__(
        self,
        data_root: str | Path,
        *,
        expiry_days: float = 7,
        max_bytes: int = 100 * 1024 * 1024,
        include_patterns: list[str] | None = None,
        exclude_patterns: list[str] | None = None,
        tree_max_depth: int = 4,
    ) -> None:
        self._dir = Path(data_root) / "cache"
        self.expiry = timedelta(days=expiry_days)
        self.max_bytes = max_bytes
        self.include = include_patterns or list(DEFAULT_INCLUDE_PATTERNS)
        self.exclude = exclude_patterns if exclude_patterns is not None else list(DEFAULT_EXCLUDE_PATTERNS)
        self.tree_max_depth = tree_max_depth

    @staticmethod
    def entry_key(directory_hash: str, commit_hash: str) -> str:
        return hashlib.sha256(f"{directory_hash}:{commit_hash}".encode()).hexdigest()

    def _entry_path(self, key: str) -> Path:
        return self._dir / f"{key}.json"

    def _expired(self, entry: CacheEntry) -> bool:
        return utcnow() - entry.last_updated > self.expiry

    # -- Analysis --------------------------------------------------------------

    async def analyze(self, path: str | Path) -> DirectoryAnalysis:
        analysis, _ = await to_thread.run_sync(
            partial(analyze_directory, Path(path), self.include, self.exclude, self.tree_max_depth)
        )
        return analysis

    async def fingerprint(self, path: str | Path) -> str:
        files = await to_thread.run_sync(partial(collect_files, Path(path), self.include, self.exclude))
        return fingerprint_files(files)

    # -- Read ------------------------------------------------------------------

    async def get(self, path: str | Path, commit_hash: str) -> DirectoryAnalysis | None:
        """Cached analysis for ``path`` at exactly ``commit_hash``, else None."""
        key = self.entry_key(await self.fingerprint(path), commit_hash)
        entry_path = self._entry_path(key)
        try:
            raw = await to_thread.run_sync(partial(read_file, entry_path))
            entry = CacheEntry.model_validate_json(raw)
        except FileNotFoundError:
            return None
        except (OSError, ValidationError) as exc:
            logger.warning("Cache: dropping unreadable entry {}: {}", key[:12], exc)
            await to_thread.run_sync(partial(entry_path.unlink, missing_ok=True))
            return None

        if entry.version != CACHE_VERSION or self._expired(entry) or entry.commit_hash != commit_hash:
            await to_thread.run_sync(partial(entry_path.unlink, missing_ok=True))
            return None
        logger.debug("Cache: hit for {} at {}", path, short_hash(commit_hash))
        return entry.analysis

    # -- Write -----------------------------------------------------------------

    async def set(self, path: str | Path, analysis: DirectoryAnalysis, commit_hash: str) -> CacheEntry:
        """Store ``analysis`` for ``path`` at ``commit_hash``.

        Replaces any earlier entry for the same path.  Raises ``OSError`` if
        the entry cannot be written; callers treat that as non-fatal.
        """
        directory_hash = await self.fingerprint(path)
        entry = CacheEntry(
            directory_hash=directory_hash,
            commit_hash=commit_hash,
            path=str(Path(path).resolve()),
            analysis=analysis,
        )
        data = entry.model_dump_json(by_alias=True)
        await to_thread.run_sync(partial(self._store, entry, data))
        logger.debug("Cache: stored {} at {} ({} bytes)", path, short_hash(commit_hash), len(data))
        return entry

    def _store(self, entry: CacheEntry, data: str) -> None:
        size = len(data.encode("utf-8"))
        if size > self.max_bytes:
            msg = f"Cache entry of {size} bytes exceeds the {self.max_bytes} byte budget"
            raise OSError(msg)

        existing = [e for e in self._scan() if e.path != entry.path]
        for stale in self._scan_paths(entry.path):
            stale.unlink(missing_ok=True)

        total = sum(e.size for e in existing)
        existing.sort(key=lambda e: e.last_updated)
        while existing and total + size > self.max_bytes:
            oldest = existing.pop(0)
            oldest.file.unlink(missing_ok=True)
            total -= oldest.size
            logger.debug("Cache: evicted {} (last updated {})", oldest.path, oldest.last_updated)

        atomic_write(self._entry_path(self.entry_key(entry.directory_hash, entry.commit_hash)), data)

    # -- Maintenance -----------------------------------------------------------

    async def invalidate(self, path: str | Path) -> int:
        """Drop every entry recorded for ``path``.  Returns the count removed."""
        resolved = str(Path(path).resolve())
        return await to_thread.run_sync(partial(self._remove_for_path, resolved))

    def _remove_for_path(self, resolved: str) -> int:
        files = self._scan_paths(resolved)
        for file in files:
            file.unlink(missing_ok=True)
        return len(files)

    async def cleanup_expired(self) -> int:
        return await to_thread.run_sync(self._cleanup_expired)

    def _cleanup_expired(self) -> int:
        cutoff = utcnow() - self.expiry
        removed = 0
        for meta in self._scan():
            if meta.last_updated < cutoff:
                meta.file.unlink(missing_ok=True)
                removed += 1
        if removed:
            logger.info("Cache: removed {} expired entries", removed)
        return removed

    async def stats(self) -> dict[str, int]:
        entries = await to_thread.run_sync(self._scan)
        return {"entries": len(entries), "totalBytes": sum(e.size for e in entries)}

    # -- Scanning --------------------------------------------------------------

    def _scan(self) -> list[_EntryMeta]:
        if not self._dir.is_dir():
            return []
        metas: list[_EntryMeta] = []
        for file in self._dir.glob("*.json"):
            try:
                raw = file.read_text(encoding="utf-8")
                entry = CacheEntry.model_validate_json(raw)
            except (OSError, ValidationError):
                with contextlib.suppress(OSError):
                    file.unlink()
                continue
            size = len(raw.encode())
            metas.append(_EntryMeta(file=file, path=entry.path, last_updated=entry.last_updated, size=size))
        return metas

    def _scan_paths(self, resolved: str) -> list[Path]:
        return [meta.file for meta in self._scan() if meta.path == resolved]


@dataclass
class _EntryMeta:
    file: Path
    path: str
    last_updated: datetime
    size: int
