"""Async ``git`` subprocess execution and result types.

Every git invocation goes through ``run_git``, which never raises for
command failures: it returns a ``CommandOutput`` carrying the exit code and
diagnostic text.  The engine turns those into ``GitResult`` values that
callers branch on.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Generic, TypeVar

from loguru import logger

from gitsmith.orchestrator.errors import RemoteSyncError

T = TypeVar("T")

DEFAULT_GIT_TIMEOUT_SECONDS = 300


def short_hash(commit: str | None) -> str:
    """Seven-character form of a commit hash for messages."""
    if not commit:
        return "none"
    return commit[:7]


class GitErrorKind(StrEnum):
    UNSAFE_OWNERSHIP = "unsafe_ownership"
    DETACHED_HEAD = "detached_head"
    NOT_FOUND = "not_found"
    COMMAND_FAILED = "command_failed"
    TIMEOUT = "timeout"
    SPAWN_FAILED = "spawn_failed"


@dataclass
class CommandOutput:
    """Raw outcome of one git process."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    spawn_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and self.spawn_error is None

    @property
    def diagnostic(self) -> str:
        if self.spawn_error:
            return self.spawn_error
        if self.timed_out:
            return "git command timed out"
        return (self.stderr or self.stdout).strip() or f"git exited with code {self.exit_code}"

    @property
    def kind(self) -> GitErrorKind | None:
        if self.ok:
            return None
        if self.spawn_error:
            return GitErrorKind.SPAWN_FAILED
        if self.timed_out:
            return GitErrorKind.TIMEOUT
        if "dubious ownership" in self.stderr.lower():
            return GitErrorKind.UNSAFE_OWNERSHIP
        return GitErrorKind.COMMAND_FAILED


@dataclass
class GitResult(Generic[T]):
    """Success/failure value returned by every engine operation."""

    ok: bool
    value: T | None = None
    error: str | None = None
    kind: GitErrorKind | None = None
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def success(cls, value: T | None = None, warnings: list[str] | None = None) -> GitResult[T]:
        return cls(ok=True, value=value, warnings=warnings or [])

    @classmethod
    def failure(cls, error: str, kind: GitErrorKind = GitErrorKind.COMMAND_FAILED) -> GitResult[T]:
        return cls(ok=False, error=error, kind=kind)

    @classmethod
    def from_output(cls, output: CommandOutput, action: str) -> GitResult[T]:
        return cls.failure(f"{action} failed: {output.diagnostic}", output.kind or GitErrorKind.COMMAND_FAILED)

    def unwrap(self) -> T:
        """Return the value or raise ``RemoteSyncError`` with the diagnostic."""
        if not self.ok:
            raise RemoteSyncError(self.error or "git operation failed")
        return self.value  # type: ignore[return-value]


async def run_git(
    *args: str,
    cwd: str | Path | None = None,
    timeout: float = DEFAULT_GIT_TIMEOUT_SECONDS,
) -> CommandOutput:
    """Run ``git <args>`` and capture its output.

    Interactive prompts are disabled so a missing credential fails fast
    instead of hanging.  On timeout the process is killed.
    """
    env = {**os.environ, "GIT_TERMINAL_PROMPT": "0", "LC_ALL": "C"}
    try:
        process = await asyncio.create_subprocess_exec(
            "git",
            *args,
            cwd=str(cwd) if cwd is not None else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )
    except OSError as exc:
        logger.error("Failed to start git: {}", exc)
        return CommandOutput(exit_code=-1, spawn_error=f"Failed to start git: {exc}")

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except TimeoutError:
        _kill(process)
        await process.wait()
        logger.warning("git {} timed out after {}s", args[0] if args else "", timeout)
        return CommandOutput(exit_code=-1, timed_out=True)
    except asyncio.CancelledError:
        _kill(process)
        raise

    return CommandOutput(
        exit_code=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )


def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
