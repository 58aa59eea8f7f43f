"""External AI edit collaborator, run as an async subprocess.

The collaborator is an opaque command line tool: it receives a prompt, reads
and writes files in the workspace, and exits.  Output is streamed line by
line to the debug log; the process is killed if it exceeds the timeout.
"""

from __future__ import annotations

import asyncio
import os
import shlex
import time
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

STREAM_LINE_LIMIT = 1024 * 1024

WORKSPACE_BOUNDARY_NOTE = (
    "IMPORTANT: Only work within the current workspace directory. Do not access files outside this workspace."
)


@dataclass
class AssistantResult:
    success: bool
    exit_code: int
    stdout: str
    stderr: str
    duration_seconds: float

    def failure_summary(self, tail: int = 20) -> str:
        lines = (self.stderr or self.stdout).strip().splitlines()
        text = "\n".join(lines[-tail:]) if lines else "no output"
        return f"Assistant exited with code {self.exit_code}: {text}"


def build_prompt(question: str, context: str | None = None, *, edit: bool = False) -> str:
    prompt = question
    if context:
        prompt += f"\n\nContext: {context}"
    if edit:
        prompt += f"\n\n{WORKSPACE_BOUNDARY_NOTE}"
    return prompt


class AssistantRunner:
    """Launches the assistant command against a workspace checkout."""

    def __init__(
        self,
        command: str | Sequence[str] = "claude",
        *,
        extra_args: Sequence[str] = (),
        timeout_seconds: float = 3600,
    ) -> None:
        self.argv = shlex.split(command) if isinstance(command, str) else list(command)
        self.extra_args = list(extra_args)
        self.timeout_seconds = timeout_seconds

    def build_argv(self, prompt: str) -> list[str]:
        return [*self.argv, *self.extra_args, "-p", prompt, "--output-format", "text"]

    async def run(
        self,
        workspace_path: str | Path,
        question: str,
        context: str | None = None,
        *,
        edit: bool = False,
    ) -> AssistantResult:
        prompt = build_prompt(question, context, edit=edit)
        argv = self.build_argv(prompt)
        start = time.monotonic()
        logger.info(
            "Starting assistant in {} ({} mode, {} chars)",
            workspace_path,
            "edit" if edit else "read-only",
            len(prompt),
        )

        env = {**os.environ, "TERM": "dumb", "NO_COLOR": "1"}
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(workspace_path),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                limit=STREAM_LINE_LIMIT,
            )
        except OSError as exc:
            logger.error("Failed to start assistant: {}", exc)
            return AssistantResult(
                success=False,
                exit_code=-1,
                stdout="",
                stderr=f"Failed to start assistant: {exc}",
                duration_seconds=time.monotonic() - start,
            )

        stdout_lines: list[str] = []
        stderr_lines: list[str] = []

        async def _drain(stream: asyncio.StreamReader | None, sink: list[str], name: str) -> None:
            async for line in _read_lines(stream):
                sink.append(line)
                logger.debug("assistant {}: {}", name, line)

        try:
            await asyncio.wait_for(
                asyncio.gather(
                    _drain(process.stdout, stdout_lines, "stdout"),
                    _drain(process.stderr, stderr_lines, "stderr"),
                    process.wait(),
                ),
                timeout=self.timeout_seconds,
            )
        except TimeoutError:
            _kill(process)
            await process.wait()
            duration = time.monotonic() - start
            logger.error("Assistant timed out after {}s", self.timeout_seconds)
            return AssistantResult(
                success=False,
                exit_code=-1,
                stdout="\n".join(stdout_lines),
                stderr=f"Process timed out after {self.timeout_seconds}s",
                duration_seconds=duration,
            )
        except asyncio.CancelledError:
            _kill(process)
            raise

        exit_code = process.returncode if process.returncode is not None else -1
        duration = time.monotonic() - start
        if exit_code == 0:
            logger.info("Assistant completed in {:.1f}s", duration)
        else:
            logger.error("Assistant failed with exit code {} in {:.1f}s", exit_code, duration)
        return AssistantResult(
            success=exit_code == 0,
            exit_code=exit_code,
            stdout="\n".join(stdout_lines),
            stderr="\n".join(stderr_lines),
            duration_seconds=duration,
        )


async def _read_lines(stream: asyncio.StreamReader | None) -> AsyncIterator[str]:
    if stream is None:
        return
    while True:
        raw = await stream.readline()
        if not raw:
            break
        yield raw.decode("utf-8", errors="replace").rstrip("\n")


def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass


class AssistantError(RuntimeError):
    """Raised by job handlers when the assistant exits unsuccessfully."""

    def __init__(self, result: AssistantResult) -> None:
        self.result = result
        super().__init__(result.failure_summary())
