"""Git synchronization engine.

Wraps local git checkouts: clone, status, branch listing, remote-ref
reconciliation, push/pull, working-tree cleanup and per-workspace identity
config.

The engine never persists state and never raises for git failures.  Every
public coroutine returns a ``GitResult`` (or a ``RefSyncResult``) that the
caller branches on.  Commands scoped to a checkout are retried exactly once
after registering the checkout as a trusted directory when git refuses it
for ownership reasons.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path

from anyio import to_thread
from loguru import logger

from gitsmith.orchestrator.git.runner import (
    DEFAULT_GIT_TIMEOUT_SECONDS,
    CommandOutput,
    GitErrorKind,
    GitResult,
    run_git,
    short_hash,
)
from gitsmith.orchestrator.git.urls import embed_credentials, redact_url
from gitsmith.orchestrator.models.workspace import GitIdentity

GIT_CONFIG_KEYS: dict[str, str] = {
    "user_email": "user.email",
    "user_name": "user.name",
    "signing_key": "user.signingkey",
}

_HEADS_REF = re.compile(r"refs/heads/(.+)$")


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GitCredentials:
    username: str
    token: str


@dataclass
class CloneOptions:
    depth: int | None = 1
    single_branch: bool = True
    branch: str | None = None
    credentials: GitCredentials | None = None


@dataclass
class GitStatus:
    staged: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    untracked: list[str] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not (self.staged or self.modified or self.untracked)


@dataclass
class RefSyncResult:
    """Outcome of ``ensure_fresh_remote_ref``.

    ``in_sync`` is true when the branch is absent remotely (nothing to be
    stale against), was already fresh, or was repaired.
    """

    branch: str
    branch_exists: bool
    actual_remote_commit: str | None = None
    local_ref_commit: str | None = None
    was_stale: bool = False
    update_succeeded: bool = False
    error: str | None = None

    @property
    def in_sync(self) -> bool:
        if self.error:
            return False
        return not self.branch_exists or not self.was_stale or self.update_succeeded

    def describe_mismatch(self) -> str:
        return (
            f"origin/{self.branch} is {short_hash(self.local_ref_commit)} locally "
            f"but {short_hash(self.actual_remote_commit)} on the remote"
        )


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def parse_status(porcelain: str) -> GitStatus:
    """Parse ``git status --porcelain`` (v1) output."""
    status = GitStatus()
    for line in porcelain.splitlines():
        if len(line) < 4:
            continue
        index, worktree, path = line[0], line[1], line[3:]
        if " -> " in path:
            path = path.split(" -> ", 1)[1]
        if index == "?" and worktree == "?":
            status.untracked.append(path)
            continue
        if index not in (" ", "?"):
            status.staged.append(path)
        if worktree in ("M", "D"):
            status.modified.append(path)
    return status


def parse_remote_heads(ls_remote: str) -> list[str]:
    """Branch names from ``git ls-remote --heads`` output, deduplicated."""
    names: list[str] = []
    for line in ls_remote.splitlines():
        match = _HEADS_REF.search(line.strip())
        if match and match.group(1) not in names:
            names.append(match.group(1))
    return names


def parse_branch_refs(refs: str) -> list[str]:
    """Clean branch names from ``git branch --all --format=%(refname)``."""
    names: list[str] = []
    for raw in refs.splitlines():
        ref = raw.strip()
        if not ref or ref.endswith("/HEAD"):
            continue
        if ref.startswith("refs/heads/"):
            name = ref.removeprefix("refs/heads/")
        elif ref.startswith("refs/remotes/"):
            # refs/remotes/<remote>/<branch...>
            parts = ref.removeprefix("refs/remotes/").split("/", 1)
            if len(parts) < 2:
                continue
            name = parts[1]
        else:
            continue
        if name not in names:
            names.append(name)
    return names


def order_branches(names: Iterable[str], target_branch: str | None = None) -> list[str]:
    """Sort branch names, surfacing ``target_branch`` first when present."""
    unique = sorted(set(names))
    if target_branch and target_branch in unique:
        unique.remove(target_branch)
        unique.insert(0, target_branch)
    return unique


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class GitEngine:
    """Stateless facade over the ``git`` command line."""

    def __init__(self, timeout_seconds: float = DEFAULT_GIT_TIMEOUT_SECONDS) -> None:
        self.timeout_seconds = timeout_seconds

    # -- Plumbing --------------------------------------------------------------

    async def _raw(self, *args: str, cwd: str | Path | None = None) -> CommandOutput:
        return await run_git(*args, cwd=cwd, timeout=self.timeout_seconds)

    async def _run(self, path: str | Path, *args: str) -> CommandOutput:
        """Run a command inside a checkout with one-shot ownership retry."""
        output = await self._raw(*args, cwd=path)
        if output.kind is not GitErrorKind.UNSAFE_OWNERSHIP:
            return output
        logger.warning("git refused {} (dubious ownership), trusting and retrying once", path)
        trusted = await self.trust_directory(path)
        if not trusted.ok:
            return output
        return await self._raw(*args, cwd=path)

    async def trust_directory(self, path: str | Path) -> GitResult[None]:
        """Register ``path`` in the global ``safe.directory`` list."""
        resolved = str(Path(path).resolve())
        existing = await self._raw("config", "--global", "--get-all", "safe.directory")
        if existing.ok and resolved in existing.stdout.splitlines():
            return GitResult.success()
        output = await self._raw("config", "--global", "--add", "safe.directory", resolved)
        if not output.ok:
            return GitResult.from_output(output, "Registering safe.directory")
        return GitResult.success()

    # -- Clone -----------------------------------------------------------------

    async def clone(self, url: str, target_path: str | Path, options: CloneOptions | None = None) -> GitResult[str]:
        """Clone ``url`` into ``target_path``.

        Credentials are embedded into the URL for this invocation only and
        are scrubbed from any diagnostic text.
        """
        options = options or CloneOptions()
        target = Path(target_path)
        await to_thread.run_sync(partial(target.mkdir, parents=True, exist_ok=True))

        clone_url = url
        if options.credentials is not None:
            clone_url = embed_credentials(url, options.credentials.username, options.credentials.token)

        args = ["clone"]
        if options.depth:
            args += ["--depth", str(options.depth)]
        if options.single_branch:
            args.append("--single-branch")
        if options.branch:
            args += ["--branch", options.branch]
        args += [clone_url, str(target)]

        logger.info("Cloning {} into {}", redact_url(url), target)
        output = await self._raw(*args)
        if not output.ok:
            diagnostic = output.diagnostic
            if options.credentials is not None:
                diagnostic = redact_url(diagnostic).replace(options.credentials.token, "***")
            return GitResult.failure(f"Clone failed: {diagnostic}", output.kind or GitErrorKind.COMMAND_FAILED)

        if options.credentials is not None:
            # Keep the token out of .git/config.
            await self._run(target, "remote", "set-url", "origin", url)

        warnings: list[str] = []
        trusted = await self.trust_directory(target)
        if not trusted.ok:
            logger.warning("Could not register {} as safe.directory: {}", target, trusted.error)
            warnings.append(trusted.error or "safe.directory registration failed")
        return GitResult.success(str(target), warnings=warnings)

    # -- Inspection ------------------------------------------------------------

    async def status(self, path: str | Path) -> GitResult[GitStatus]:
        output = await self._run(path, "status", "--porcelain", "--untracked-files=all")
        if not output.ok:
            return GitResult.from_output(output, "Status")
        return GitResult.success(parse_status(output.stdout))

    async def has_changes(self, path: str | Path) -> GitResult[bool]:
        result = await self.status(path)
        if not result.ok or result.value is None:
            return GitResult.failure(result.error or "Status failed", result.kind or GitErrorKind.COMMAND_FAILED)
        return GitResult.success(not result.value.is_clean)

    async def current_branch(self, path: str | Path) -> GitResult[str]:
        output = await self._run(path, "branch", "--show-current")
        if not output.ok:
            return GitResult.from_output(output, "Reading current branch")
        name = output.stdout.strip()
        if not name:
            return GitResult.failure(f"{path} is in detached HEAD state", GitErrorKind.DETACHED_HEAD)
        return GitResult.success(name)

    async def head_commit(self, path: str | Path) -> GitResult[str]:
        output = await self._run(path, "log", "-1", "--format=%H")
        if not output.ok:
            return GitResult.from_output(output, "Reading HEAD commit")
        return GitResult.success(output.stdout.strip())

    async def list_branches(self, path: str | Path, target_branch: str | None = None) -> GitResult[list[str]]:
        """Local and remote-tracking branches with remote prefixes stripped."""
        output = await self._run(path, "branch", "--all", "--format=%(refname)")
        if not output.ok:
            return GitResult.from_output(output, "Listing branches")
        return GitResult.success(order_branches(parse_branch_refs(output.stdout), target_branch))

    async def list_local_branches(self, path: str | Path) -> GitResult[list[str]]:
        output = await self._run(path, "for-each-ref", "--format=%(refname:short)", "refs/heads")
        if not output.ok:
            return GitResult.from_output(output, "Listing local branches")
        return GitResult.success([line.strip() for line in output.stdout.splitlines() if line.strip()])

    async def all_remote_branches(self, path: str | Path, target_branch: str | None = None) -> GitResult[list[str]]:
        """Every branch on ``origin``, queried over the network."""
        output = await self._run(path, "ls-remote", "--heads", "origin")
        if not output.ok:
            return GitResult.from_output(output, "Listing remote branches")
        return GitResult.success(order_branches(parse_remote_heads(output.stdout), target_branch))

    async def default_branch(self, path: str | Path) -> GitResult[str]:
        output = await self._run(path, "remote", "show", "origin")
        if output.ok:
            for line in output.stdout.splitlines():
                if "HEAD branch:" in line:
                    name = line.split("HEAD branch:", 1)[1].strip()
                    if name and name != "(unknown)":
                        return GitResult.success(name)
        remote = await self.all_remote_branches(path)
        for candidate in ("main", "master"):
            if remote.ok and remote.value and candidate in remote.value:
                return GitResult.success(candidate)
        return GitResult.failure("Could not determine the default branch of origin", GitErrorKind.NOT_FOUND)

    # -- Branches --------------------------------------------------------------

    async def create_branch(self, path: str | Path, name: str) -> GitResult[str]:
        output = await self._run(path, "checkout", "-b", name)
        if not output.ok:
            return GitResult.from_output(output, f"Creating branch {name}")
        return GitResult.success(name)

    async def switch_branch(self, path: str | Path, name: str) -> GitResult[str]:
        """Check out ``name``, starting from ``origin/name`` when it exists remotely.

        Falls back to creating a new local branch.
        """
        local = await self.list_local_branches(path)
        if local.ok and local.value and name in local.value:
            output = await self._run(path, "checkout", name)
            if not output.ok:
                return GitResult.from_output(output, f"Checking out {name}")
            return GitResult.success(name)

        remote_commit = await self.remote_commit(path, name)
        if remote_commit.ok and remote_commit.value:
            fetched = await self._run(path, "fetch", "origin", f"+refs/heads/{name}:refs/remotes/origin/{name}")
            if not fetched.ok:
                return GitResult.from_output(fetched, f"Fetching {name}")
            output = await self._run(path, "checkout", "-b", name, f"origin/{name}")
            if not output.ok:
                return GitResult.from_output(output, f"Checking out {name}")
            return GitResult.success(name)

        return await self.create_branch(path, name)

    async def delete_branch(self, path: str | Path, name: str, *, force: bool = False) -> GitResult[None]:
        output = await self._run(path, "branch", "-D" if force else "-d", name)
        if not output.ok:
            return GitResult.from_output(output, f"Deleting branch {name}")
        return GitResult.success()

    # -- Remote refs -----------------------------------------------------------

    async def remote_commit(self, path: str | Path, branch: str) -> GitResult[str | None]:
        """Tip of ``refs/heads/<branch>`` on origin, or None if absent."""
        output = await self._run(path, "ls-remote", "origin", f"refs/heads/{branch}")
        if not output.ok:
            return GitResult.from_output(output, f"Querying origin for {branch}")
        line = output.stdout.strip()
        if not line:
            return GitResult.success(None)
        return GitResult.success(line.split()[0])

    async def tracking_commit(self, path: str | Path, branch: str) -> str | None:
        """Commit of the local ``origin/<branch>`` tracking ref, or None."""
        output = await self._run(path, "rev-parse", "--verify", "--quiet", f"refs/remotes/origin/{branch}")
        if not output.ok:
            return None
        return output.stdout.strip() or None

    async def ensure_fresh_remote_ref(self, path: str | Path, branch: str) -> RefSyncResult:
        """Bring ``origin/<branch>`` in line with the remote's actual tip.

        Queries the remote directly, compares with the cached tracking ref
        and, on mismatch, force-updates only that ref with a targeted fetch.
        Run this immediately before pushing a branch that others may rewrite.
        """
        remote = await self.remote_commit(path, branch)
        if not remote.ok or not remote.value:
            if not remote.ok:
                logger.warning("Ref sync: could not query origin for {}: {}", branch, remote.error)
            return RefSyncResult(branch=branch, branch_exists=False)

        actual = remote.value
        local = await self.tracking_commit(path, branch)
        result = RefSyncResult(
            branch=branch,
            branch_exists=True,
            actual_remote_commit=actual,
            local_ref_commit=local,
        )
        if local == actual:
            result.update_succeeded = True
            return result

        result.was_stale = True
        logger.info(
            "Ref sync: origin/{} is stale (local {}, remote {}), fetching",
            branch,
            short_hash(local),
            short_hash(actual),
        )
        fetched = await self._run(path, "fetch", "origin", f"+refs/heads/{branch}:refs/remotes/origin/{branch}")
        if not fetched.ok:
            result.error = f"Targeted fetch failed: {fetched.diagnostic}"
            logger.error("Ref sync: {}", result.error)
            return result

        refreshed = await self.tracking_commit(path, branch)
        result.local_ref_commit = refreshed
        result.update_succeeded = refreshed == actual
        if result.update_succeeded:
            logger.info("Ref sync: origin/{} updated to {}", branch, short_hash(actual))
        else:
            logger.error("Ref sync: repair did not converge, {}", result.describe_mismatch())
        return result

    async def verify_sync_state(self, path: str | Path, branch: str) -> GitResult[bool]:
        """Whether HEAD matches ``origin/<branch>``."""
        head = await self._run(path, "rev-parse", "HEAD")
        if not head.ok:
            return GitResult.from_output(head, "Reading HEAD")
        tracking = await self.tracking_commit(path, branch)
        return GitResult.success(tracking is not None and head.stdout.strip() == tracking)

    async def ahead_behind(self, path: str | Path, branch: str) -> GitResult[tuple[int, int]]:
        """``(ahead, behind)`` of HEAD relative to ``origin/<branch>``."""
        output = await self._run(path, "rev-list", "--left-right", "--count", f"origin/{branch}...HEAD")
        if not output.ok:
            return GitResult.from_output(output, "Counting ahead/behind")
        parts = output.stdout.split()
        if len(parts) != 2:
            return GitResult.failure(f"Unexpected rev-list output: {output.stdout.strip()!r}")
        behind, ahead = int(parts[0]), int(parts[1])
        return GitResult.success((ahead, behind))

    # -- Push / pull -----------------------------------------------------------

    async def push(
        self,
        path: str | Path,
        branch: str | None = None,
        *,
        set_upstream: bool = False,
    ) -> GitResult[None]:
        """Push ``branch`` (or the current branch) to origin.

        Callers should run ``ensure_fresh_remote_ref`` first for branches
        that may have been rewritten elsewhere.
        """
        if branch:
            counts = await self.ahead_behind(path, branch)
            if counts.ok and counts.value is not None:
                logger.info("Pushing {}: {} ahead, {} behind origin", branch, *counts.value)
            args = ["push", *(["-u"] if set_upstream else []), "origin", branch]
        else:
            args = ["push"]
        output = await self._run(path, *args)
        if not output.ok:
            return GitResult.from_output(output, "Push")
        return GitResult.success()

    async def pull(self, path: str | Path) -> GitResult[None]:
        """Fetch everything and hard-reset the current branch to its tracking ref."""
        fetched = await self._run(path, "fetch", "--all", "--prune")
        if not fetched.ok:
            return GitResult.from_output(fetched, "Fetch")
        current = await self.current_branch(path)
        if not current.ok or current.value is None:
            return GitResult.failure(current.error or "No current branch", current.kind or GitErrorKind.COMMAND_FAILED)
        if await self.tracking_commit(path, current.value) is None:
            logger.debug("Pull: origin/{} does not exist, nothing to reset to", current.value)
            return GitResult.success()
        output = await self._run(path, "reset", "--hard", f"origin/{current.value}")
        if not output.ok:
            return GitResult.from_output(output, "Reset")
        return GitResult.success()

    async def commit_all(self, path: str | Path, message: str) -> GitResult[str]:
        """Stage everything and commit.  Returns the new commit hash."""
        added = await self._run(path, "add", "-A")
        if not added.ok:
            return GitResult.from_output(added, "Staging changes")
        committed = await self._run(path, "commit", "-m", message)
        if not committed.ok:
            return GitResult.from_output(committed, "Commit")
        return await self.head_commit(path)

    # -- Working tree cleanup --------------------------------------------------

    async def reset_workspace(self, path: str | Path) -> GitResult[None]:
        """Discard staged and unstaged changes to tracked files."""
        output = await self._run(path, "reset", "--hard", "HEAD")
        if not output.ok:
            return GitResult.from_output(output, "Resetting working tree")
        return GitResult.success()

    async def clean_workspace(self, path: str | Path) -> GitResult[None]:
        """Delete untracked files and directories, ignored ones included."""
        output = await self._run(path, "clean", "-fdx")
        if not output.ok:
            return GitResult.from_output(output, "Cleaning working tree")
        return GitResult.success()

    async def prune_local_branches(self, path: str | Path, keep: Iterable[str] = ()) -> GitResult[list[str]]:
        """Force-delete local branches that no longer exist on origin.

        The current branch and ``keep`` are never touched.  Returns the
        deleted names; a branch that cannot be deleted is left as a warning.
        """
        remote = await self.all_remote_branches(path)
        if not remote.ok or remote.value is None:
            return GitResult.failure(remote.error or "Listing remote branches failed")
        local = await self.list_local_branches(path)
        if not local.ok or local.value is None:
            return GitResult.failure(local.error or "Listing local branches failed")
        current = await self.current_branch(path)

        protected = set(keep) | set(remote.value)
        if current.ok and current.value:
            protected.add(current.value)

        deleted: list[str] = []
        warnings: list[str] = []
        for name in local.value:
            if name in protected:
                continue
            result = await self.delete_branch(path, name, force=True)
            if result.ok:
                deleted.append(name)
            else:
                warnings.append(result.error or f"Deleting branch {name} failed")
        if deleted:
            logger.debug("Pruned local branches in {}: {}", path, ", ".join(deleted))
        return GitResult.success(deleted, warnings=warnings)

    # -- Config ----------------------------------------------------------------

    async def set_config(self, path: str | Path, identity: GitIdentity) -> GitResult[None]:
        """Write the given identity fields to the checkout's local config."""
        for field_name, key in GIT_CONFIG_KEYS.items():
            value = getattr(identity, field_name)
            if value is None:
                continue
            output = await self._run(path, "config", "--local", key, value)
            if not output.ok:
                return GitResult.from_output(output, f"Setting {key}")
        return GitResult.success()

    async def get_config(self, path: str | Path) -> GitResult[GitIdentity]:
        values: dict[str, str | None] = {}
        for field_name, key in GIT_CONFIG_KEYS.items():
            output = await self._run(path, "config", "--local", "--get", key)
            if output.ok:
                values[field_name] = output.stdout.strip() or None
            elif output.exit_code == 1 and not output.timed_out:
                # Key not set.
                values[field_name] = None
            else:
                return GitResult.from_output(output, f"Reading {key}")
        return GitResult.success(GitIdentity(**values))

    async def unset_config(self, path: str | Path, fields: Iterable[str]) -> GitResult[None]:
        """Remove identity fields.  Unknown or already-unset keys are ignored."""
        for field_name in fields:
            key = GIT_CONFIG_KEYS.get(field_name)
            if key is None:
                continue
            await self._run(path, "config", "--local", "--unset", key)
        return GitResult.success()
