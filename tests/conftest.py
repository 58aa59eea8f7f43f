"""Shared test fixtures: isolated settings and a throwaway git environment.

Git tests drive the real ``git`` binary against bare repositories created
under ``tmp_path``.  Global git config is redirected to a temp file so that
``safe.directory`` registration and identity never touch the developer's
own configuration.
"""

from __future__ import annotations

import subprocess
from collections.abc import Iterator
from pathlib import Path

import pytest

from gitsmith.orchestrator.settings import _get_settings_cached


def git(*args: str, cwd: str | Path) -> str:
    """Run a git command synchronously for test setup and return stdout."""
    completed = subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True, text=True)
    return completed.stdout.strip()


def commit_file(repo: Path, name: str, content: str, message: str) -> str:
    (repo / name).parent.mkdir(parents=True, exist_ok=True)
    (repo / name).write_text(content)
    git("add", name, cwd=repo)
    git("commit", "-m", message, cwd=repo)
    return git("rev-parse", "HEAD", cwd=repo)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Iterator[None]:
    _get_settings_cached.cache_clear()
    yield
    _get_settings_cached.cache_clear()


@pytest.fixture
def data_root(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    root = tmp_path / "data"
    monkeypatch.setenv("GITSMITH_DATA_ROOT", str(root))
    return root


# ---------------------------------------------------------------------------
# Git
# ---------------------------------------------------------------------------


@pytest.fixture
def git_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Redirect global git config and pin a commit identity."""
    global_config = tmp_path / "gitconfig"
    global_config.write_text("")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(global_config))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    for key, value in {
        "GIT_AUTHOR_NAME": "Test Author",
        "GIT_AUTHOR_EMAIL": "author@example.com",
        "GIT_COMMITTER_NAME": "Test Author",
        "GIT_COMMITTER_EMAIL": "author@example.com",
    }.items():
        monkeypatch.setenv(key, value)
    return global_config


@pytest.fixture
def origin(tmp_path: Path, git_env: Path) -> Path:
    """Bare repository with ``main`` (two commits) and ``feature`` branches."""
    bare = tmp_path / "origin.git"
    git("init", "--bare", "--initial-branch=main", str(bare), cwd=tmp_path)

    seed = tmp_path / "seed"
    git("init", "--initial-branch=main", str(seed), cwd=tmp_path)
    git("remote", "add", "origin", str(bare), cwd=seed)
    commit_file(seed, "README.md", "# demo\n", "initial")
    commit_file(seed, "src/app.py", "print('hi')\n", "add app")
    git("push", "origin", "main", cwd=seed)

    git("checkout", "-b", "feature", cwd=seed)
    commit_file(seed, "src/feature.py", "FLAG = True\n", "feature work")
    git("push", "origin", "feature", cwd=seed)
    git("checkout", "main", cwd=seed)
    return bare


@pytest.fixture
def seed(origin: Path) -> Path:
    """Working clone used by tests to move the remote under a workspace's feet."""
    return origin.parent / "seed"


@pytest.fixture
def run(git_env: Path):
    """The ``git`` helper as a fixture, for modules that set up extra history."""
    return git


@pytest.fixture
def commit(git_env: Path):
    return commit_file
