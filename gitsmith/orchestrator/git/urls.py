"""Repository URL helpers: validation, provider detection, credential embedding.

All functions are pure string manipulation; none touch the network.
"""

from __future__ import annotations

import re
from urllib.parse import quote, urlsplit, urlunsplit

from gitsmith.orchestrator.models.enums import GitProvider

_VALID_URL_PATTERNS = (
    re.compile(r"^https?://.+\.git$", re.IGNORECASE),
    re.compile(r"^git@.+:.+\.git$", re.IGNORECASE),
    re.compile(r"^ssh://git@.+/.+\.git$", re.IGNORECASE),
    re.compile(r"^https?://.+/.+$", re.IGNORECASE),
)

_SSH_SHORTHAND = re.compile(r"^git@([^:]+):(.+)$")


def validate_url(url: str) -> bool:
    """Format check for a clone URL.

    Accepts HTTPS with or without ``.git``, ``git@host:path.git`` and
    ``ssh://git@host/path.git``.
    """
    url = url.strip()
    if not url or any(ch.isspace() for ch in url):
        return False
    return any(pattern.match(url) for pattern in _VALID_URL_PATTERNS)


def detect_provider(url: str) -> GitProvider:
    lowered = url.lower()
    if "github.com" in lowered or "github." in lowered:
        return GitProvider.GITHUB
    if "gitlab.com" in lowered or "gitlab." in lowered:
        return GitProvider.GITLAB
    return GitProvider.UNKNOWN


def _strip_git_suffix(url: str) -> str:
    url = url.strip().rstrip("/")
    return url[:-4] if url.endswith(".git") else url


def github_owner_repo(url: str) -> tuple[str, str] | None:
    """Extract ``(owner, repo)`` from a GitHub URL, or None."""
    clean = _strip_git_suffix(url)
    ssh = re.match(r"^git@[^:]+:(.+)/(.+)$", clean)
    if ssh:
        return ssh.group(1), ssh.group(2)
    parts = [p for p in urlsplit(clean).path.split("/") if p]
    if len(parts) < 2:
        return None
    return parts[0], parts[1]


def gitlab_project_path(url: str) -> str | None:
    """Extract the ``group/.../project`` path used as a GitLab project id."""
    clean = _strip_git_suffix(url)
    ssh = _SSH_SHORTHAND.match(clean)
    if ssh:
        clean = f"https://{ssh.group(1)}/{ssh.group(2)}"
    parts = [p for p in urlsplit(clean).path.split("/") if p]
    if len(parts) < 2:
        return None
    return "/".join(parts)


def repo_name(url: str) -> str:
    """Last path component of a repository URL without ``.git``."""
    clean = _strip_git_suffix(url)
    return re.split(r"[/:]", clean)[-1] or "repository"


def embed_credentials(url: str, username: str, token: str) -> str:
    """Return ``url`` with URL-encoded ``username:token`` userinfo.

    Only HTTP(S) URLs carry userinfo; other schemes are returned unchanged.
    """
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https"):
        return url
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    userinfo = f"{quote(username, safe='')}:{quote(token, safe='')}"
    return urlunsplit((parts.scheme, f"{userinfo}@{host}", parts.path, parts.query, parts.fragment))


def redact_url(url: str) -> str:
    """Replace any userinfo in an HTTP(S) URL with ``***``."""
    return re.sub(r"(https?://)[^/@\s]+@", r"\1***@", url)
