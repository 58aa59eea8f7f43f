"""Service configuration loaded from GITSMITH_* environment variables."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_INCLUDE_PATTERNS = [
    "**/*.py",
    "**/*.ts",
    "**/*.js",
    "**/*.json",
    "**/*.md",
    "**/*.yml",
    "**/*.yaml",
]

DEFAULT_EXCLUDE_PATTERNS = [
    "node_modules/**",
    ".git/**",
    "**/.DS_Store",
    ".next/**",
    "**/.venv/**",
    "**/__pycache__/**",
]


@dataclass(frozen=True)
class ProviderCredentials:
    """Credential bundle handed to the permission resolver and provider clients."""

    github_token: str | None = None
    github_api_url: str = "https://api.github.com"
    gitlab_token: str | None = None
    gitlab_url: str = "https://gitlab.com"


class OrchestratorSettings(BaseSettings):
    """Gitsmith orchestrator settings.

    All fields are read from environment variables with the ``GITSMITH_`` prefix.
    For example, ``GITSMITH_LOG_LEVEL=DEBUG`` maps to ``log_level``.
    """

    model_config = SettingsConfigDict(
        env_prefix="GITSMITH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"
    log_json: bool = False
    """Emit one JSON object per log line instead of the coloured text format."""

    # -- Data storage ----------------------------------------------------------
    data_root: str = "./data"
    """Root directory for the job store and the content cache."""

    workspace_base: str | None = None
    """Directory holding checkouts and the workspace index.

    Defaults to ``{data_root}/workspaces``.
    """

    # -- Server ----------------------------------------------------------------
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8000
    auth_token: str | None = None
    """Bearer token for API access.  Requests are not checked when unset."""

    # -- Git -------------------------------------------------------------------
    git_timeout_seconds: float = 300
    clone_depth: int = 1
    clone_single_branch: bool = True

    # -- Edit collaborator -----------------------------------------------------
    assistant_command: str = "claude"
    assistant_extra_args: list[str] = Field(default_factory=list)
    assistant_timeout_seconds: float = 3600

    # -- Queue -----------------------------------------------------------------
    worker_poll_interval: float = 2.0
    worker_shutdown_timeout: float = 30.0
    callback_secret: SecretStr | None = None
    """HMAC key used to sign job completion callbacks."""

    # -- Content cache ---------------------------------------------------------
    cache_expiry_days: float = 7
    cache_max_bytes: int = 100 * 1024 * 1024
    cache_include_patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_INCLUDE_PATTERNS))
    cache_exclude_patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS))
    cache_tree_max_depth: int = 4

    # -- Workspaces ------------------------------------------------------------
    workspace_max_age_hours: float = 168

    # -- Providers -------------------------------------------------------------
    github_token: SecretStr | None = None
    github_api_url: str = "https://api.github.com"
    gitlab_token: SecretStr | None = None
    gitlab_url: str = "https://gitlab.com"

    # -- Helpers ---------------------------------------------------------------

    def resolve_workspace_base(self) -> Path:
        if self.workspace_base:
            return Path(self.workspace_base)
        return Path(self.data_root) / "workspaces"

    def provider_credentials(self) -> ProviderCredentials:
        return ProviderCredentials(
            github_token=self.github_token.get_secret_value() if self.github_token else None,
            github_api_url=self.github_api_url,
            gitlab_token=self.gitlab_token.get_secret_value() if self.gitlab_token else None,
            gitlab_url=self.gitlab_url,
        )


def get_settings() -> OrchestratorSettings:
    """Return a cached settings instance.

    Reads from environment variables and ``.env`` on first call, then returns
    the same object.  Call ``_get_settings_cached.cache_clear()`` in tests to
    force a re-read after overriding env vars.
    """
    return _get_settings_cached()


def _get_settings_cached() -> OrchestratorSettings:
    """Inner function wrapped by lru_cache (allows type-safe cache_clear)."""
    return OrchestratorSettings()


from functools import lru_cache  # noqa: E402

_get_settings_cached = lru_cache(maxsize=1)(_get_settings_cached)
