"""Unified configuration schema for histsync.

Defines Pydantic models for the YAML config file, with dedicated sections
for git credentials, sync settings and logging.

Usage:
    from histsync.config_schema import UnifiedConfig, build_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class GitConfig(BaseModel):
    """Remote repository credentials.

    All fields are optional: the ``GIT_USERNAME``/``GIT_TOKEN``/``GIT_REPO``
    environment variables can supply them at runtime instead.
    """

    username: str | None = Field(default=None, description="Git username")
    token: str | None = Field(
        default=None, description="Personal access token"
    )
    repo: str | None = Field(
        default=None,
        description="Remote locator, e.g. github.com/me/history.git",
    )

    model_config = {"frozen": True}

    def is_complete(self) -> bool:
        """True when username, token and repo are all non-empty."""
        return all(
            value and value.strip()
            for value in (self.username, self.token, self.repo)
        )


class SyncSettings(BaseModel):
    """Engine settings.  Unset paths fall back to platform defaults."""

    history_file: str | None = Field(
        default=None, description="Local shell history file"
    )
    repo_dir: str | None = Field(
        default=None, description="Working directory of the sync repository"
    )
    tracked_file: str | None = Field(
        default=None,
        description="File name of the log inside the repository",
    )
    branch: str = Field(default="main", description="Branch to sync")
    fetch_timeout: float = Field(
        default=30.0, gt=0, le=600, description="Fetch timeout (seconds)"
    )
    push_timeout: float = Field(
        default=30.0, gt=0, le=600, description="Push timeout (seconds)"
    )
    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per network operation (1-10)",
    )
    backoff_base: float = Field(
        default=1.0, ge=0, description="First retry delay (seconds)"
    )
    backoff_max: float = Field(
        default=30.0, ge=0, description="Maximum retry delay (seconds)"
    )
    max_push_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Re-fetch/re-merge rounds after a rejected push (1-10)",
    )
    lock_timeout: float = Field(
        default=0.0,
        ge=0,
        description="Seconds to wait for a running cycle to finish",
    )
    author_email: str | None = Field(
        default=None, description="Commit author email"
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has defaults, so ``UnifiedConfig()`` (zero-config) is
    always valid.
    """

    git: GitConfig = Field(default_factory=GitConfig)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Missing sections get defaults.  A section explicitly set to ``null`` in
    YAML is treated as missing.

    Raises:
        pydantic.ValidationError: If a value is out of range or mistyped.
    """
    if not raw_data:
        return UnifiedConfig()

    cleaned = {k: v for k, v in raw_data.items() if v is not None}
    return UnifiedConfig(**cleaned)
