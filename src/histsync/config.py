"""Runtime configuration for a sync cycle.

Reads engine settings from CLI args, environment variables, .env files, and
YAML config file fallbacks, and produces one ``SyncConfig`` that is passed
explicitly to every component.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    HISTSYNC_HISTORY_FILE: Local shell history file
    HISTSYNC_REPO_DIR: Working directory of the sync repository
    HISTSYNC_TRACKED_FILE: File name of the log inside the repository
    HISTSYNC_BRANCH: Branch to sync (default: main)
    HISTSYNC_FETCH_TIMEOUT: Fetch timeout in seconds (default: 30)
    HISTSYNC_PUSH_TIMEOUT: Push timeout in seconds (default: 30)
    HISTSYNC_MAX_ATTEMPTS: Attempts per network operation (default: 3)
    HISTSYNC_MAX_PUSH_ATTEMPTS: Rounds after a rejected push (default: 3)

Credentials (GIT_USERNAME, GIT_TOKEN, GIT_REPO) are not part of this
config; they are resolved per cycle by ``histsync.sync.credentials``.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, TypeVar

from .paths import default_history_file, default_repo_dir

N = TypeVar("N", int, float)
logger = logging.getLogger(__name__)


@dataclass
class SyncConfig:
    history_file: Path
    repo_dir: Path
    tracked_file: str
    branch: str = "main"
    fetch_timeout: float = 30.0
    push_timeout: float = 30.0
    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    max_push_attempts: int = 3
    lock_timeout: float = 0.0
    author_email: str | None = None
    debug: bool = False

    @property
    def tracked_path(self) -> Path:
        """Absolute path of the log inside the repository working tree."""
        return self.repo_dir / self.tracked_file

    @property
    def state_dir(self) -> Path:
        return self.repo_dir / ".git"


def validate_config(config: SyncConfig) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: SyncConfig instance to validate.

    Raises:
        ValueError: If the tracked file name, branch or limits are invalid.
    """
    tracked = config.tracked_file.strip()
    if not tracked:
        raise ValueError("Tracked file name cannot be empty")
    if (
        Path(tracked).is_absolute()
        or ".." in Path(tracked).parts
        or Path(tracked).parts[:1] == (".git",)
    ):
        raise ValueError(
            f"Invalid tracked file '{tracked}': must be a relative path "
            "inside the repository"
        )
    config.tracked_file = tracked

    branch = config.branch.strip()
    if not branch or any(c.isspace() for c in branch) or ".." in branch:
        raise ValueError(f"Invalid branch name '{config.branch}'")
    config.branch = branch

    if config.fetch_timeout <= 0 or config.push_timeout <= 0:
        raise ValueError("Timeouts must be greater than zero")
    if config.max_attempts < 1 or config.max_push_attempts < 1:
        raise ValueError("Attempt limits must be at least 1")

    if config.history_file.resolve() == config.tracked_path.resolve():
        logger.debug(
            "History file %s is tracked in place", config.history_file
        )


def _env_number(
    key: str,
    cast: Callable[[str], N],
    low: N,
    high: N,
    fallback: N,
) -> N:
    """Read a bounded number from env, or return *fallback* if unset."""
    raw = os.getenv(key)
    if raw is None:
        return fallback
    try:
        value = cast(raw)
    except ValueError:
        raise ValueError(
            f"Invalid {key} '{raw}': must be a number between {low} and {high}"
        ) from None
    if not (low <= value <= high):
        raise ValueError(
            f"Invalid {key} '{raw}': must be a number between {low} and {high}"
        )
    return value


def load_config(
    history_file: str | None = None,
    repo_dir: str | None = None,
    branch: str | None = None,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> SyncConfig:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        history_file: Override history file path.
        repo_dir: Override repository directory.
        branch: Override branch name.
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Dict of values from the YAML config ``sync``
            section.  Used when CLI arg and env var are both unset.

    Returns:
        Validated SyncConfig instance.

    Raises:
        ValueError: If a value is malformed or out of range.
    """
    fb = yaml_fallbacks or {}

    # --- Paths: CLI > env > YAML > platform default ---

    history = (
        history_file
        or os.getenv("HISTSYNC_HISTORY_FILE")
        or fb.get("history_file")
    )
    history_path = (
        Path(history).expanduser() if history else default_history_file()
    )

    repo = repo_dir or os.getenv("HISTSYNC_REPO_DIR") or fb.get("repo_dir")
    repo_path = Path(repo).expanduser() if repo else default_repo_dir()

    tracked = (
        os.getenv("HISTSYNC_TRACKED_FILE")
        or fb.get("tracked_file")
        or history_path.name
    )

    final_branch = (
        branch or os.getenv("HISTSYNC_BRANCH") or fb.get("branch") or "main"
    )

    # --- Numeric fields: env > YAML > default ---

    fetch_timeout = _env_number(
        "HISTSYNC_FETCH_TIMEOUT",
        float,
        1.0,
        600.0,
        float(fb.get("fetch_timeout", 30.0)),
    )
    push_timeout = _env_number(
        "HISTSYNC_PUSH_TIMEOUT",
        float,
        1.0,
        600.0,
        float(fb.get("push_timeout", 30.0)),
    )
    max_attempts = _env_number(
        "HISTSYNC_MAX_ATTEMPTS", int, 1, 10, int(fb.get("max_attempts", 3))
    )
    max_push_attempts = _env_number(
        "HISTSYNC_MAX_PUSH_ATTEMPTS",
        int,
        1,
        10,
        int(fb.get("max_push_attempts", 3)),
    )

    config = SyncConfig(
        history_file=history_path,
        repo_dir=repo_path,
        tracked_file=tracked,
        branch=final_branch,
        fetch_timeout=fetch_timeout,
        push_timeout=push_timeout,
        max_attempts=max_attempts,
        backoff_base=float(fb.get("backoff_base", 1.0)),
        backoff_max=float(fb.get("backoff_max", 30.0)),
        max_push_attempts=max_push_attempts,
        lock_timeout=float(fb.get("lock_timeout", 0.0)),
        author_email=fb.get("author_email"),
        debug=debug,
    )

    validate_config(config)

    return config
