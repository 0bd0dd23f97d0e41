"""
Hierarchical configuration loader for histsync.

Provides convention-based config file discovery, env var interpolation, and
hierarchical merge with "first found wins" semantics per top-level section.

Usage:
    from histsync.config_loader import load_hierarchical_config

    config = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# 1. Env var interpolation
# ---------------------------------------------------------------------------

# Matches ${VAR} and ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Replace ``${VAR}`` and ``${VAR:-default}`` patterns with env values.

    * ``${VAR}`` is replaced with ``os.environ.get(VAR, "")``.
    * ``${VAR:-default}`` uses *default* when VAR is unset or empty.
    * Literal ``${`` with no closing ``}`` is left untouched.
    """

    def _replace(match: re.Match) -> str:
        env_val = os.environ.get(match.group(1))
        if env_val:
            return env_val
        return match.group(2) or ""

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _interpolate_recursive(obj: Any) -> Any:
    """Walk a nested dict/list and interpolate env vars in all strings."""
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _interpolate_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_interpolate_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# 2. Convention-based file discovery
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Return existing config file paths in precedence order (highest first).

    Search order:
        1. ``HISTSYNC_CONFIG`` env var (explicit single path).
        2. ``~/.config/histsync/config.yml``
        3. ``~/.config/histsync/config.yaml`` (alternate extension)
        4. ``~/.config/config.yaml`` (location used by earlier releases)

    Only paths that exist on disk are returned.
    """
    candidates: list[Path] = []

    env_path = os.environ.get("HISTSYNC_CONFIG")
    if env_path:
        candidates.append(Path(env_path).expanduser().resolve())

    config_home = Path.home() / ".config"
    candidates.append(config_home / "histsync" / "config.yml")
    candidates.append(config_home / "histsync" / "config.yaml")
    candidates.append(config_home / "config.yaml")

    return [p for p in candidates if p.exists()]


def load_config_file(path: Path) -> dict[str, Any]:
    """Load a single YAML config file with env var interpolation.

    Returns an empty dict for an empty file.

    Raises:
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the document root is not a mapping.
    """
    with open(path, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(
            f"Config file {path} must contain a mapping, "
            f"got {type(data).__name__}"
        )
    return _interpolate_recursive(data)


# ---------------------------------------------------------------------------
# 2a. Config bootstrapping
# ---------------------------------------------------------------------------

_STARTER_CONFIG = """\
# histsync configuration
#
# Credentials can also be set via environment variables
# (all three must be set to take effect):
#   GIT_USERNAME, GIT_TOKEN, GIT_REPO
#
# git:
#   username: octocat
#   token: ${HISTSYNC_TOKEN}
#   repo: github.com/octocat/shell-history.git
#
# sync:
#   history_file: ~/.bash_history
#   repo_dir: ~/.local/share/histsync/repo
#   branch: main
#   fetch_timeout: 30
#   push_timeout: 30
#   max_attempts: 3
#   max_push_attempts: 3
#
# logging:
#   level: INFO
#   file: null
"""


def default_config_path() -> Path:
    """Return the path new config files are created at."""
    return Path.home() / ".config" / "histsync" / "config.yml"


def ensure_config(target: Path | None = None) -> Path:
    """Ensure a config file exists, creating a commented starter if needed.

    If a config file already exists (per ``discover_config_files()``),
    return its path without modification.

    Args:
        target: Explicit path to create.  Defaults to
            ``default_config_path()``.

    Returns:
        Path to the config file (existing or newly created).
    """
    existing = discover_config_files()
    if existing:
        logger.debug("Config file already exists: %s", existing[0])
        return existing[0]

    config_path = target or default_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    config_path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", config_path)

    return config_path


# ---------------------------------------------------------------------------
# 3. Hierarchical merge
# ---------------------------------------------------------------------------


def load_hierarchical_config(
    explicit_path: Path | None = None,
) -> dict[str, Any]:
    """Load and merge all discovered config files.

    Merge strategy:
        Files are loaded from lowest precedence to highest.  Each file's
        top-level keys **replace** (not deep-merge) those from earlier
        files.

    Args:
        explicit_path: Load only this file instead of discovering.

    Returns an empty dict when no config files exist (zero-config).
    """
    if explicit_path is not None:
        paths = [explicit_path]
    else:
        paths = discover_config_files()

    if not paths:
        logger.debug("No config files found, using zero-config defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        try:
            data = load_config_file(path)
        except Exception:
            logger.exception("Failed to load config file %s", path)
            raise
        merged.update(data)

    return merged
