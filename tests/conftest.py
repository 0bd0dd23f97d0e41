"""Shared pytest fixtures for histsync tests."""

import shutil
from pathlib import Path

import pytest
from dotenv import load_dotenv

from histsync.config import SyncConfig
from histsync.sync.models import Credential, CredentialSource

load_dotenv()

_ISOLATED_VARS = (
    "GIT_USERNAME",
    "GIT_TOKEN",
    "GIT_REPO",
    "HISTSYNC_CONFIG",
    "HISTSYNC_HISTORY_FILE",
    "HISTSYNC_REPO_DIR",
    "HISTSYNC_TRACKED_FILE",
    "HISTSYNC_BRANCH",
    "HISTSYNC_FETCH_TIMEOUT",
    "HISTSYNC_PUSH_TIMEOUT",
    "HISTSYNC_MAX_ATTEMPTS",
    "HISTSYNC_MAX_PUSH_ATTEMPTS",
    "HISTFILE",
    "XDG_DATA_HOME",
    "LOG_LEVEL",
    "LOG_FILE",
)


def pytest_collection_modifyitems(config, items):
    """Skip real-git tests when git is not installed."""
    if shutil.which("git"):
        return
    skip_git = pytest.mark.skip(reason="git executable not found on PATH")
    for item in items:
        if item.get_closest_marker("git") is not None:
            item.add_marker(skip_git)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep the developer's credentials, config files and .env out of tests."""
    for name in _ISOLATED_VARS:
        monkeypatch.delenv(name, raising=False)
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    return home


@pytest.fixture
def credential():
    """A complete credential as resolved from the environment."""
    return Credential(
        identity="octocat",
        secret="ghp_testtoken",
        locator="github.com/octocat/history.git",
        source=CredentialSource.ENVIRONMENT,
    )


@pytest.fixture
def sync_config(tmp_path: Path):
    """SyncConfig with the history file and repository under tmp_path."""
    return SyncConfig(
        history_file=tmp_path / "home" / ".bash_history",
        repo_dir=tmp_path / "sync" / "repo",
        tracked_file="history.txt",
    )
