"""Platform default locations for the history file and sync repository.

Only used when neither the CLI, the environment nor the config file names a
path.  On Windows the repository lives in the PSReadLine directory so the
history file itself is the tracked file.
"""

import os
import sys
from pathlib import Path

PSREADLINE_HISTORY = "ConsoleHost_history.txt"


def home_dir() -> Path:
    """Return the user's home directory.

    Windows prefers ``USERPROFILE`` then ``HOMEPATH``; elsewhere ``HOME``.
    """
    if sys.platform == "win32":
        home = os.environ.get("USERPROFILE") or os.environ.get("HOMEPATH")
        if home:
            return Path(home)
    return Path.home()


def _psreadline_dir() -> Path | None:
    appdata = os.environ.get("APPDATA")
    if not appdata:
        return None
    return Path(appdata) / "Microsoft" / "Windows" / "PowerShell" / "PSReadLine"


def default_history_file() -> Path:
    """Default shell history file for this platform."""
    if sys.platform == "win32":
        psreadline = _psreadline_dir()
        if psreadline is not None:
            return psreadline / PSREADLINE_HISTORY
    histfile = os.environ.get("HISTFILE")
    if histfile:
        return Path(histfile).expanduser()
    return home_dir() / ".bash_history"


def default_repo_dir() -> Path:
    """Default working directory of the sync repository."""
    if sys.platform == "win32":
        psreadline = _psreadline_dir()
        if psreadline is not None:
            return psreadline
    data_home = os.environ.get("XDG_DATA_HOME")
    base = Path(data_home) if data_home else home_dir() / ".local" / "share"
    return base / "histsync" / "repo"
