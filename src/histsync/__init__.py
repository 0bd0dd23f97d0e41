"""Keep a shell history file in sync across machines through a git remote."""

__version__ = "0.1.0"
