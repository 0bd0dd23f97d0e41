"""Error taxonomy for a sync cycle.

Every failure the engine can report is a ``HistSyncError`` subclass that
carries an ``ErrorKind``.  The kind decides whether the condition is worth
retrying and which exit code the CLI surfaces.
"""

from __future__ import annotations

from .models import ErrorKind

# Exit codes surfaced by the CLI
EXIT_OK = 0
EXIT_TRANSIENT = 1
EXIT_FATAL = 2

_RETRYABLE_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.PUSH_CONFLICT})


class HistSyncError(Exception):
    """Base class for all sync cycle failures."""

    kind: ErrorKind = ErrorKind.REPOSITORY

    @property
    def retryable(self) -> bool:
        return self.kind in _RETRYABLE_KINDS


class CredentialError(HistSyncError):
    """No provider yielded a complete identity/secret/locator triple."""

    kind = ErrorKind.CREDENTIAL


class NetworkError(HistSyncError):
    """Transient fetch/push failure, including timeouts.

    ``attempts`` is filled in by the retry policy once the budget is spent.
    """

    kind = ErrorKind.NETWORK

    def __init__(self, message: str, attempts: int = 1) -> None:
        super().__init__(message)
        self.attempts = attempts


class AuthError(HistSyncError):
    """The remote rejected the credentials."""

    kind = ErrorKind.AUTH


class RepositoryError(HistSyncError):
    """Local repository is corrupt, locked, or cannot be initialised."""

    kind = ErrorKind.REPOSITORY


class PushConflictError(HistSyncError):
    """The remote branch advanced between fetch and push."""

    kind = ErrorKind.PUSH_CONFLICT


def exit_code_for(kind: ErrorKind | None) -> int:
    """Map an error kind to the CLI exit code (``None`` means success)."""
    if kind is None:
        return EXIT_OK
    if kind in _RETRYABLE_KINDS:
        return EXIT_TRANSIENT
    return EXIT_FATAL
