"""Pydantic models for the history sync engine.

Defines the data contracts passed between sync modules:

- ``ErrorKind``: Category of a failed cycle.
- ``SyncPhase``: Steps of the per-cycle state machine.
- ``CredentialSource`` / ``Credential``: Resolved remote identity.
- ``FetchResult`` / ``PushResult``: Outcome of remote operations.
- ``SyncReport``: Outcome of one full cycle.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, SecretStr


class ErrorKind(str, Enum):
    """Failure categories a cycle can end with."""

    CREDENTIAL = "credential"
    NETWORK = "network"
    AUTH = "auth"
    REPOSITORY = "repository"
    PUSH_CONFLICT = "push_conflict"


class SyncPhase(str, Enum):
    """States of one sync cycle."""

    IDLE = "idle"
    RESOLVING = "resolving"
    FETCHING = "fetching"
    MERGING = "merging"
    DECIDING = "deciding"
    COMMITTING = "committing"
    PUSHING = "pushing"
    ERROR = "error"


class CredentialSource(str, Enum):
    """Where a credential came from."""

    ENVIRONMENT = "environment"
    CONFIG_FILE = "config-file"


class Credential(BaseModel):
    """Authenticated identity for remote operations.

    Attributes:
        identity: Git username.
        secret: Personal access token (masked in repr and logs).
        locator: Remote repository locator, e.g. ``github.com/me/hist.git``.
        source: Provider that produced this credential.
    """

    identity: str
    secret: SecretStr
    locator: str
    source: CredentialSource

    model_config = {"frozen": True}


class FetchResult(BaseModel):
    """Result of fetching the remote branch.

    Attributes:
        updated: True if the remote head moved during this fetch.
        head: Commit SHA of the remote branch, ``None`` if it does not exist.
        attempts: Number of attempts the fetch took.
    """

    updated: bool
    head: str | None = None
    attempts: int = 1

    model_config = {"frozen": True}


class PushResult(BaseModel):
    """Result of a successful commit and push."""

    commit: str
    attempts: int = 1

    model_config = {"frozen": True}


class SyncReport(BaseModel):
    """Outcome of a single sync cycle.

    Attributes:
        changed: True if the local file or the repository was updated.
        error: Failure category, ``None`` on success.
        retries_used: Network retries plus push-conflict retries.
        error_message: Human-readable failure detail.
        phase: Phase in which the cycle stopped.
        local_written: True if the local history file was rewritten.
        remote_written: True if a commit was pushed.
        added_to_local: Number of lines the local file gained.
        added_to_remote: Number of lines the repository gained.
        commit: SHA of the pushed commit, if any.
        started_at: ISO 8601 timestamp when the cycle started.
        completed_at: ISO 8601 timestamp when the cycle ended.
    """

    changed: bool = False
    error: ErrorKind | None = None
    retries_used: int = 0
    error_message: str | None = None
    phase: SyncPhase = SyncPhase.IDLE
    local_written: bool = False
    remote_written: bool = False
    added_to_local: int = 0
    added_to_remote: int = 0
    commit: str | None = None
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def exit_code(self) -> int:
        """Process exit code for this outcome (0, 1 or 2)."""
        from .errors import exit_code_for

        return exit_code_for(self.error)

    def summary(self) -> str:
        """One-line summary of the cycle."""
        if self.error is not None:
            return (
                f"Sync failed during {self.phase.value} "
                f"({self.error.value}): {self.error_message}"
            )
        if not self.changed:
            return "History already in sync"
        return (
            f"History synced: +{self.added_to_local} local, "
            f"+{self.added_to_remote} remote"
        )
