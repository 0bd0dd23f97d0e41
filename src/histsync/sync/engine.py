"""Core sync engine that runs one fetch / merge / commit / push cycle.

The ``SyncEngine`` ties together credentials, repository, merger and state
into a complete cycle.  It:

1. Takes the single-flight lock for the repository directory.
2. Resolves the credential.
3. Opens (or initialises) the repository, attaches ``origin``, fetches.
4. Reads the local log and the remote log and merges them.
5. Decides which side, if any, needs the merged log.
6. Publishes: writes the tracked file, commits and pushes, re-merging after
   a rejected push up to ``max_push_attempts`` rounds.
7. Re-reads the local file, keeps lines the shell appended meanwhile
   (publishing them in another round while rounds remain), writes it and
   records the agreed snapshot.
8. Builds and returns a ``SyncReport``.

Errors never escape ``run()``: every ``HistSyncError`` rolls back the
pending publish and becomes a failed report carrying its ``ErrorKind``.
"""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass
from datetime import datetime, timezone

from histsync.config import SyncConfig
from histsync.file_handler import read_log, render_log, write_log

from .credentials import CredentialResolver, default_resolver
from .errors import HistSyncError, PushConflictError, RepositoryError
from .lock import repository_lock
from .merger import local_only, merge
from .models import Credential, SyncPhase, SyncReport
from .repository import RepoCheckpoint, RepositoryHandle, RepositoryManager
from .retry import RetryPolicy
from .state import SyncState

logger = logging.getLogger(__name__)


def commit_message() -> str:
    return f"Sync shell history from {socket.gethostname()}"


def build_repository_manager(config: SyncConfig) -> RepositoryManager:
    """Repository manager wired with the retry policy from *config*."""
    policy = RetryPolicy(
        max_attempts=config.max_attempts,
        base_delay=config.backoff_base,
        max_delay=config.backoff_max,
    )
    return RepositoryManager(
        branch=config.branch,
        tracked_file=config.tracked_file,
        fetch_timeout=config.fetch_timeout,
        push_timeout=config.push_timeout,
        retry_policy=policy,
        author_email=config.author_email,
    )


@dataclass
class _Progress:
    """What a cycle has done so far; turned into the report at the end."""

    changed: bool = False
    local_written: bool = False
    remote_written: bool = False
    added_to_local: int = 0
    added_to_remote: int = 0
    commit: str | None = None
    push_conflicts: int = 0


class SyncEngine:
    """Run sync cycles for one history file and repository.

    Args:
        config: Resolved runtime configuration.
        resolver: Credential resolver.  Defaults to environment then the
            YAML config file.
        repository: Git layer.  Defaults to a GitPython-backed
            ``RepositoryManager`` built from *config*.
        state: Snapshot store.  Defaults to the state file under ``.git``.
    """

    def __init__(
        self,
        config: SyncConfig,
        resolver: CredentialResolver | None = None,
        repository: RepositoryManager | None = None,
        state: SyncState | None = None,
    ) -> None:
        self.config = config
        self.resolver = resolver or default_resolver()
        self.repository = repository or build_repository_manager(config)
        self.state_store = state or SyncState(config.state_dir)
        self.phase = SyncPhase.IDLE

    @property
    def tracks_in_place(self) -> bool:
        """True when the history file is the tracked file itself."""
        return (
            self.config.history_file.resolve()
            == self.config.tracked_path.resolve()
        )

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def run(self) -> SyncReport:
        """Execute one sync cycle.

        Returns:
            A ``SyncReport``; failures are reported, not raised.
        """
        started_at = datetime.now(timezone.utc).isoformat()
        self.phase = SyncPhase.IDLE
        progress = _Progress()
        retries_before = self.repository.retries

        try:
            with repository_lock(
                self.config.repo_dir, timeout=self.config.lock_timeout
            ):
                self._cycle(progress)
        except HistSyncError as exc:
            failed_phase = self.phase
            self.phase = SyncPhase.ERROR
            logger.error(
                "Sync failed during %s (%s): %s",
                failed_phase.value,
                exc.kind.value,
                exc,
            )
            return SyncReport(
                changed=progress.local_written or progress.remote_written,
                error=exc.kind,
                error_message=str(exc),
                retries_used=self._retries(retries_before, progress),
                phase=failed_phase,
                local_written=progress.local_written,
                remote_written=progress.remote_written,
                commit=progress.commit,
                started_at=started_at,
                completed_at=datetime.now(timezone.utc).isoformat(),
            )

        self.phase = SyncPhase.IDLE
        return SyncReport(
            changed=progress.changed,
            retries_used=self._retries(retries_before, progress),
            phase=SyncPhase.IDLE,
            local_written=progress.local_written,
            remote_written=progress.remote_written,
            added_to_local=progress.added_to_local,
            added_to_remote=progress.added_to_remote,
            commit=progress.commit,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc).isoformat(),
        )

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def _cycle(self, progress: _Progress) -> None:
        self.phase = SyncPhase.RESOLVING
        credential = self.resolver.resolve()

        handle = self.repository.open_or_init(self.config.repo_dir)
        self.repository.ensure_remote(handle, credential.locator, credential)

        self.phase = SyncPhase.FETCHING
        self.repository.fetch(handle, credential)

        if self.tracks_in_place:
            logger.debug(
                "History file %s is tracked in place",
                self.config.history_file,
            )
        state = self.state_store.load()
        max_rounds = self.config.max_push_attempts

        for round_no in range(1, max_rounds + 1):
            local = self._read_local()
            remote = self.repository.read_remote_log(handle)

            self.phase = SyncPhase.MERGING
            merged = merge(local, remote)

            self.phase = SyncPhase.DECIDING
            local_changed = merged != local
            remote_changed = merged != remote
            progress.added_to_local = max(
                progress.added_to_local, len(local_only(merged, local))
            )

            if not local_changed and not remote_changed:
                logger.info("History already in sync (%d lines)", len(merged))
                snapshot = SyncState.content_hash(render_log(merged))
                if state.get("snapshot_hash") != snapshot:
                    logger.debug(
                        "Stored snapshot is stale; it is refreshed by the "
                        "next cycle that writes"
                    )
                return

            commit = None
            if remote_changed:
                try:
                    commit = self._publish(handle, credential, merged)
                except PushConflictError:
                    progress.push_conflicts += 1
                    if round_no >= max_rounds:
                        logger.warning(
                            "Push still rejected after %d round(s); giving up",
                            round_no,
                        )
                        raise
                    logger.warning(
                        "Push rejected, remote moved; re-fetching "
                        "(round %d/%d)",
                        round_no + 1,
                        max_rounds,
                    )
                    self.phase = SyncPhase.FETCHING
                    self.repository.fetch(handle, credential)
                    continue

                progress.commit = commit
                progress.remote_written = True
                progress.changed = True
                progress.added_to_remote += len(local_only(merged, remote))

            if local_changed:
                progress.local_written = True
                progress.changed = True

            if not self._settle_local(merged, round_no < max_rounds):
                logger.info(
                    "History file grew during the cycle; publishing the "
                    "new line(s) (round %d/%d)",
                    round_no + 1,
                    max_rounds,
                )
                continue

            self._record_state(state, merged, commit)
            if commit is None:
                logger.info(
                    "Local history updated: %d new line(s) from remote",
                    progress.added_to_local,
                )
            else:
                logger.info(
                    "History synced: +%d local, +%d remote (%s)",
                    progress.added_to_local,
                    progress.added_to_remote,
                    commit[:10],
                )
            return

    def _publish(
        self,
        handle: RepositoryHandle,
        credential: Credential,
        merged: list[str],
    ) -> str:
        """Write, commit and push *merged*; roll back on any failure.

        Returns:
            SHA of the pushed commit.
        """
        checkpoint = self.repository.checkpoint(handle)
        try:
            try:
                self.repository.write_tracked(handle, merged)
            except OSError as exc:
                raise RepositoryError(
                    f"Cannot write tracked file: {exc}"
                ) from exc
            self.phase = SyncPhase.COMMITTING
            sha = self.repository.commit(
                handle, commit_message(), credential.identity
            )
            self.phase = SyncPhase.PUSHING
            self.repository.push(handle, credential)
        except HistSyncError:
            self._rollback(handle, checkpoint)
            raise
        return sha

    def _rollback(
        self, handle: RepositoryHandle, checkpoint: RepoCheckpoint
    ) -> None:
        try:
            self.repository.restore(handle, checkpoint)
        except OSError as exc:
            raise RepositoryError(
                f"Failed to restore tracked file: {exc}"
            ) from exc

    # ------------------------------------------------------------------
    # Local file
    # ------------------------------------------------------------------

    def _read_local(self) -> list[str]:
        try:
            return read_log(self.config.history_file)
        except OSError as exc:
            raise RepositoryError(
                f"Cannot read history file {self.config.history_file}: {exc}"
            ) from exc

    def _settle_local(self, merged: list[str], can_retry: bool) -> bool:
        """Bring the history file up to *merged* without dropping lines.

        The file is re-read first, since the shell keeps appending while a
        cycle runs.  Lines it gained that *merged* lacks are kept after
        *merged*.  Returns False, leaving the file alone, when there are
        such lines and *can_retry* allows another round to publish them.
        """
        fresh = self._read_local()
        appended = local_only(fresh, merged)
        if appended and can_retry:
            return False
        final = merge(fresh, merged)
        if final != fresh:
            self._write_local(final)
        if appended:
            logger.info(
                "%d line(s) appended during the cycle will be pushed by "
                "the next cycle",
                len(appended),
            )
        return True

    def _record_state(
        self, state: dict, merged: list[str], commit: str | None
    ) -> None:
        # Advisory only: the files and the remote already agree here.
        try:
            self.state_store.record(state, merged, commit)
        except OSError as exc:
            logger.warning(
                "Could not save sync state %s: %s",
                self.state_store.path,
                exc,
            )

    def _write_local(self, lines: list[str]) -> None:
        try:
            write_log(self.config.history_file, lines)
        except OSError as exc:
            raise RepositoryError(
                f"Cannot write history file {self.config.history_file}: {exc}"
            ) from exc

    def _retries(self, before: int, progress: _Progress) -> int:
        return (self.repository.retries - before) + progress.push_conflicts
