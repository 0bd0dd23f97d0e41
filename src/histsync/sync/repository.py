"""Git repository that carries the shared history log.

``RepositoryManager`` owns the on-disk repository: open or initialise it,
attach the ``origin`` remote, fetch, commit and push.  All git calls go
through GitPython's command wrapper so that each one can carry its own
environment and timeout.

Credentials never touch ``.git/config``.  Each fetch/push runs with a
one-shot ``credential.helper`` injected through ``GIT_CONFIG_COUNT`` that
echoes the identity and token from the child environment, and with
``GIT_TERMINAL_PROMPT=0`` so git fails instead of prompting.
"""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from urllib.parse import quote

from git import Repo
from git.exc import (
    GitCommandError,
    InvalidGitRepositoryError,
    NoSuchPathError,
)

from histsync.file_handler import (
    parse_log,
    restore_bytes,
    snapshot_bytes,
    write_log,
)

from .errors import (
    AuthError,
    HistSyncError,
    NetworkError,
    PushConflictError,
    RepositoryError,
)
from .models import Credential, FetchResult, PushResult
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

REMOTE_NAME = "origin"

_CREDENTIAL_HELPER = (
    '!f() { test "$1" = get && '
    'echo "username=${HISTSYNC_GIT_USERNAME}" && '
    'echo "password=${HISTSYNC_GIT_TOKEN}"; }; f'
)

# Substrings of git output (LC_ALL=C) used to classify failures.
# Checked in this order: auth, lock, conflict, network.
_AUTH_TOKENS = (
    "authentication failed",
    "invalid username or password",
    "could not read username",
    "could not read password",
    "returned error: 401",
    "returned error: 403",
    "permission denied",
    "access denied",
    "bad credentials",
)
_LOCK_TOKENS = (
    "index.lock",
    ".lock': file exists",
)
_CONFLICT_TOKENS = (
    "[rejected]",
    "non-fast-forward",
    "fetch first",
    "updates were rejected",
    "cannot lock ref",
)
_NETWORK_TOKENS = (
    "timeout",
    "timed out",
    "could not resolve host",
    "connection refused",
    "connection reset",
    "failed to connect",
    "couldn't connect",
    "network is unreachable",
    "unable to access",
    "early eof",
    "remote end hung up",
    "could not read from remote repository",
    "operation too slow",
)


def classify_git_error(exc: GitCommandError, operation: str) -> HistSyncError:
    """Translate a ``GitCommandError`` into the sync error taxonomy.

    Anything not recognised as auth, conflict or network trouble is treated
    as a fatal ``RepositoryError``.
    """
    text = f"{exc.stderr or ''}\n{exc.stdout or ''}\n{exc}".lower()
    detail = str(exc.stderr or "").strip() or str(exc)
    message = f"git {operation} failed: {detail}"

    if any(token in text for token in _AUTH_TOKENS):
        return AuthError(message)
    if any(token in text for token in _LOCK_TOKENS):
        return RepositoryError(message)
    if any(token in text for token in _CONFLICT_TOKENS):
        return PushConflictError(message)
    if any(token in text for token in _NETWORK_TOKENS):
        return NetworkError(message)
    return RepositoryError(message)


def git_environment(credential: Credential | None) -> dict[str, str]:
    """Environment for a remote git command authenticated as *credential*."""
    env = {"GIT_TERMINAL_PROMPT": "0", "GCM_INTERACTIVE": "never"}
    if credential is None:
        return env
    env.update(
        {
            "HISTSYNC_GIT_USERNAME": credential.identity,
            "HISTSYNC_GIT_TOKEN": credential.secret.get_secret_value(),
            # An empty helper resets any helpers from user/system config.
            "GIT_CONFIG_COUNT": "2",
            "GIT_CONFIG_KEY_0": "credential.helper",
            "GIT_CONFIG_VALUE_0": "",
            "GIT_CONFIG_KEY_1": "credential.helper",
            "GIT_CONFIG_VALUE_1": _CREDENTIAL_HELPER,
        }
    )
    return env


def remote_url(locator: str, identity: str) -> str:
    """Build the ``origin`` URL from a locator.

    ``github.com/me/hist.git`` becomes ``https://me@github.com/me/hist.git``.
    Locators that already carry a scheme, scp-style SSH locators and local
    paths are used verbatim.  The token is never part of the URL.
    """
    locator = locator.strip()
    if "://" in locator or locator.startswith(("/", ".", "~")):
        return locator
    host = locator.split("/", 1)[0]
    if "@" in host and ":" in locator:
        return locator
    return f"https://{quote(identity, safe='')}@{locator}"


@dataclass
class RepositoryHandle:
    """An opened repository for the duration of one cycle.

    Attributes:
        path: Working tree directory.
        repo: GitPython repository object.
        remote_head: Remote branch commit seen by the last fetch.
    """

    path: Path
    repo: Repo
    remote_head: str | None = None

    @property
    def has_origin(self) -> bool:
        return any(r.name == REMOTE_NAME for r in self.repo.remotes)


@dataclass(frozen=True)
class RepoCheckpoint:
    """Branch head, HEAD target and tracked file bytes before a publish."""

    head_ref: str
    head: str | None
    tracked: bytes | None


class RepositoryManager:
    """Open, fetch, commit and push the sync repository.

    Args:
        branch: Branch holding the shared log.
        tracked_file: Path of the log relative to the working tree.
        fetch_timeout: Seconds before a fetch is killed.
        push_timeout: Seconds before a push is killed.
        retry_policy: Backoff applied to fetch and push.
        author_email: Commit author email; defaults to
            ``<identity>@<hostname>``.
    """

    def __init__(
        self,
        branch: str = "main",
        tracked_file: str = "history.txt",
        fetch_timeout: float = 30.0,
        push_timeout: float = 30.0,
        retry_policy: RetryPolicy | None = None,
        author_email: str | None = None,
    ) -> None:
        self.branch = branch
        self.tracked_file = PurePosixPath(
            Path(tracked_file).as_posix()
        ).as_posix()
        self.fetch_timeout = fetch_timeout
        self.push_timeout = push_timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self.author_email = author_email
        self.retries = 0

    @property
    def branch_ref(self) -> str:
        return f"refs/heads/{self.branch}"

    @property
    def remote_ref(self) -> str:
        return f"refs/remotes/{REMOTE_NAME}/{self.branch}"

    def tracked_path(self, handle: RepositoryHandle) -> Path:
        return handle.path / self.tracked_file

    # ------------------------------------------------------------------
    # Open / remote
    # ------------------------------------------------------------------

    def open_or_init(self, path: Path) -> RepositoryHandle:
        """Open the repository at *path*, initialising it if absent.

        Idempotent: an existing repository is opened, never re-initialised.

        Raises:
            RepositoryError: If ``.git`` exists but is unreadable, the
                directory cannot be initialised, or git's index is locked.
        """
        path = Path(path)
        git_dir = path / ".git"
        try:
            if git_dir.exists():
                repo = Repo(path)
                repo.git.rev_parse("--git-dir")
            else:
                logger.info("Initialising new repository in %s", path)
                path.mkdir(parents=True, exist_ok=True)
                repo = Repo.init(path)
                repo.git.symbolic_ref("HEAD", self.branch_ref)
        except (InvalidGitRepositoryError, NoSuchPathError) as exc:
            raise RepositoryError(
                f"Repository at {path} is corrupt or unreadable: {exc}"
            ) from exc
        except (GitCommandError, OSError) as exc:
            raise RepositoryError(
                f"Cannot open or initialise repository at {path}: {exc}"
            ) from exc

        if (Path(repo.git_dir) / "index.lock").exists():
            raise RepositoryError(
                f"Repository at {path} is locked by another git process "
                "(index.lock present)"
            )
        return RepositoryHandle(path=path, repo=repo)

    def ensure_remote(
        self,
        handle: RepositoryHandle,
        locator: str,
        credential: Credential,
    ) -> RepositoryHandle:
        """Add ``origin`` if missing; an existing ``origin`` is left as is."""
        if handle.has_origin:
            logger.debug(
                "Remote '%s' already configured, leaving it untouched",
                REMOTE_NAME,
            )
            return handle

        url = remote_url(locator, credential.identity)
        try:
            handle.repo.create_remote(REMOTE_NAME, url)
        except GitCommandError as exc:
            raise RepositoryError(
                f"Failed to add remote '{REMOTE_NAME}': {exc}"
            ) from exc
        logger.info("Remote '%s' added: %s", REMOTE_NAME, url)
        return handle

    # ------------------------------------------------------------------
    # Fetch / read
    # ------------------------------------------------------------------

    def fetch(
        self, handle: RepositoryHandle, credential: Credential
    ) -> FetchResult:
        """Fetch the sync branch from ``origin``.

        A remote that is already up to date, or that has no sync branch
        yet, is a success.

        Raises:
            NetworkError: After the retry policy is exhausted.
            AuthError: On the first authentication failure.
            RepositoryError: For any other git failure.
        """
        before = self._resolve(handle.repo, self.remote_ref)
        refspec = f"+{self.branch_ref}:{self.remote_ref}"
        env = git_environment(credential)

        def _fetch_once() -> bool:
            try:
                handle.repo.git.fetch(
                    REMOTE_NAME,
                    refspec,
                    env=env,
                    kill_after_timeout=self.fetch_timeout,
                )
            except GitCommandError as exc:
                text = str(exc).lower()
                if "find remote ref" in text:
                    return False
                raise classify_git_error(exc, "fetch") from exc
            return True

        found, attempts = self.retry_policy.call(
            _fetch_once, on_retry=self._count_retry
        )
        if not found:
            logger.info(
                "Remote has no branch '%s' yet; treating it as empty",
                self.branch,
            )
            handle.remote_head = None
            return FetchResult(updated=False, head=None, attempts=attempts)

        head = self._resolve(handle.repo, self.remote_ref)
        handle.remote_head = head
        updated = head != before
        if updated:
            logger.info("Fetched remote branch '%s' at %s", self.branch, head)
        else:
            logger.info("Already up to date")
        return FetchResult(updated=updated, head=head, attempts=attempts)

    def read_remote_log(self, handle: RepositoryHandle) -> list[str]:
        """Lines of the tracked file at the last fetched remote head."""
        if handle.remote_head is None:
            return []
        try:
            content = handle.repo.git.show(
                f"{handle.remote_head}:{self.tracked_file}"
            )
        except GitCommandError as exc:
            text = str(exc).lower()
            if "does not exist in" in text or "but not in" in text:
                return []
            raise classify_git_error(exc, "show") from exc
        return parse_log(content)

    # ------------------------------------------------------------------
    # Write / commit / push
    # ------------------------------------------------------------------

    def write_tracked(
        self, handle: RepositoryHandle, lines: list[str]
    ) -> None:
        """Atomically replace the tracked file in the working tree."""
        write_log(self.tracked_path(handle), lines)

    def checkpoint(self, handle: RepositoryHandle) -> RepoCheckpoint:
        """Record what ``restore()`` needs to undo a publish attempt."""
        repo = handle.repo
        try:
            head_ref = repo.git.symbolic_ref("HEAD")
        except GitCommandError:
            head_ref = self.branch_ref
        return RepoCheckpoint(
            head_ref=head_ref,
            head=self._resolve(repo, head_ref),
            tracked=snapshot_bytes(self.tracked_path(handle)),
        )

    def restore(
        self, handle: RepositoryHandle, checkpoint: RepoCheckpoint
    ) -> None:
        """Put branch, index and tracked file back to *checkpoint*.

        Raises:
            RepositoryError: If git refuses to move the refs back.
        """
        repo = handle.repo
        try:
            if checkpoint.head is None:
                if self._resolve(repo, self.branch_ref) is not None:
                    repo.git.update_ref("-d", self.branch_ref)
                repo.git.symbolic_ref("HEAD", checkpoint.head_ref)
                repo.git.rm(
                    "--cached", "-f", "-q", "--ignore-unmatch", "--",
                    self.tracked_file,
                )
            else:
                repo.git.update_ref(checkpoint.head_ref, checkpoint.head)
                repo.git.symbolic_ref("HEAD", checkpoint.head_ref)
                repo.git.reset("-q", checkpoint.head)
        except GitCommandError as exc:
            raise RepositoryError(
                f"Failed to roll back repository: {exc}"
            ) from exc
        restore_bytes(self.tracked_path(handle), checkpoint.tracked)
        logger.info("Rolled back repository to %s", checkpoint.head or "empty")

    def commit(
        self, handle: RepositoryHandle, message: str, identity: str
    ) -> str:
        """Commit the tracked file on top of the fetched remote head.

        The branch is moved to the remote head first (index only, the
        working tree is not touched) so the push is a fast-forward.

        Returns:
            SHA of the new commit.
        """
        repo = handle.repo
        try:
            repo.git.symbolic_ref("HEAD", self.branch_ref)
            if handle.remote_head is not None:
                repo.git.update_ref(self.branch_ref, handle.remote_head)
                repo.git.reset("-q", handle.remote_head)
            repo.git.add("--", self.tracked_file)
            repo.git.commit(
                "-m", message, "--no-verify", env=self._author_env(identity)
            )
            sha = repo.git.rev_parse("HEAD")
        except GitCommandError as exc:
            raise classify_git_error(exc, "commit") from exc
        logger.info("Committed %s: %s", sha[:10], message)
        return sha

    def push(self, handle: RepositoryHandle, credential: Credential) -> int:
        """Push ``HEAD`` to the sync branch.  Never forces.

        Returns:
            Number of attempts used.

        Raises:
            PushConflictError: The remote branch moved since the fetch.
            NetworkError: After the retry policy is exhausted.
            AuthError: On the first authentication failure.
        """
        env = git_environment(credential)
        refspec = f"HEAD:{self.branch_ref}"

        def _push_once() -> None:
            try:
                handle.repo.git.push(
                    REMOTE_NAME,
                    refspec,
                    env=env,
                    kill_after_timeout=self.push_timeout,
                )
            except GitCommandError as exc:
                raise classify_git_error(exc, "push") from exc

        _, attempts = self.retry_policy.call(
            _push_once, on_retry=self._count_retry
        )
        try:
            handle.repo.git.update_ref(self.remote_ref, "HEAD")
            handle.remote_head = handle.repo.git.rev_parse("HEAD")
        except GitCommandError as exc:
            raise classify_git_error(exc, "update-ref") from exc
        logger.info("Pushed to %s/%s", REMOTE_NAME, self.branch)
        return attempts

    def commit_and_push(
        self,
        handle: RepositoryHandle,
        message: str,
        credential: Credential,
    ) -> PushResult:
        """Stage the tracked file, commit with *message*, push to origin.

        Convenience wrapper around ``commit()`` and ``push()`` for callers
        that do not track the two steps separately.  ``SyncEngine`` calls
        them one at a time so a failure reports whether it happened while
        committing or pushing.

        A rejected push raises ``PushConflictError``; the caller re-fetches,
        re-merges and calls again.
        """
        sha = self.commit(handle, message, credential.identity)
        attempts = self.push(handle, credential)
        return PushResult(commit=sha, attempts=attempts)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _count_retry(self, attempt: int, error: NetworkError) -> None:
        self.retries += 1

    def _author_env(self, identity: str) -> dict[str, str]:
        email = self.author_email or f"{identity}@{socket.gethostname()}"
        return {
            "GIT_AUTHOR_NAME": identity,
            "GIT_AUTHOR_EMAIL": email,
            "GIT_COMMITTER_NAME": identity,
            "GIT_COMMITTER_EMAIL": email,
        }

    @staticmethod
    def _resolve(repo: Repo, ref: str) -> str | None:
        """Commit SHA *ref* points at, or ``None`` if it does not exist."""
        try:
            return repo.git.rev_parse("--verify", "-q", f"{ref}^{{commit}}")
        except GitCommandError:
            return None
