"""Single-flight advisory lock scoped to a repository directory.

A cycle holds the lock from the start of ``SyncEngine.run()`` until it
returns.  The lock file sits next to the repository directory (not inside
it) so it exists before the repository does and never shows up in
``git status``.
"""

from __future__ import annotations

import logging
import os
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from .errors import RepositoryError

logger = logging.getLogger(__name__)

if sys.platform == "win32":
    import msvcrt

    def _try_lock(fd: int) -> bool:
        try:
            msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)
        except OSError:
            return False
        return True

    def _unlock(fd: int) -> None:
        os.lseek(fd, 0, os.SEEK_SET)
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)

else:
    import fcntl

    def _try_lock(fd: int) -> bool:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return False
        return True

    def _unlock(fd: int) -> None:
        fcntl.flock(fd, fcntl.LOCK_UN)


def lock_path_for(repo_dir: Path) -> Path:
    """Return the lock file path guarding *repo_dir*."""
    repo_dir = Path(repo_dir).resolve()
    return repo_dir.parent / f".{repo_dir.name}.lock"


@contextmanager
def repository_lock(
    repo_dir: Path,
    timeout: float = 0.0,
    poll_interval: float = 0.2,
) -> Iterator[Path]:
    """Hold the single-flight lock for *repo_dir*.

    Args:
        repo_dir: Repository directory being synced.
        timeout: Seconds to keep polling for the lock. ``0`` fails at once.
        poll_interval: Seconds between attempts.

    Yields:
        Path of the lock file.

    Raises:
        RepositoryError: If another cycle still holds the lock after
            *timeout* seconds, or the lock file cannot be created.
    """
    path = lock_path_for(repo_dir)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o600)
    except OSError as exc:
        raise RepositoryError(
            f"Cannot create lock file {path}: {exc}"
        ) from exc

    try:
        deadline = time.monotonic() + timeout
        while not _try_lock(fd):
            if time.monotonic() >= deadline:
                raise RepositoryError(
                    f"Repository {repo_dir} is locked by another sync cycle"
                )
            time.sleep(poll_interval)
        logger.debug("Acquired sync lock %s", path)
        try:
            yield path
        finally:
            _unlock(fd)
            logger.debug("Released sync lock %s", path)
    finally:
        os.close(fd)
