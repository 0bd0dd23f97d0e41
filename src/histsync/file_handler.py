"""File handler module: encoding-aware reads and atomic writes of history logs.

Every write goes through a temporary file in the target directory followed
by ``os.replace()``, so a crash mid-write leaves the previous file intact
and readers never observe a truncated log.
"""

import logging
import os
import tempfile
from collections.abc import Sequence
from pathlib import Path

from charset_normalizer import from_bytes

logger = logging.getLogger(__name__)

# =============================================================================
# Log format
# =============================================================================


def parse_log(text: str) -> list[str]:
    """Split history file content into entries.

    Accepts ``\\n``, ``\\r\\n`` and ``\\r`` line endings and drops a leading
    BOM.  A trailing newline does not create an empty entry.
    """
    text = text.lstrip("\ufeff").replace("\r\n", "\n").replace("\r", "\n")
    if not text:
        return []
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return lines


def render_log(lines: Sequence[str]) -> str:
    """Render entries as file content (``\\n`` separated, trailing newline)."""
    if not lines:
        return ""
    return "\n".join(lines) + "\n"


# =============================================================================
# Read
# =============================================================================


def read_file_with_encoding(path: Path) -> tuple[str, str]:
    """Read a file with automatic encoding detection.

    Tries UTF-8 (with or without BOM) first, then uses charset-normalizer to
    detect the encoding.  Defaults to UTF-8 for empty files or when
    detection fails.

    Args:
        path: Path to the file to read.

    Returns:
        Tuple of (content_string, detected_encoding).
    """
    raw = path.read_bytes()
    if not raw:
        return ("", "utf-8")

    try:
        return (raw.decode("utf-8-sig"), "utf-8")
    except UnicodeDecodeError:
        pass

    result = from_bytes(raw).best()
    if result is None:
        # Detection failed, fall back to utf-8
        logger.warning(
            "Could not detect encoding of %s; decoding as utf-8", path
        )
        return (raw.decode("utf-8", errors="replace"), "utf-8")
    return (str(result), result.encoding)


def read_log(path: Path) -> list[str]:
    """Read a history log.  A missing file is an empty log."""
    if not path.exists():
        logger.debug("History file %s does not exist yet", path)
        return []
    content, encoding = read_file_with_encoding(path)
    logger.debug("Read %s (%s)", path, encoding)
    return parse_log(content)


# =============================================================================
# Atomic write
# =============================================================================


def _replace_bytes(path: Path, data: bytes) -> None:
    """Write *data* to a temp file beside *path*, fsync, then rename over it."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up temp file on any failure.
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def write_file_atomic(
    path: Path, content: str, encoding: str = "utf-8"
) -> int:
    """Write *content* to *path* via temp file and atomic rename.

    Creates parent directories as needed.  The temp file lives in the same
    directory as *path* so ``os.replace()`` never crosses filesystems.

    Args:
        path: Path to the output file.
        content: String content to write.
        encoding: Encoding to use (default: utf-8).

    Returns:
        Number of bytes written.
    """
    encoded = content.encode(encoding)
    _replace_bytes(path, encoded)
    return len(encoded)


def write_log(path: Path, lines: Sequence[str]) -> int:
    """Atomically replace the history log at *path* with *lines*."""
    return write_file_atomic(path, render_log(lines))


def snapshot_bytes(path: Path) -> bytes | None:
    """Return the current bytes of *path*, ``None`` if it does not exist."""
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None


def restore_bytes(path: Path, original: bytes | None) -> None:
    """Put *path* back to *original* bytes, or remove it if it was absent."""
    if original is None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        return
    _replace_bytes(path, original)
