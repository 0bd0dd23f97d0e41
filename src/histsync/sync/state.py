"""Sync state persistence layer.

Records the snapshot of the last completed cycle in
``<repo>/.git/histsync_state.json``: the hash of the merged log both sides
agreed on, its line count and the pushed commit.  Keeping it under ``.git``
means it is never tracked or pushed.

Key design choices:

* **Atomic writes** -- ``save()`` writes to a temp file then calls
  ``os.replace()`` so readers never see partial data.
* **Exact hashing** -- ``content_hash()`` hashes the rendered log without
  any normalisation.  Reordered or re-spaced lines are real changes.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path

from histsync.file_handler import render_log

logger = logging.getLogger(__name__)

STATE_FILENAME = "histsync_state.json"


class SyncState:
    """Load, save, and update the last-synced snapshot.

    Args:
        state_dir: Directory holding the state file (the repository's
            ``.git`` directory).
    """

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = state_dir

    @property
    def path(self) -> Path:
        return self._state_dir / STATE_FILENAME

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> dict:
        """Load sync state from disk.

        Returns:
            The state dict.  A missing or unreadable file yields an empty
            state with ``version=1``.
        """
        empty = {
            "version": 1,
            "last_sync": None,
            "snapshot_hash": None,
            "line_count": 0,
            "commit": None,
        }
        if not self.path.exists():
            return empty
        try:
            with open(self.path, encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(
                "Ignoring unreadable sync state %s: %s", self.path, exc
            )
            return empty
        if not isinstance(data, dict):
            return empty
        return {**empty, **data}

    def save(self, state: dict) -> None:
        """Persist sync state to disk atomically.

        The ``last_sync`` field is set to the current UTC ISO 8601 timestamp
        before writing.
        """
        self._state_dir.mkdir(parents=True, exist_ok=True)
        state["last_sync"] = datetime.now(timezone.utc).isoformat()

        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._state_dir), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(state, fh, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            # Clean up temp file on any failure.
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def record(
        self, state: dict, lines: Sequence[str], commit: str | None
    ) -> None:
        """Store *lines* as the new agreed snapshot and persist.

        Mutates *state* in place.
        """
        state["snapshot_hash"] = self.content_hash(render_log(lines))
        state["line_count"] = len(lines)
        if commit is not None:
            state["commit"] = commit
        self.save(state)

    # ------------------------------------------------------------------
    # Content hashing
    # ------------------------------------------------------------------

    @staticmethod
    def content_hash(content: str) -> str:
        """SHA-256 hex digest of *content* encoded as UTF-8."""
        return hashlib.sha256(content.encode("utf-8")).hexdigest()
