"""Merge reconciliation for history logs.

Combines the local history with the remote history without losing or
duplicating entries.

Key design choices:

* Entries are compared by **exact text**.  No timestamp or shell-syntax
  parsing happens, so a history line is an opaque fact.
* The remote order wins for shared history: the remote sequence is emitted
  as-is, then local lines the remote has never seen are appended in their
  original relative order.
* Everything here is pure.  Reading and writing files is
  ``file_handler``'s job.
"""

from __future__ import annotations

from collections.abc import Sequence


def merge(local: Sequence[str], remote: Sequence[str]) -> list[str]:
    """Merge a local and a remote history log.

    Args:
        local: Lines of the local history file.
        remote: Lines of the history file at the fetched remote head.

    Returns:
        The remote lines in order, followed by every local line that does
        not appear anywhere in *remote*.  With an empty remote the local log
        comes back unchanged; with an empty local log the remote comes back
        unchanged.
    """
    merged = list(remote)
    merged.extend(local_only(local, remote))
    return merged


def local_only(local: Sequence[str], remote: Sequence[str]) -> list[str]:
    """Return local lines missing from *remote*, in local order."""
    seen = set(remote)
    return [line for line in local if line not in seen]
