"""Sync report formatting functions.

Provides human-readable and machine-readable output for a sync cycle:

- ``format_sync_report`` -- post-sync summary for the terminal.
- ``report_to_json`` -- structured dict for ``--json`` output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import SyncReport

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_sync_report(report: SyncReport) -> str:
    """Format a sync report as human-readable text.

    Detail lines are only included when they carry information.

    Args:
        report: The completed sync report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    lines.append(report.summary())
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")

    if report.local_written:
        lines.append(
            f"Local history file updated (+{report.added_to_local} lines)"
        )
    if report.remote_written:
        pushed = f"Pushed +{report.added_to_remote} lines"
        if report.commit:
            pushed += f" in {report.commit[:10]}"
        lines.append(pushed)
    if report.retries_used:
        lines.append(f"Retries: {report.retries_used}")
    if report.error is not None:
        lines.append(f"Exit code: {report.exit_code}")

    return "\n".join(lines)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict:
    """Convert a sync report to a structured dict for JSON serialisation.

    Args:
        report: The sync report.

    Returns:
        Dict with outcome, counts and error details.
    """
    data: dict = {
        "ok": report.ok,
        "changed": report.changed,
        "phase": report.phase.value,
        "retries_used": report.retries_used,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "counts": {
            "added_to_local": report.added_to_local,
            "added_to_remote": report.added_to_remote,
        },
        "local_written": report.local_written,
        "remote_written": report.remote_written,
        "commit": report.commit,
        "exit_code": report.exit_code,
    }
    if report.error is not None:
        data["error"] = {
            "kind": report.error.value,
            "message": report.error_message,
        }
    return data
