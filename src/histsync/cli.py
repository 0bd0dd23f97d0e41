"""Command-line entry point: run one sync cycle and exit with its status.

Meant to be triggered periodically by cron, a systemd timer or the Windows
Task Scheduler.  Exit codes: 0 in sync or synced, 1 transient failure
(network, push conflicts), 2 fatal failure (credentials, auth, repository,
configuration).
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path

import yaml
from dotenv import load_dotenv

from . import __version__
from .config import load_config
from .config_loader import ensure_config, load_hierarchical_config
from .config_schema import build_config
from .logger import setup_logging
from .sync import SyncEngine, default_resolver, format_sync_report, report_to_json
from .sync.errors import EXIT_FATAL, EXIT_OK, EXIT_TRANSIENT

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="histsync",
        description="Sync a shell history file across machines through a git remote",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run one cycle with credentials from GIT_USERNAME/GIT_TOKEN/GIT_REPO
  histsync

  # Sync a specific history file into a specific repository directory
  histsync --history-file ~/.zsh_history --repo-dir ~/.local/share/histsync/zsh

  # Scheduled run: log to a file only, print nothing but errors
  histsync --service --log-file /var/tmp/histsync.log

  # Write a commented starter config to ~/.config/histsync/config.yml
  histsync --init-config

Exit codes: 0 in sync, 1 transient failure (retry later), 2 fatal failure.
        """,
    )
    parser.add_argument(
        "--history-file",
        help="Local history file (overrides HISTSYNC_HISTORY_FILE and config files)",
    )
    parser.add_argument(
        "--repo-dir",
        help="Working directory of the sync repository "
        "(overrides HISTSYNC_REPO_DIR and config files)",
    )
    parser.add_argument(
        "--branch",
        help="Branch holding the shared log (default: main)",
    )
    parser.add_argument(
        "--config",
        help="Load only this YAML config file instead of discovering one",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Create a commented starter config file and exit",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable DEBUG logging, including every git command",
    )
    parser.add_argument(
        "--service",
        action="store_true",
        help="Log to a file only (default: /tmp/histsync.log), "
        "for runs without a terminal",
    )
    parser.add_argument(
        "--log-file",
        help="Log file path (in addition to stderr unless --service)",
    )
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default="text",
        help="Log record format (default: text)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the sync report as JSON",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"histsync version {__version__}",
    )
    return parser


def run(argv: list[str] | None = None) -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    args = build_parser().parse_args(argv)
    load_dotenv()

    config_path = Path(args.config).expanduser() if args.config else None

    if args.init_config:
        path = ensure_config(config_path)
        print(f"Config file: {path}")
        sys.exit(EXIT_OK)

    try:
        raw = load_hierarchical_config(config_path)
        unified = build_config(raw)
        config = load_config(
            history_file=args.history_file,
            repo_dir=args.repo_dir,
            branch=args.branch,
            debug=args.debug,
            yaml_fallbacks=unified.sync.model_dump(exclude_none=True),
        )
    except (OSError, yaml.YAMLError, ValueError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(EXIT_FATAL)

    # An explicit YAML level applies only when LOG_LEVEL is unset
    if (raw.get("logging") or {}).get("level") and "LOG_LEVEL" not in os.environ:
        os.environ["LOG_LEVEL"] = unified.logging.level
    setup_logging(
        mode="service" if args.service else "cli",
        debug=args.debug,
        log_file=args.log_file or unified.logging.file,
        log_format=args.log_format,
    )
    logger.debug(
        "Syncing %s via %s (branch %s)",
        config.history_file,
        config.repo_dir,
        config.branch,
    )

    try:
        report = SyncEngine(config, resolver=default_resolver(config_path)).run()
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(EXIT_TRANSIENT)

    if args.json:
        print(json.dumps(report_to_json(report), indent=2))
    elif not report.ok:
        print(format_sync_report(report), file=sys.stderr)
    elif not args.service:
        print(format_sync_report(report))

    sys.exit(report.exit_code)


if __name__ == "__main__":
    run()
